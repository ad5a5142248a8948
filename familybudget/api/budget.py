from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from ..database import get_db
from ..models.user import User
from ..services import budget as svc
from ..services.tokens import Clock
from .deps import get_clock, get_current_user

router = APIRouter(prefix="/budget", tags=["budget"])


# -------------------------
# Schemas
# -------------------------

class OverviewCreate(BaseModel):
    name: Optional[str] = None
    clone_from_id: Optional[int] = None


class IncomeUpdate(BaseModel):
    salary_amount: Optional[float] = None
    salary_frequency: Optional[str] = None
    monthly_salary: Optional[float] = None
    additional_income: Optional[float] = None
    notes: Optional[str] = None


class ExpenseCreate(BaseModel):
    user_id: Optional[int] = None
    category_id: Optional[int] = None
    name: Optional[str] = None
    amount: Optional[float] = None
    is_shared: bool = False
    share_percentage: float = 100.0
    notes: Optional[str] = None


class ExpenseUpdate(BaseModel):
    name: Optional[str] = None
    amount: Optional[float] = None
    category_id: Optional[int] = None
    is_shared: Optional[bool] = None
    share_percentage: Optional[float] = None
    notes: Optional[str] = None


# -------------------------
# Overviews
# -------------------------

@router.get("/overviews")
def list_overviews(
    include_archived: bool = True,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[Dict[str, Any]]:
    rows = svc.list_overviews(db, current_user.family_id, include_archived=include_archived)
    return [o.as_dict() for o in rows]


@router.post("/overviews")
def create_overview(
    payload: OverviewCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    """
    Create a new active overview, optionally cloning income and expenses from another.
    """
    overview = svc.create_overview(
        db,
        current_user.family_id,
        payload.name,
        clone_from_id=payload.clone_from_id,
        clock=clock,
    )
    return svc.overview_detail(db, overview)


@router.get("/overviews/active")
def active_overview(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Optional[Dict[str, Any]]:
    overview = svc.active_overview(db, current_user.family_id)
    if overview is None:
        return None
    return svc.overview_detail(db, overview)


@router.get("/overviews/{overview_id}")
def get_overview(
    overview_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    overview = svc.get_overview(db, current_user.family_id, overview_id)
    return svc.overview_detail(db, overview)


@router.post("/overviews/{overview_id}/activate")
def activate_overview(
    overview_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    return svc.switch_overview(db, current_user.family_id, overview_id).as_dict()


@router.post("/overviews/{overview_id}/archive")
def archive_overview(
    overview_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    return svc.archive_overview(db, current_user.family_id, overview_id, clock=clock).as_dict()


@router.post("/overviews/{overview_id}/unarchive")
def unarchive_overview(
    overview_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    return svc.unarchive_overview(db, current_user.family_id, overview_id).as_dict()


@router.delete("/overviews/{overview_id}")
def delete_overview(
    overview_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    promoted = svc.delete_overview(db, current_user.family_id, overview_id)
    return {"success": True, "active_overview_id": promoted.id if promoted else None}


# -------------------------
# Income / expenses
# -------------------------

@router.patch("/income/{income_id}")
def update_income(
    income_id: int,
    payload: IncomeUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    changes = payload.model_dump(exclude_unset=True)
    return svc.update_income(db, current_user.family_id, income_id, changes).as_dict()


@router.post("/expenses")
def add_expense(
    payload: ExpenseCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """
    Add an expense to the active overview. user_id defaults to the caller.
    """
    expense = svc.add_expense(
        db,
        current_user.family_id,
        user_id=payload.user_id if payload.user_id is not None else current_user.id,
        category_id=payload.category_id,
        name=payload.name,
        amount=payload.amount,
        is_shared=payload.is_shared,
        share_percentage=payload.share_percentage,
        notes=payload.notes,
    )
    return expense.as_dict()


@router.patch("/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    changes = payload.model_dump(exclude_unset=True)
    return svc.update_expense(db, current_user.family_id, expense_id, changes).as_dict()


@router.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    svc.delete_expense(db, current_user.family_id, expense_id)
    return {"success": True}
