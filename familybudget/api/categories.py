from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from ..database import get_db
from ..errors import NotFoundError, ValidationError
from ..models.category import Category
from ..models.user import User
from ..services import categories as svc
from .deps import get_current_user

router = APIRouter(prefix="/categories", tags=["categories"])


# -------------------------
# Schemas
# -------------------------

class CategoryCreate(BaseModel):
    name: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None


def _out(cat: Category) -> Dict[str, Any]:
    return {
        "id": cat.id,
        "family_id": cat.family_id,
        "name": cat.name,
        "icon": cat.icon,
        "color": cat.color,
    }


def _get_owned(db: Session, user: User, category_id: int) -> Category:
    cat = svc.get_family_category(db, user.family_id, category_id)
    if cat is None:
        raise NotFoundError("Category not found")
    return cat


# -------------------------
# Routes
# -------------------------

@router.get("")
def list_categories(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[Dict[str, Any]]:
    return [_out(c) for c in svc.family_categories(db, current_user.family_id)]


@router.post("")
def create_category(
    payload: CategoryCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    name = (payload.name or "").strip()
    if not name:
        raise ValidationError("Name is required")

    cat = Category(family_id=current_user.family_id, name=name)
    if payload.icon:
        cat.icon = payload.icon
    if payload.color:
        cat.color = payload.color

    db.add(cat)
    db.commit()
    db.refresh(cat)
    return _out(cat)


@router.get("/reset-preview")
def reset_preview(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """
    Where each current category would land if the family reset to defaults.
    """
    return svc.reset_preview(db, current_user.family_id)


@router.post("/reset")
def reset_categories(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    return svc.reset_to_defaults(db, current_user.family_id)


@router.patch("/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    cat = _get_owned(db, current_user, category_id)

    if payload.name is not None:
        name = payload.name.strip()
        if not name:
            raise ValidationError("Name cannot be empty")
        cat.name = name
    if payload.icon is not None:
        cat.icon = payload.icon
    if payload.color is not None:
        cat.color = payload.color

    db.add(cat)
    db.commit()
    db.refresh(cat)
    return _out(cat)


@router.delete("/{category_id}")
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    svc.delete_category(db, current_user.family_id, category_id)
    return {"success": True}
