from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from sqlalchemy import delete, update
from sqlmodel import Session, select

from ..errors import NotFoundError, ValidationError
from ..models.budget import MonthlyOverview, UserExpense, UserIncome
from ..models.category import Category
from ..models.user import User, utcnow

logger = logging.getLogger(__name__)

# Pay frequency -> paychecks per month
SALARY_FREQUENCIES: Dict[str, float] = {
    "weekly": 52 / 12,
    "biweekly": 26 / 12,
    "semimonthly": 2.0,
    "monthly": 1.0,
}

Clock = Callable[[], datetime]

_Row = TypeVar("_Row", UserIncome, UserExpense)


def monthly_salary(amount: float, frequency: str) -> float:
    if frequency not in SALARY_FREQUENCIES:
        raise ValidationError("Invalid salary frequency")
    return round(float(amount) * SALARY_FREQUENCIES[frequency], 2)


# ---------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------

def list_overviews(session: Session, family_id: int, include_archived: bool = True) -> List[MonthlyOverview]:
    q = select(MonthlyOverview).where(MonthlyOverview.family_id == family_id)
    if not include_archived:
        q = q.where(MonthlyOverview.is_archived == False)  # noqa: E712
    q = q.order_by(MonthlyOverview.created_at.desc(), MonthlyOverview.id.desc())
    return list(session.exec(q).all())


def active_overview(session: Session, family_id: int) -> Optional[MonthlyOverview]:
    return session.exec(
        select(MonthlyOverview).where(
            MonthlyOverview.family_id == family_id,
            MonthlyOverview.is_active == True,  # noqa: E712
        )
    ).first()


def get_overview(session: Session, family_id: int, overview_id: int) -> MonthlyOverview:
    overview = session.get(MonthlyOverview, overview_id)
    if overview is None or overview.family_id != family_id:
        raise NotFoundError("Overview not found")
    return overview


def _get_family_row(session: Session, model: Type[_Row], row_id: int, family_id: int, label: str) -> _Row:
    row = session.exec(
        select(model)
        .join(MonthlyOverview, MonthlyOverview.id == model.overview_id)
        .where(model.id == row_id, MonthlyOverview.family_id == family_id)
    ).first()
    if row is None:
        raise NotFoundError(f"{label} not found")
    return row


def overview_detail(session: Session, overview: MonthlyOverview) -> Dict[str, Any]:
    """
    Overview with its income and expense rows plus monthly totals.
    """
    incomes = session.exec(
        select(UserIncome).where(UserIncome.overview_id == overview.id).order_by(UserIncome.id)
    ).all()
    expenses = session.exec(
        select(UserExpense).where(UserExpense.overview_id == overview.id).order_by(UserExpense.id)
    ).all()

    total_income = sum((i.monthly_salary or 0) + (i.additional_income or 0) for i in incomes)
    total_expenses = sum(e.amount or 0 for e in expenses)

    out = overview.as_dict()
    out["income"] = [i.as_dict() for i in incomes]
    out["expenses"] = [e.as_dict() for e in expenses]
    out["totals"] = {
        "income": round(total_income, 2),
        "expenses": round(total_expenses, 2),
        "remaining": round(total_income - total_expenses, 2),
    }
    return out


# ---------------------------------------------------------------------
# Overviews
# ---------------------------------------------------------------------

def _deactivate_all(session: Session, family_id: int) -> None:
    table = MonthlyOverview.__table__
    session.connection().execute(
        update(table).where(table.c.family_id == family_id).values(is_active=False)
    )


def add_member_income(session: Session, overview_id: int, user_id: int, notes: Optional[str] = None) -> UserIncome:
    """
    Zeroed income row for a member. Caller commits.
    """
    income = UserIncome(overview_id=overview_id, user_id=user_id, notes=notes)
    session.add(income)
    return income


def create_overview(
    session: Session,
    family_id: int,
    name: Optional[str],
    *,
    clone_from_id: Optional[int] = None,
    clock: Clock = utcnow,
) -> MonthlyOverview:
    """
    New active overview. Either copies income and expenses from clone_from_id
    or starts every family member at zero income. One commit.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required")

    source: Optional[MonthlyOverview] = None
    if clone_from_id is not None:
        source = session.get(MonthlyOverview, clone_from_id)
        if source is None or source.family_id != family_id:
            raise NotFoundError("Source overview not found")

    try:
        _deactivate_all(session, family_id)

        overview = MonthlyOverview(family_id=family_id, name=name, is_active=True, created_at=clock())
        session.add(overview)
        session.flush()

        if source is not None:
            for inc in session.exec(select(UserIncome).where(UserIncome.overview_id == source.id)).all():
                session.add(
                    UserIncome(
                        overview_id=overview.id,
                        user_id=inc.user_id,
                        salary_amount=inc.salary_amount,
                        salary_frequency=inc.salary_frequency,
                        monthly_salary=inc.monthly_salary,
                        additional_income=inc.additional_income,
                        notes=inc.notes,
                    )
                )
            for exp in session.exec(select(UserExpense).where(UserExpense.overview_id == source.id)).all():
                session.add(
                    UserExpense(
                        overview_id=overview.id,
                        user_id=exp.user_id,
                        category_id=exp.category_id,
                        name=exp.name,
                        amount=exp.amount,
                        is_shared=exp.is_shared,
                        share_percentage=exp.share_percentage,
                        notes=exp.notes,
                    )
                )
        else:
            for user in session.exec(select(User).where(User.family_id == family_id)).all():
                add_member_income(session, overview.id, user.id)

        session.commit()
    except Exception:
        session.rollback()
        raise

    session.refresh(overview)
    logger.info(
        "Family id=%s created overview id=%s%s",
        family_id,
        overview.id,
        f" (cloned from id={source.id})" if source is not None else "",
    )
    return overview


def switch_overview(session: Session, family_id: int, overview_id: int) -> MonthlyOverview:
    overview = get_overview(session, family_id, overview_id)
    if overview.is_archived:
        raise ValidationError("Cannot activate an archived overview. Unarchive it first.")
    if overview.is_active:
        return overview

    try:
        _deactivate_all(session, family_id)
        overview.is_active = True
        session.add(overview)
        session.commit()
    except Exception:
        session.rollback()
        raise

    session.refresh(overview)
    return overview


def archive_overview(session: Session, family_id: int, overview_id: int, *, clock: Clock = utcnow) -> MonthlyOverview:
    overview = get_overview(session, family_id, overview_id)
    if overview.is_active:
        raise ValidationError("Cannot archive the active overview. Switch to another overview first.")

    overview.is_archived = True
    overview.archived_at = clock()
    session.add(overview)
    session.commit()
    session.refresh(overview)
    return overview


def unarchive_overview(session: Session, family_id: int, overview_id: int) -> MonthlyOverview:
    overview = get_overview(session, family_id, overview_id)
    overview.is_archived = False
    overview.archived_at = None
    session.add(overview)
    session.commit()
    session.refresh(overview)
    return overview


def delete_overview(session: Session, family_id: int, overview_id: int) -> Optional[MonthlyOverview]:
    """
    Deletes the overview with its rows. If it was active, the most recent
    remaining non-archived overview becomes active and is returned.
    """
    overview = get_overview(session, family_id, overview_id)

    if not overview.is_archived:
        remaining = len(list_overviews(session, family_id, include_archived=False))
        if remaining <= 1:
            raise ValidationError("Cannot delete the last active overview")

    was_active = bool(overview.is_active)
    promoted: Optional[MonthlyOverview] = None

    try:
        inc, exp = UserIncome.__table__, UserExpense.__table__
        conn = session.connection()
        conn.execute(delete(inc).where(inc.c.overview_id == overview.id))
        conn.execute(delete(exp).where(exp.c.overview_id == overview.id))
        session.delete(overview)
        session.flush()

        if was_active:
            candidates = list_overviews(session, family_id, include_archived=False)
            if candidates:
                promoted = candidates[0]
                promoted.is_active = True
                session.add(promoted)

        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info("Family id=%s deleted overview id=%s", family_id, overview_id)
    if promoted is not None:
        session.refresh(promoted)
    return promoted


# ---------------------------------------------------------------------
# Income
# ---------------------------------------------------------------------

def update_income(session: Session, family_id: int, income_id: int, changes: Dict[str, Any]) -> UserIncome:
    """
    Partial update. A new salary amount or frequency recomputes
    monthly_salary unless the caller supplies one.
    """
    income = _get_family_row(session, UserIncome, income_id, family_id, "Income")

    for key in ("salary_amount", "monthly_salary", "additional_income"):
        value = changes.get(key)
        if value is not None and value < 0:
            raise ValidationError("Amounts cannot be negative")

    frequency = changes.get("salary_frequency")
    if frequency is not None and frequency not in SALARY_FREQUENCIES:
        raise ValidationError("Invalid salary frequency")

    for key in ("salary_amount", "salary_frequency", "additional_income"):
        if changes.get(key) is not None:
            setattr(income, key, changes[key])
    if "notes" in changes:
        income.notes = changes["notes"]

    if changes.get("monthly_salary") is not None:
        income.monthly_salary = changes["monthly_salary"]
    elif changes.get("salary_amount") is not None or frequency is not None:
        income.monthly_salary = monthly_salary(income.salary_amount, income.salary_frequency)

    session.add(income)
    session.commit()
    session.refresh(income)
    return income


# ---------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------

def _check_share(share_percentage: Optional[float]) -> None:
    if share_percentage is not None and not 0 <= share_percentage <= 100:
        raise ValidationError("Share percentage must be between 0 and 100")


def _family_category(session: Session, family_id: int, category_id: Optional[int]) -> Optional[Category]:
    if category_id is None:
        return None
    cat = session.get(Category, category_id)
    if cat is None or cat.family_id != family_id:
        return None
    return cat


def add_expense(
    session: Session,
    family_id: int,
    *,
    user_id: Optional[int],
    category_id: Optional[int],
    name: Optional[str],
    amount: Optional[float],
    is_shared: bool = False,
    share_percentage: float = 100.0,
    notes: Optional[str] = None,
) -> UserExpense:
    """
    Adds an expense to the family's active overview.
    """
    name = (name or "").strip()
    if not name or amount is None:
        raise ValidationError("Missing required fields")
    if amount < 0:
        raise ValidationError("Amounts cannot be negative")
    _check_share(share_percentage)

    overview = active_overview(session, family_id)
    if overview is None:
        raise ValidationError("No active overview found")

    user = session.get(User, user_id) if user_id is not None else None
    category = _family_category(session, family_id, category_id)
    if user is None or user.family_id != family_id or category is None:
        raise ValidationError("Invalid user or category")

    expense = UserExpense(
        overview_id=overview.id,
        user_id=user.id,
        category_id=category.id,
        name=name,
        amount=amount,
        is_shared=is_shared,
        share_percentage=share_percentage,
        notes=notes,
    )
    session.add(expense)
    session.commit()
    session.refresh(expense)
    return expense


def update_expense(session: Session, family_id: int, expense_id: int, changes: Dict[str, Any]) -> UserExpense:
    expense = _get_family_row(session, UserExpense, expense_id, family_id, "Expense")

    if changes.get("name") is not None:
        name = changes["name"].strip()
        if not name:
            raise ValidationError("Name cannot be empty")
        expense.name = name
    if changes.get("amount") is not None:
        if changes["amount"] < 0:
            raise ValidationError("Amounts cannot be negative")
        expense.amount = changes["amount"]
    if changes.get("category_id") is not None:
        category = _family_category(session, family_id, changes["category_id"])
        if category is None:
            raise ValidationError("Invalid user or category")
        expense.category_id = category.id
    if changes.get("is_shared") is not None:
        expense.is_shared = changes["is_shared"]
    if changes.get("share_percentage") is not None:
        _check_share(changes["share_percentage"])
        expense.share_percentage = changes["share_percentage"]
    if "notes" in changes:
        expense.notes = changes["notes"]

    session.add(expense)
    session.commit()
    session.refresh(expense)
    return expense


def delete_expense(session: Session, family_id: int, expense_id: int) -> None:
    expense = _get_family_row(session, UserExpense, expense_id, family_id, "Expense")
    session.delete(expense)
    session.commit()
