from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlmodel import SQLModel, Field

from .user import utcnow


class MonthlyOverview(SQLModel, table=True):
    """
    One budget snapshot for a family ("Current", "Planned", "March"...).

    Notes:
    - At most one non-archived overview per family is active; the service
      switches the others off inside the same transaction.
    - An active overview is never archived.
    """

    __tablename__ = "monthly_overviews"

    id: Optional[int] = Field(default=None, primary_key=True)

    family_id: int = Field(foreign_key="families.id", index=True)
    name: str

    is_active: bool = Field(default=False, index=True)
    is_archived: bool = Field(default=False, index=True)
    archived_at: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow, index=True)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "family_id": self.family_id,
            "name": self.name,
            "is_active": bool(self.is_active),
            "is_archived": bool(self.is_archived),
            "archived_at": self.archived_at.isoformat() if self.archived_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class UserIncome(SQLModel, table=True):
    """
    A member's income inside one overview. monthly_salary is salary_amount
    normalized by salary_frequency.
    """

    __tablename__ = "user_income"

    id: Optional[int] = Field(default=None, primary_key=True)

    overview_id: int = Field(foreign_key="monthly_overviews.id", index=True)
    user_id: int = Field(foreign_key="users.id", index=True)

    salary_amount: float = Field(default=0.0)
    salary_frequency: str = Field(default="monthly")
    monthly_salary: float = Field(default=0.0)
    additional_income: float = Field(default=0.0)

    notes: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "overview_id": self.overview_id,
            "user_id": self.user_id,
            "salary_amount": self.salary_amount,
            "salary_frequency": self.salary_frequency,
            "monthly_salary": self.monthly_salary,
            "additional_income": self.additional_income,
            "notes": self.notes,
        }


class UserExpense(SQLModel, table=True):
    __tablename__ = "user_expenses"

    id: Optional[int] = Field(default=None, primary_key=True)

    overview_id: int = Field(foreign_key="monthly_overviews.id", index=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    category_id: int = Field(foreign_key="categories.id", index=True)

    name: str
    amount: float = Field(default=0.0)

    is_shared: bool = Field(default=False)
    # the payer's share when is_shared, 0-100
    share_percentage: float = Field(default=100.0)

    notes: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "overview_id": self.overview_id,
            "user_id": self.user_id,
            "category_id": self.category_id,
            "name": self.name,
            "amount": self.amount,
            "is_shared": bool(self.is_shared),
            "share_percentage": self.share_percentage,
            "notes": self.notes,
        }
