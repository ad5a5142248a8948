from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    # naive UTC: SQLite drops tzinfo on round-trip, so every stored timestamp is naive
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_email(raw: Optional[str]) -> str:
    """
    Canonical form used for every lookup and every stored address.
    """
    return (raw or "").strip().lower()


class Family(SQLModel, table=True):
    """
    Tenant grouping. One per root signup; invitees join an existing one.
    """

    __tablename__ = "families"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str

    created_at: datetime = Field(default_factory=utcnow, index=True)


class User(SQLModel, table=True):
    """
    A household member who can sign in.

    Notes:
    - email is stored canonicalized (see normalize_email).
    - password_hash is None until the account has a usable credential.
    - invited_by_user_id / invited_at are copied from the invitation token on acceptance.
    """

    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)

    email: str = Field(index=True, unique=True)
    name: str

    password_hash: Optional[str] = Field(default=None)

    is_verified: bool = Field(default=False, index=True)
    verified_at: Optional[datetime] = Field(default=None)

    family_id: int = Field(foreign_key="families.id", index=True)

    invited_by_user_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True)
    invited_at: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow, index=True)

    def mark_verified(self, when: Optional[datetime] = None) -> None:
        self.is_verified = True
        self.verified_at = when or utcnow()

    def has_usable_credential(self) -> bool:
        return bool(self.is_verified and self.password_hash)

    def summary(self) -> Dict[str, Any]:
        """
        Public shape returned by the auth endpoints. Never includes the hash.
        """
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "family_id": self.family_id,
            "is_verified": bool(self.is_verified),
        }
