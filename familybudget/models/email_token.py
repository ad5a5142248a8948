from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field

from .user import utcnow


class TokenKind(str, Enum):
    """
    Which flow a token belongs to. Values are API-stable strings.
    """

    VERIFICATION = "verification"
    PASSWORD_RESET = "password_reset"
    INVITATION = "invitation"


class EmailToken(SQLModel, table=True):
    """
    Single-use emailed capability (verification, password reset, invitation).

    Store only a token hash; the raw token is returned once at creation time and
    travels in the emailed link. A row that exists is live or not-yet-noticed
    expired; consumption and expiry both delete it.
    """

    __tablename__ = "email_tokens"

    id: Optional[int] = Field(default=None, primary_key=True)

    email: str = Field(index=True)
    kind: TokenKind = Field(index=True)

    token_hash: str = Field(index=True, unique=True)

    expires_at: datetime = Field(index=True)

    # Invitations only
    family_id: Optional[int] = Field(default=None, foreign_key="families.id", index=True)
    invited_by_user_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True)

    created_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        # live strictly before expires_at; the issuance guard uses the same cut
        exp = self.expires_at
        if getattr(exp, "tzinfo", None) is not None:
            exp = exp.replace(tzinfo=None) - exp.utcoffset()
        return exp <= (now or utcnow())
