from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field

from .user import utcnow


class ChatConversation(SQLModel, table=True):
    """
    Persisted assistant conversation.

    Notes:
    - messages is the ordered log exactly as the client sent it.
    - meta is exposed as "metadata" in the API ("metadata" is reserved on SQLModel tables).
    - At most one row per user has is_active=True; the API deactivates the others
      before activating one. There is no database constraint behind this.
    """

    __tablename__ = "chat_conversations"

    id: Optional[int] = Field(default=None, primary_key=True)

    user_id: int = Field(foreign_key="users.id", index=True)
    family_id: int = Field(foreign_key="families.id", index=True)

    title: str = Field(default="New conversation")

    messages: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    meta: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    is_active: bool = Field(default=False, index=True)

    last_message_at: datetime = Field(default_factory=utcnow, index=True)
    created_at: datetime = Field(default_factory=utcnow)

    def as_dict(self, include_messages: bool = True) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "is_active": bool(self.is_active),
            "last_message_at": self.last_message_at.isoformat() if self.last_message_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "metadata": self.meta or {},
        }
        if include_messages:
            out["messages"] = list(self.messages or [])
        return out
