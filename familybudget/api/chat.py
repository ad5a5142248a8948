from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import update
from sqlmodel import Session, select

from ..database import get_db
from ..errors import NotFoundError
from ..models.conversation import ChatConversation
from ..models.user import User
from ..services.tokens import Clock
from .deps import get_clock, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat/conversations", tags=["chat"])


# -------------------------
# Schemas
# -------------------------

class ConversationCreate(BaseModel):
    messages: Optional[List[Dict[str, Any]]] = None
    title: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class ConversationUpdate(BaseModel):
    messages: Optional[List[Dict[str, Any]]] = None
    title: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


# -------------------------
# Helpers
# -------------------------

def _deactivate_others(db: Session, user_id: int, keep_id: Optional[int] = None) -> None:
    """
    Enforces "one active conversation per user" ahead of activating one.
    Runs inside the caller's transaction.
    """
    table = ChatConversation.__table__
    stmt = update(table).where(table.c.user_id == user_id, table.c.is_active.is_(True))
    if keep_id is not None:
        stmt = stmt.where(table.c.id != keep_id)
    db.connection().execute(stmt.values(is_active=False))


def _get_owned(db: Session, user: User, conversation_id: int) -> ChatConversation:
    conv = db.get(ChatConversation, conversation_id)
    if conv is None or conv.user_id != user.id:
        raise NotFoundError("Conversation not found")
    return conv


# -------------------------
# Routes
# -------------------------

@router.get("")
def list_conversations(
    limit: int = Query(default=10, ge=1, le=100),
    include_messages: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[Dict[str, Any]]:
    q = (
        select(ChatConversation)
        .where(ChatConversation.user_id == current_user.id)
        .order_by(ChatConversation.last_message_at.desc(), ChatConversation.id.desc())
        .limit(limit)
    )
    return [c.as_dict(include_messages=include_messages) for c in db.exec(q).all()]


@router.post("")
def create_conversation(
    payload: ConversationCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    """
    New conversations start active; any previously active one is switched off.
    """
    user_id = current_user.id
    conv = ChatConversation(
        user_id=user_id,
        family_id=current_user.family_id,
        title=payload.title or "New conversation",
        messages=payload.messages or [],
        meta=payload.metadata or {},
        is_active=True,
        last_message_at=clock(),
    )
    try:
        _deactivate_others(db, user_id)
        db.add(conv)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(conv)
    return conv.as_dict()


@router.get("/active")
def active_conversation(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Optional[Dict[str, Any]]:
    """
    The active conversation; if none is flagged, the most recent one becomes active.
    """
    conv = db.exec(
        select(ChatConversation).where(
            ChatConversation.user_id == current_user.id,
            ChatConversation.is_active == True,  # noqa: E712
        )
    ).first()
    if conv is not None:
        return conv.as_dict()

    recent = db.exec(
        select(ChatConversation)
        .where(ChatConversation.user_id == current_user.id)
        .order_by(ChatConversation.last_message_at.desc(), ChatConversation.id.desc())
    ).first()
    if recent is None:
        return None

    recent.is_active = True
    db.add(recent)
    db.commit()
    db.refresh(recent)
    return recent.as_dict()


@router.get("/{conversation_id}")
def get_conversation(
    conversation_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    return _get_owned(db, current_user, conversation_id).as_dict()


@router.patch("/{conversation_id}")
def update_conversation(
    conversation_id: int,
    payload: ConversationUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    conv = _get_owned(db, current_user, conversation_id)

    try:
        if payload.is_active is True:
            _deactivate_others(db, current_user.id, keep_id=conv.id)
        if payload.messages is not None:
            conv.messages = payload.messages
        if payload.title is not None:
            conv.title = payload.title
        if payload.metadata is not None:
            conv.meta = payload.metadata
        if payload.is_active is not None:
            conv.is_active = payload.is_active
        conv.last_message_at = clock()
        db.add(conv)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(conv)
    return conv.as_dict()


@router.delete("/{conversation_id}")
def delete_conversation(
    conversation_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    conv = _get_owned(db, current_user, conversation_id)
    db.delete(conv)
    db.commit()
    logger.info("User id=%s deleted conversation id=%s", current_user.id, conversation_id)
    return {"success": True}
