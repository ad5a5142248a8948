from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session, select

from ..database import get_db
from ..models.user import User
from ..services import accounts
from ..services.tokens import Clock, TokenIssuer
from .deps import get_clock, get_current_user, get_issuer

router = APIRouter(prefix="/family", tags=["family"])


class InviteRequest(BaseModel):
    email: Optional[str] = None


@router.post("/invite")
def invite(
    payload: InviteRequest,
    db: Session = Depends(get_db),
    issuer: TokenIssuer = Depends(get_issuer),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """
    Email a 7-day invitation to join the caller's family.
    """
    accounts.invite_member(db, issuer, inviter=current_user, email=payload.email)
    return {"message": "Invitation sent successfully"}


@router.post("/invite/resend")
def resend_invite(
    payload: InviteRequest,
    db: Session = Depends(get_db),
    issuer: TokenIssuer = Depends(get_issuer),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """
    Replace the family's invitation for this email with a fresh 7-day link.
    """
    accounts.resend_invitation(db, issuer, inviter=current_user, email=payload.email)
    return {"message": "Invitation resent successfully"}


@router.get("/invitations")
def invitations(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
) -> List[Dict[str, Any]]:
    rows = accounts.pending_invitations(db, current_user.family_id, now=clock())
    return [
        {
            "email": t.email,
            "invited_by_user_id": t.invited_by_user_id,
            "invited_at": t.created_at.isoformat(),
            "expires_at": t.expires_at.isoformat(),
        }
        for t in rows
    ]


@router.get("/members")
def members(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[Dict[str, Any]]:
    rows = db.exec(select(User).where(User.family_id == current_user.family_id).order_by(User.id)).all()
    out: List[Dict[str, Any]] = []
    for u in rows:
        item = u.summary()
        item["invited_by_user_id"] = u.invited_by_user_id
        item["invited_at"] = u.invited_at.isoformat() if u.invited_at else None
        out.append(item)
    return out
