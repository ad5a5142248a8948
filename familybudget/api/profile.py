from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from ..database import get_db
from ..models.user import User
from ..services import accounts
from .deps import get_current_user

router = APIRouter(prefix="/profile", tags=["profile"])


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


@router.get("")
def get_profile(current_user: User = Depends(get_current_user)) -> Dict[str, Any]:
    return current_user.summary()


@router.patch("")
def update_profile(
    payload: ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """
    Change display name and/or email. The email must not belong to another user.
    """
    user = accounts.update_profile(db, current_user, name=payload.name, email=payload.email)
    return {"message": "Profile updated successfully", "user": user.summary()}
