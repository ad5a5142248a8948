from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from ..config import Settings
from ..database import get_db
from ..models.user import Family, User
from ..services import accounts
from ..services.authenticator import CredentialAuthenticator
from ..services.tokens import Clock, TokenConsumer, TokenIssuer
from .deps import (
    get_authenticator,
    get_clock,
    get_consumer,
    get_current_user,
    get_issuer,
    get_settings,
)

router = APIRouter(prefix="/auth", tags=["auth"])


# -------------------------
# Schemas
# -------------------------
# Fields are optional on purpose: missing input is reported by the
# service layer as a 400 with a readable message.

class SignupRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None


class EmailRequest(BaseModel):
    email: Optional[str] = None


class TokenRequest(BaseModel):
    token: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    token: Optional[str] = None
    password: Optional[str] = None


class AcceptInviteRequest(BaseModel):
    token: Optional[str] = None
    name: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


# -------------------------
# Routes
# -------------------------

@router.post("/signup")
def signup(
    payload: SignupRequest,
    db: Session = Depends(get_db),
    cfg: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    user = accounts.signup(
        db,
        email=payload.email,
        password=payload.password,
        name=payload.name,
        cfg=cfg,
        clock=clock,
    )
    return {
        "message": "User created successfully",
        "user": {"id": user.id, "email": user.email, "name": user.name},
    }


@router.post("/send-verification")
def send_verification(
    payload: EmailRequest,
    db: Session = Depends(get_db),
    issuer: TokenIssuer = Depends(get_issuer),
) -> Dict[str, Any]:
    message = accounts.request_verification(db, issuer, email=payload.email)
    return {"message": message}


@router.post("/verify-email")
def verify_email(
    payload: TokenRequest,
    consumer: TokenConsumer = Depends(get_consumer),
) -> Dict[str, Any]:
    user = consumer.verify_email(payload.token)
    return {"message": "Email verified successfully", "user": user.summary()}


@router.post("/forgot-password")
def forgot_password(
    payload: EmailRequest,
    db: Session = Depends(get_db),
    issuer: TokenIssuer = Depends(get_issuer),
) -> Dict[str, Any]:
    message = accounts.request_password_reset(db, issuer, email=payload.email)
    return {"message": message}


@router.post("/reset-password")
def reset_password(
    payload: ResetPasswordRequest,
    consumer: TokenConsumer = Depends(get_consumer),
) -> Dict[str, Any]:
    consumer.reset_password(payload.token, payload.password)
    return {"message": "Password reset successfully"}


@router.post("/accept-invite")
def accept_invite(
    payload: AcceptInviteRequest,
    consumer: TokenConsumer = Depends(get_consumer),
) -> Dict[str, Any]:
    user = consumer.accept_invitation(payload.token, payload.name, payload.password)
    return {
        "message": "Account created successfully",
        "user": {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "family_id": user.family_id,
        },
    }


@router.post("/login")
def login(
    payload: LoginRequest,
    authenticator: CredentialAuthenticator = Depends(get_authenticator),
) -> Dict[str, Any]:
    identity = authenticator.authenticate(payload.email, payload.password)
    return {
        "access_token": authenticator.issue_session_token(identity),
        "token_type": "bearer",
        "user": {
            "id": identity.user_id,
            "email": identity.email,
            "name": identity.name,
            "family_id": identity.family_id,
            "family_name": identity.family_name,
        },
    }


@router.get("/me")
def me(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    family = db.get(Family, current_user.family_id)
    out = current_user.summary()
    out["family_name"] = family.name if family else None
    return out
