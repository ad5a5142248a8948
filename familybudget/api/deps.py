from __future__ import annotations

from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import Session

from ..config import Settings, settings
from ..database import get_db
from ..errors import AuthError
from ..models.user import User, utcnow
from ..services.authenticator import AuthConfig, CredentialAuthenticator
from ..services.mailer import Mailer, build_mailer
from ..services.tokens import Clock, TokenConsumer, TokenIssuer

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

_mailer: Optional[Mailer] = None


def get_settings() -> Settings:
    return settings


def get_mailer(cfg: Settings = Depends(get_settings)) -> Mailer:
    global _mailer
    if _mailer is None:
        _mailer = build_mailer(cfg)
    return _mailer


def get_clock() -> Clock:
    return utcnow


def get_authenticator(
    db: Session = Depends(get_db),
    cfg: Settings = Depends(get_settings),
) -> CredentialAuthenticator:
    return CredentialAuthenticator(db, AuthConfig.from_settings(cfg))


def get_issuer(
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    cfg: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> TokenIssuer:
    return TokenIssuer(db, mailer, cfg=cfg, clock=clock)


def get_consumer(
    db: Session = Depends(get_db),
    cfg: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> TokenConsumer:
    return TokenConsumer(db, cfg=cfg, clock=clock)


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
    authenticator: CredentialAuthenticator = Depends(get_authenticator),
) -> User:
    identity = authenticator.read_session_token(token)

    user = db.get(User, identity.user_id)
    # token outlived its user (e.g. DB wiped): 401, not a crash
    if user is None:
        raise AuthError("User not found")

    return user
