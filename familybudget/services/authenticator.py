from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from sqlmodel import Session, select

from ..config import Settings
from ..errors import AuthError, ValidationError
from ..models.user import Family, User, normalize_email, utcnow
from .passwords import burn_password_check, verify_password

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthConfig:
    """
    Everything the authenticator needs, passed in explicitly.
    """

    secret_key: str
    algorithm: str = "HS256"
    session_ttl: timedelta = timedelta(days=30)
    bcrypt_rounds: int = 10

    @classmethod
    def from_settings(cls, cfg: Settings) -> "AuthConfig":
        return cls(
            secret_key=cfg.secret_key,
            algorithm=cfg.session_algorithm,
            session_ttl=timedelta(minutes=cfg.session_ttl_minutes),
            bcrypt_rounds=cfg.bcrypt_rounds,
        )


@dataclass(frozen=True)
class Identity:
    """
    Identity assertion handed to the session layer after a successful login.
    """

    user_id: int
    email: str
    name: str
    family_id: int
    family_name: Optional[str] = None

    def claims(self) -> Dict[str, Any]:
        return {
            "sub": str(self.user_id),
            "email": self.email,
            "name": self.name,
            "family_id": self.family_id,
            "family_name": self.family_name,
        }

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "Identity":
        return cls(
            user_id=int(claims["sub"]),
            email=str(claims["email"]),
            name=str(claims.get("name") or ""),
            family_id=int(claims["family_id"]),
            family_name=claims.get("family_name"),
        )


class LoginFailure(str, Enum):
    NOT_FOUND = "not_found"
    UNVERIFIED = "unverified"
    BAD_PASSWORD = "bad_password"


class CredentialError(AuthError):
    def __init__(self, reason: LoginFailure, message: str) -> None:
        self.reason = reason
        super().__init__(message)


class CredentialAuthenticator:
    """
    Email + password check and the bearer token that carries the result.

    Every failing branch still performs one bcrypt comparison, so timing does
    not reveal whether the account exists.
    """

    def __init__(self, session: Session, config: AuthConfig) -> None:
        self.session = session
        self.config = config

    def authenticate(self, email: Optional[str], password: Optional[str]) -> Identity:
        email = normalize_email(email)
        if not email or not password:
            raise ValidationError("Email and password are required")

        user = self.session.exec(select(User).where(User.email == email)).first()
        if user is None:
            burn_password_check(password, self.config.bcrypt_rounds)
            logger.info("Login failed for %s: no such user", email)
            raise CredentialError(LoginFailure.NOT_FOUND, "User not found")

        if not user.is_verified or not user.password_hash:
            burn_password_check(password, self.config.bcrypt_rounds)
            logger.info("Login refused for user id=%s: not verified", user.id)
            raise CredentialError(
                LoginFailure.UNVERIFIED,
                "Account not verified. Please check your email to complete signup.",
            )

        if not verify_password(password, user.password_hash):
            logger.info("Login failed for user id=%s: bad password", user.id)
            raise CredentialError(LoginFailure.BAD_PASSWORD, "Invalid password")

        family = self.session.get(Family, user.family_id)
        return Identity(
            user_id=user.id,
            email=user.email,
            name=user.name,
            family_id=user.family_id,
            family_name=family.name if family else None,
        )

    def issue_session_token(self, identity: Identity, now: Optional[datetime] = None) -> str:
        issued = now or utcnow()
        claims = identity.claims()
        claims.update({"iat": issued, "exp": issued + self.config.session_ttl})
        return jwt.encode(claims, self.config.secret_key, algorithm=self.config.algorithm)

    def read_session_token(self, token: Optional[str]) -> Identity:
        if not token:
            raise AuthError("Unauthorized")
        try:
            payload = jwt.decode(token, self.config.secret_key, algorithms=[self.config.algorithm])
            return Identity.from_claims(payload)
        except (JWTError, KeyError, TypeError, ValueError):
            raise AuthError("Invalid session")
