from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..config import InviteConflictPolicy, Settings, settings as default_settings
from ..errors import (
    ConflictError,
    DispatchError,
    InvalidTokenError,
    NotFoundError,
    TokenExpiredError,
    ValidationError,
)
from ..models.email_token import EmailToken, TokenKind
from ..models.user import User, normalize_email, utcnow
from .budget import Clock, active_overview, add_member_income
from .email_templates import LINK_PATHS, render
from .mailer import Mailer, Notification
from .passwords import hash_password, validate_new_password

logger = logging.getLogger(__name__)

# Kinds that refuse to mint while a live token for the same target exists
GUARDED_KINDS = {TokenKind.PASSWORD_RESET, TokenKind.INVITATION}


def hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _describe(ttl: timedelta) -> str:
    seconds = int(ttl.total_seconds())
    if seconds % 86400 == 0:
        n, unit = seconds // 86400, "day"
    elif seconds % 3600 == 0:
        n, unit = seconds // 3600, "hour"
    else:
        n, unit = max(1, seconds // 60), "minute"
    return f"{n} {unit}" if n == 1 else f"{n} {unit}s"


@dataclass(frozen=True)
class IssueResult:
    """
    Outcome of TokenIssuer.issue().

    token is the raw value and is only set when a new token was minted.
    already_pending means a live token already existed and nothing was sent.
    """

    record: EmailToken
    token: Optional[str] = None
    already_pending: bool = False


class TokenIssuer:
    """
    Mints single-use emailed tokens and hands them to the mailer.

    The token row is committed before dispatch. If dispatch fails the row is
    left in place (valid, but the user never saw the link) and DispatchError
    is raised.
    """

    def __init__(
        self,
        session: Session,
        mailer: Mailer,
        *,
        cfg: Settings = default_settings,
        clock: Clock = utcnow,
    ) -> None:
        self.session = session
        self.mailer = mailer
        self.cfg = cfg
        self.clock = clock

    def ttl_for(self, kind: TokenKind) -> timedelta:
        if kind == TokenKind.VERIFICATION:
            return self.cfg.verification_token_ttl
        if kind == TokenKind.PASSWORD_RESET:
            return self.cfg.reset_token_ttl
        return self.cfg.invitation_token_ttl

    def find_live(self, kind: TokenKind, email: str, family_id: Optional[int] = None) -> Optional[EmailToken]:
        q = select(EmailToken).where(
            EmailToken.kind == kind,
            EmailToken.email == normalize_email(email),
            EmailToken.expires_at > self.clock(),
        )
        if family_id is not None:
            q = q.where(EmailToken.family_id == family_id)
        return self.session.exec(q).first()

    def issue(
        self,
        kind: TokenKind,
        email: str,
        *,
        family_id: Optional[int] = None,
        invited_by_user_id: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> IssueResult:
        email = normalize_email(email)
        if not email:
            raise ValidationError("Email is required")
        if kind == TokenKind.INVITATION and (family_id is None or invited_by_user_id is None):
            raise ValueError("invitation tokens need family_id and invited_by_user_id")

        if kind in GUARDED_KINDS:
            existing = self.find_live(kind, email, family_id if kind == TokenKind.INVITATION else None)
            if existing is not None:
                logger.info("Live %s token id=%s already pending for %s; not reissuing", kind.value, existing.id, email)
                return IssueResult(record=existing, already_pending=True)

        raw = secrets.token_urlsafe(32)
        now = self.clock()
        ttl = self.ttl_for(kind)

        record = EmailToken(
            email=email,
            kind=kind,
            token_hash=hash_token(raw),
            expires_at=now + ttl,
            family_id=family_id if kind == TokenKind.INVITATION else None,
            invited_by_user_id=invited_by_user_id if kind == TokenKind.INVITATION else None,
            created_at=now,
        )
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        logger.info("Issued %s token id=%s for %s (expires %s)", kind.value, record.id, email, record.expires_at.isoformat())

        link = f"{self.cfg.public_app_url}{LINK_PATHS[kind]}?token={raw}"
        ctx = dict(context or {})
        ctx["expires_in"] = _describe(ttl)
        subject, html = render(kind, link, ctx)

        delivered = self.mailer.send(
            Notification(kind=kind, to=email, link=link, subject=subject, html=html, context=ctx)
        )
        if not delivered:
            logger.error("Dispatch of %s token id=%s to %s failed; token left in place", kind.value, record.id, email)
            raise DispatchError()

        return IssueResult(record=record, token=raw)


class TokenConsumer:
    """
    Validates a presented token and applies its effect.

    Per token: Issued -> Consumed | ExpiredDeleted, both terminal and both
    represented by the row being gone. The deleting statement is a
    compare-and-delete in the same transaction as the effect, so of two
    concurrent consumers only the one whose DELETE hits a row proceeds.
    """

    def __init__(
        self,
        session: Session,
        *,
        cfg: Settings = default_settings,
        clock: Clock = utcnow,
    ) -> None:
        self.session = session
        self.cfg = cfg
        self.clock = clock

    # -------------------------
    # Steps
    # -------------------------

    def _lookup(self, kind: TokenKind, raw: Optional[str]) -> EmailToken:
        if not raw:
            raise ValidationError("Token is required")

        record = self.session.exec(select(EmailToken).where(EmailToken.token_hash == hash_token(raw))).first()
        if record is None or record.kind != kind:
            raise InvalidTokenError(_invalid_message(kind))

        if record.is_expired(self.clock()):
            token_id = record.id
            self._delete(token_id)
            self.session.commit()
            logger.info("Deleted expired %s token id=%s", kind.value, token_id)
            raise TokenExpiredError(_expired_message(kind))

        return record

    def _delete(self, token_id: Optional[int]) -> int:
        table = EmailToken.__table__
        result = self.session.connection().execute(delete(table).where(table.c.id == token_id))
        return int(result.rowcount or 0)

    def _claim(self, token_id: Optional[int], kind: TokenKind) -> None:
        if self._delete(token_id) != 1:
            self.session.rollback()
            logger.info("%s token id=%s was consumed concurrently", kind.value, token_id)
            raise InvalidTokenError(_invalid_message(kind))

    def _still_present(self, token_id: Optional[int]) -> bool:
        return self.session.exec(select(EmailToken.id).where(EmailToken.id == token_id)).first() is not None

    def _user_by_email(self, email: str) -> Optional[User]:
        return self.session.exec(select(User).where(User.email == normalize_email(email))).first()

    # -------------------------
    # Effects
    # -------------------------

    def verify_email(self, raw: Optional[str]) -> User:
        record = self._lookup(TokenKind.VERIFICATION, raw)
        token_id = record.id

        user = self._user_by_email(record.email)
        if user is None:
            raise NotFoundError("User not found")

        try:
            self._claim(token_id, TokenKind.VERIFICATION)
            user.mark_verified(self.clock())
            self.session.add(user)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(user)
        logger.info("Verified user id=%s via token id=%s", user.id, token_id)
        return user

    def reset_password(self, raw: Optional[str], password: Optional[str]) -> User:
        if not raw or not password:
            raise ValidationError("Token and password are required")
        validate_new_password(password, self.cfg.password_min_length)

        record = self._lookup(TokenKind.PASSWORD_RESET, raw)
        token_id = record.id

        user = self._user_by_email(record.email)
        if user is None:
            raise NotFoundError("User not found")

        # hash before taking the write lock
        new_hash = hash_password(password, self.cfg.bcrypt_rounds)

        try:
            self._claim(token_id, TokenKind.PASSWORD_RESET)
            user.password_hash = new_hash
            self.session.add(user)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(user)
        logger.info("Password reset for user id=%s via token id=%s", user.id, token_id)
        return user

    def accept_invitation(self, raw: Optional[str], name: Optional[str], password: Optional[str]) -> User:
        name = (name or "").strip()
        if not raw or not name or not password:
            raise ValidationError("Token, name, and password are required")
        validate_new_password(password, self.cfg.password_min_length)

        record = self._lookup(TokenKind.INVITATION, raw)
        token_id = record.id
        email = record.email
        family_id = record.family_id
        invited_by = record.invited_by_user_id
        invited_at = record.created_at

        if family_id is None:
            raise InvalidTokenError(_invalid_message(TokenKind.INVITATION))

        if self._user_by_email(email) is not None:
            # the account may be the one this token just created
            if not self._still_present(token_id):
                raise InvalidTokenError(_invalid_message(TokenKind.INVITATION))
            if self.cfg.invite_conflict_policy == InviteConflictPolicy.DELETE:
                self._delete(token_id)
                self.session.commit()
                logger.info("Deleted invitation token id=%s: %s already has an account", token_id, email)
            raise ConflictError("User already exists")

        pw_hash = hash_password(password, self.cfg.bcrypt_rounds)
        now = self.clock()

        user = User(
            email=email,
            name=name,
            password_hash=pw_hash,
            family_id=family_id,
            is_verified=True,
            verified_at=now,
            invited_by_user_id=invited_by,
            invited_at=invited_at,
            created_at=now,
        )

        try:
            self._claim(token_id, TokenKind.INVITATION)
            self.session.add(user)
            self.session.flush()

            overview = active_overview(self.session, family_id)
            if overview is not None:
                add_member_income(self.session, overview.id, user.id, notes="Invited family member")

            self.session.commit()
        except IntegrityError:
            # a duplicate invitation for the same email was accepted first
            self.session.rollback()
            raise ConflictError("User already exists")
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(user)
        logger.info("Invitation token id=%s accepted: user id=%s joined family id=%s", token_id, user.id, family_id)
        return user


def _invalid_message(kind: TokenKind) -> str:
    if kind == TokenKind.INVITATION:
        return "Invalid invitation token"
    return "Invalid token"


def _expired_message(kind: TokenKind) -> str:
    if kind == TokenKind.INVITATION:
        return "Invitation expired"
    return "Token expired"
