from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..config import Settings, settings as default_settings
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.category import Category, DEFAULT_CATEGORIES
from ..models.email_token import EmailToken, TokenKind
from ..models.user import Family, User, normalize_email, utcnow
from .passwords import hash_password, validate_new_password
from .tokens import Clock, TokenIssuer

logger = logging.getLogger(__name__)

# One body for every forgot-password outcome
RESET_REQUESTED_MESSAGE = "If an account exists, a password reset email has been sent"


def find_user(session: Session, email: str) -> Optional[User]:
    return session.exec(select(User).where(User.email == normalize_email(email))).first()


def _family_name(session: Session, family_id: int) -> str:
    family = session.get(Family, family_id)
    return family.name if family else "your family"


def signup(
    session: Session,
    *,
    email: Optional[str],
    password: Optional[str],
    name: Optional[str],
    cfg: Settings = default_settings,
    clock: Clock = utcnow,
) -> User:
    """
    Root signup: family, verified user and default categories, all in one commit.
    """
    email = normalize_email(email)
    name = (name or "").strip()
    if not email or not password or not name:
        raise ValidationError("Missing required fields")
    validate_new_password(password, cfg.password_min_length)

    if find_user(session, email) is not None:
        raise ConflictError("User already exists")

    pw_hash = hash_password(password, cfg.bcrypt_rounds)
    now = clock()

    try:
        family = Family(name=f"{name}'s Family", created_at=now)
        session.add(family)
        session.flush()

        user = User(
            email=email,
            name=name,
            password_hash=pw_hash,
            family_id=family.id,
            is_verified=True,
            verified_at=now,
            created_at=now,
        )
        session.add(user)

        for cat in DEFAULT_CATEGORIES:
            session.add(Category(family_id=family.id, created_at=now, **cat))

        session.commit()
    except IntegrityError:
        session.rollback()
        raise ConflictError("User already exists")
    except Exception:
        session.rollback()
        raise

    session.refresh(user)
    logger.info("Signup: user id=%s created family id=%s", user.id, user.family_id)
    return user


def request_verification(session: Session, issuer: TokenIssuer, *, email: Optional[str]) -> str:
    """
    Sends a fresh verification link. Returns the message for the caller.
    """
    email = normalize_email(email)
    if not email:
        raise ValidationError("Email is required")

    user = find_user(session, email)
    if user is None:
        raise NotFoundError("User not found")

    if user.is_verified:
        return "Email already verified"

    issuer.issue(TokenKind.VERIFICATION, email)
    return "Verification email sent"


def request_password_reset(session: Session, issuer: TokenIssuer, *, email: Optional[str]) -> str:
    """
    Mints a reset token only for known accounts. Unknown email, known email and
    already-pending reset all produce the same message.
    """
    email = normalize_email(email)
    if not email:
        raise ValidationError("Email is required")

    user = find_user(session, email)
    if user is None:
        logger.info("Password reset requested for unknown email %s", email)
        return RESET_REQUESTED_MESSAGE

    issuer.issue(TokenKind.PASSWORD_RESET, email)
    return RESET_REQUESTED_MESSAGE


def invite_member(session: Session, issuer: TokenIssuer, *, inviter: User, email: Optional[str]) -> EmailToken:
    email = normalize_email(email)
    if not email:
        raise ValidationError("Email is required")

    existing = find_user(session, email)
    if existing is not None:
        if existing.family_id == inviter.family_id:
            raise ConflictError("User is already a member of your family")
        raise ConflictError("User already exists with another family")

    family_name = _family_name(session, inviter.family_id)

    result = issuer.issue(
        TokenKind.INVITATION,
        email,
        family_id=inviter.family_id,
        invited_by_user_id=inviter.id,
        context={"inviter_name": inviter.name, "family_name": family_name},
    )
    if result.already_pending:
        raise ConflictError("An invitation has already been sent to this email")

    logger.info("User id=%s invited %s to family id=%s", inviter.id, email, inviter.family_id)
    return result.record


def pending_invitations(session: Session, family_id: int, *, now=None) -> List[EmailToken]:
    q = (
        select(EmailToken)
        .where(
            EmailToken.kind == TokenKind.INVITATION,
            EmailToken.family_id == family_id,
            EmailToken.expires_at > (now or utcnow()),
        )
        .order_by(EmailToken.created_at.desc(), EmailToken.id.desc())
    )
    return list(session.exec(q).all())


def resend_invitation(session: Session, issuer: TokenIssuer, *, inviter: User, email: Optional[str]) -> EmailToken:
    """
    Replace every invitation this family holds for email (live or lapsed)
    with a fresh one. The old links stop working.
    """
    email = normalize_email(email)
    if not email:
        raise ValidationError("Email is required")

    table = EmailToken.__table__
    match = (
        (table.c.kind == TokenKind.INVITATION)
        & (table.c.email == email)
        & (table.c.family_id == inviter.family_id)
    )
    if session.connection().execute(select(func.count()).select_from(table).where(match)).scalar_one() == 0:
        raise NotFoundError("Invitation not found")

    if find_user(session, email) is not None:
        raise ConflictError("User already exists")

    session.connection().execute(delete(table).where(match))
    session.commit()

    result = issuer.issue(
        TokenKind.INVITATION,
        email,
        family_id=inviter.family_id,
        invited_by_user_id=inviter.id,
        context={"inviter_name": inviter.name, "family_name": _family_name(session, inviter.family_id)},
    )
    logger.info("User id=%s resent invitation to %s for family id=%s", inviter.id, email, inviter.family_id)
    return result.record


def update_profile(session: Session, user: User, *, name: Optional[str] = None, email: Optional[str] = None) -> User:
    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("Name cannot be empty")
        user.name = name

    if email is not None:
        email = normalize_email(email)
        if not email:
            raise ValidationError("Email cannot be empty")
        other = find_user(session, email)
        if other is not None and other.id != user.id:
            raise ConflictError("Email already in use")
        user.email = email

    try:
        session.add(user)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ConflictError("Email already in use")

    session.refresh(user)
    return user
