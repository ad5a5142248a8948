from __future__ import annotations

from typing import Optional

import bcrypt

from ..config import settings
from ..errors import ValidationError

_dummy_hash: Optional[bytes] = None


def _to_bytes(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return password.encode("utf-8")[:72]


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    return bcrypt.hashpw(_to_bytes(password), salt).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """
    Constant-time check (bcrypt.checkpw compares digests with a timing-safe compare).
    A malformed stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(_to_bytes(password), hashed.encode("utf-8"))
    except ValueError:
        return False


def burn_password_check(password: str, rounds: Optional[int] = None) -> None:
    """
    Run one bcrypt comparison against a throwaway hash so that the
    "no such user" path costs the same as a real password check.
    """
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = bcrypt.hashpw(b"not-a-real-password", bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds))
    bcrypt.checkpw(_to_bytes(password or ""), _dummy_hash)


def validate_new_password(password: Optional[str], min_length: Optional[int] = None) -> str:
    minimum = min_length if min_length is not None else settings.password_min_length
    if not password:
        raise ValidationError("Password is required")
    if len(password) < minimum:
        raise ValidationError(f"Password must be at least {minimum} characters")
    return password
