from __future__ import annotations

from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class InviteConflictPolicy(str, Enum):
    """
    What happens to an invitation token when acceptance fails because the
    invited email already belongs to a user.
    """

    KEEP = "keep"
    DELETE = "delete"


def _split_origins(raw: Any) -> List[str]:
    """
    Normalize CORS allow origins from env.

    Supports:
      - list[str] (already parsed)
      - "*"
      - comma-separated string: "https://a.com, https://b.com"
    """
    if raw is None:
        return ["*"]

    if isinstance(raw, list):
        items = [str(x).strip() for x in raw]
        items = [x for x in items if x]
        return items or ["*"]

    s = str(raw).strip()
    if not s or s == "*":
        return ["*"]

    parts = [p.strip() for p in s.split(",")]
    parts = [p for p in parts if p]
    return parts or ["*"]


class Settings(BaseSettings):
    """
    Central app settings.

    Token windows, password rules and the mail backend live here so the
    identity flows never read the environment directly.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # App identity
    env: str = Field(default="local", alias="APP_ENV")
    app_name: str = Field(default="family-budget", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Server runtime (uvicorn)
    host: str = Field(default="127.0.0.1", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # NoDecode: the env value is a comma list, not JSON
    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"], alias="CORS_ALLOW_ORIGINS")

    # Preferred: a real SQLAlchemy URL (SQLite now, Postgres later)
    database_url: str = Field(default="", alias="DATABASE_URL")
    db_path: str = Field(default="./data/family_budget.sqlite", alias="DB_PATH")

    # Sessions / credentials
    secret_key: str = Field(default="dev-only-change-me", alias="SECRET_KEY")
    session_algorithm: str = Field(default="HS256", alias="SESSION_ALGORITHM")
    session_ttl_minutes: int = Field(default=60 * 24 * 30, alias="SESSION_TTL_MINUTES")
    bcrypt_rounds: int = Field(default=10, alias="BCRYPT_ROUNDS")
    password_min_length: int = Field(default=6, alias="PASSWORD_MIN_LENGTH")

    # Token windows
    verification_token_hours: int = Field(default=24, alias="VERIFICATION_TOKEN_HOURS")
    reset_token_minutes: int = Field(default=60, alias="RESET_TOKEN_MINUTES")
    invitation_token_days: int = Field(default=7, alias="INVITATION_TOKEN_DAYS")
    invite_conflict_policy: InviteConflictPolicy = Field(
        default=InviteConflictPolicy.KEEP, alias="INVITE_CONFLICT_POLICY"
    )

    # Links in outgoing email point here
    public_app_url: str = Field(default="http://localhost:3000", alias="PUBLIC_APP_URL")

    # Mail: memory | smtp | resend
    mail_backend: str = Field(default="memory", alias="MAIL_BACKEND")
    email_from: str = Field(default="Family Budget <noreply@familybudget.local>", alias="EMAIL_FROM")
    smtp_host: str = Field(default="localhost", alias="SMTP_HOST")
    smtp_port: int = Field(default=1025, alias="SMTP_PORT")
    resend_api_key: str = Field(default="", alias="RESEND_API_KEY")
    mail_timeout_seconds: float = Field(default=10.0, alias="MAIL_TIMEOUT_SECONDS")

    # -------------------------
    # Validators / normalizers
    # -------------------------

    @field_validator("log_level", mode="before")
    @classmethod
    def _norm_log_level(cls, v: Any) -> str:
        s = ("" if v is None else str(v)).strip().upper()
        return s or "INFO"

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _norm_cors_allow_origins(cls, v: Any) -> list[str]:
        return _split_origins(v)

    @field_validator("public_app_url", mode="before")
    @classmethod
    def _norm_public_app_url(cls, v: Any) -> str:
        return ("" if v is None else str(v)).strip().rstrip("/")

    @field_validator("database_url", mode="before")
    @classmethod
    def _norm_database_url(cls, v: Any) -> str:
        s = ("" if v is None else str(v)).strip()
        # Hosted Postgres often hands out postgres:// but SQLAlchemy needs postgresql://
        if s.startswith("postgres://"):
            s = s.replace("postgres://", "postgresql://", 1)
        return s

    @field_validator("mail_backend", mode="before")
    @classmethod
    def _norm_mail_backend(cls, v: Any) -> str:
        s = ("" if v is None else str(v)).strip().lower()
        return s or "memory"

    @field_validator("invite_conflict_policy", mode="before")
    @classmethod
    def _norm_invite_conflict_policy(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower() or InviteConflictPolicy.KEEP
        return v

    # -------------------------
    # Derived helpers
    # -------------------------

    @property
    def is_prod(self) -> bool:
        return str(self.env).strip().lower() in ("prod", "production")

    @property
    def verification_token_ttl(self) -> timedelta:
        return timedelta(hours=self.verification_token_hours)

    @property
    def reset_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.reset_token_minutes)

    @property
    def invitation_token_ttl(self) -> timedelta:
        return timedelta(days=self.invitation_token_days)

    @property
    def resolved_database_url(self) -> str:
        """
        Priority:
        1) DATABASE_URL if provided
        2) Build sqlite:/// URL from DB_PATH
        """
        if self.database_url:
            return self.database_url

        path = (self.db_path or "").strip() or "./data/family_budget.sqlite"
        if path.startswith("sqlite:"):
            return path

        p = Path(path)
        if not p.is_absolute():
            return f"sqlite:///./{p.as_posix()}"

        # Absolute path needs 4 slashes after scheme (sqlite:////abs/path)
        return f"sqlite:////{p.as_posix().lstrip('/')}"


settings = Settings()
