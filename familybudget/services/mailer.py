from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Any, Dict, List, Optional

import httpx

from ..config import Settings, settings as default_settings
from ..models.email_token import TokenKind

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class Notification:
    """
    One rendered transactional email.
    link carries the raw token, so it is never logged.
    """

    kind: TokenKind
    to: str
    link: str
    subject: str
    html: str
    context: Dict[str, Any] = field(default_factory=dict)


class Mailer:
    """
    Notification dispatcher. send() makes a single attempt and reports
    success as a bool; it must not raise for delivery failures.
    """

    def send(self, notification: Notification) -> bool:  # pragma: no cover - interface
        raise NotImplementedError


class MemoryMailer(Mailer):
    """
    Keeps messages in-process. Default for local dev and the test suite.
    Set fail=True to simulate a provider outage.
    """

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.outbox: List[Notification] = []

    def send(self, notification: Notification) -> bool:
        if self.fail:
            logger.warning("MemoryMailer refusing %s email to %s (fail=True)", notification.kind.value, notification.to)
            return False
        self.outbox.append(notification)
        logger.info("Captured %s email to %s", notification.kind.value, notification.to)
        return True

    def last_for(self, to: str, kind: Optional[TokenKind] = None) -> Optional[Notification]:
        for n in reversed(self.outbox):
            if n.to == to and (kind is None or n.kind == kind):
                return n
        return None


class SmtpMailer(Mailer):
    """
    Plain SMTP without auth/TLS, aimed at a local catcher such as Mailpit.
    """

    def __init__(self, host: str, port: int, sender: str, timeout: float) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.timeout = timeout

    def send(self, notification: Notification) -> bool:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = notification.to
        msg["Subject"] = notification.subject
        msg.set_content("This message requires an HTML-capable mail client.")
        msg.add_alternative(notification.html, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError):
            logger.exception("SMTP delivery to %s via %s:%s failed", notification.to, self.host, self.port)
            return False

        logger.info("Sent %s email to %s via SMTP", notification.kind.value, notification.to)
        return True


class ResendMailer(Mailer):
    """
    Resend HTTP API. One POST per message, bounded by timeout.
    """

    def __init__(
        self,
        api_key: str,
        sender: str,
        timeout: float,
        *,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self._client = client

    def send(self, notification: Notification) -> bool:
        if not self.api_key:
            logger.warning("RESEND_API_KEY is not set; %s email to %s not sent", notification.kind.value, notification.to)
            return False

        payload = {
            "from": self.sender,
            "to": [notification.to],
            "subject": notification.subject,
            "html": notification.html,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            if self._client is not None:
                r = self._client.post(RESEND_API_URL, json=payload, headers=headers, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    r = client.post(RESEND_API_URL, json=payload, headers=headers)
            r.raise_for_status()
        except httpx.HTTPError:
            logger.exception("Resend delivery to %s failed", notification.to)
            return False

        logger.info("Sent %s email to %s via Resend", notification.kind.value, notification.to)
        return True


def build_mailer(cfg: Settings = default_settings) -> Mailer:
    backend = cfg.mail_backend
    if backend == "smtp":
        return SmtpMailer(cfg.smtp_host, cfg.smtp_port, cfg.email_from, cfg.mail_timeout_seconds)
    if backend == "resend":
        return ResendMailer(cfg.resend_api_key, cfg.email_from, cfg.mail_timeout_seconds)
    if backend != "memory":
        logger.warning("Unknown MAIL_BACKEND=%r; falling back to memory", backend)
    return MemoryMailer()
