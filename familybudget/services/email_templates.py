from __future__ import annotations

from html import escape
from typing import Any, Dict, Tuple

from ..models.email_token import TokenKind

_LAYOUT = """<!DOCTYPE html>
<html>
  <head><meta charset="utf-8"><title>{title}</title></head>
  <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: linear-gradient(to right, #4f46e5, #7c3aed); padding: 20px; border-radius: 10px 10px 0 0;">
      <h1 style="color: white; margin: 0; text-align: center;">Family Budget</h1>
    </div>
    <div style="background: #f9fafb; padding: 30px; border-radius: 0 0 10px 10px;">
      <h2 style="color: #1f2937;">{heading}</h2>
      <p>{body}</p>
      <p style="text-align: center; margin: 30px 0;">
        <a href="{link}" style="background: {button_color}; color: white; padding: 12px 30px; text-decoration: none; border-radius: 5px; font-weight: bold;">{button}</a>
      </p>
      <p style="color: #6b7280; font-size: 14px;">Or copy and paste this link into your browser:</p>
      <p style="color: #4f46e5; font-size: 14px; word-break: break-all;">{link}</p>
      <hr style="border: none; border-top: 1px solid #e5e7eb; margin: 30px 0;">
      <p style="color: #6b7280; font-size: 12px; text-align: center;">{footer}</p>
    </div>
  </body>
</html>
"""

LINK_PATHS: Dict[TokenKind, str] = {
    TokenKind.VERIFICATION: "/auth/verify-email",
    TokenKind.PASSWORD_RESET: "/auth/reset-password",
    TokenKind.INVITATION: "/auth/accept-invite",
}


def render(kind: TokenKind, link: str, context: Dict[str, Any]) -> Tuple[str, str]:
    """
    Returns (subject, html) for one outgoing token email.
    """
    ttl = escape(str(context.get("expires_in", "")))

    if kind == TokenKind.VERIFICATION:
        subject = "Verify your Family Budget account"
        parts = dict(
            title="Verify your email",
            heading="Verify your email address",
            body="Thank you for signing up! Please click the button below to verify your email address and activate your account.",
            button="Verify Email",
            button_color="#4f46e5",
            footer=f"This link will expire in {ttl}. If you didn't create an account, you can safely ignore this email.",
        )
    elif kind == TokenKind.PASSWORD_RESET:
        subject = "Reset your Family Budget password"
        parts = dict(
            title="Reset your password",
            heading="Reset your password",
            body="We received a request to reset your password. Click the button below to create a new password.",
            button="Reset Password",
            button_color="#ef4444",
            footer=f"This link will expire in {ttl}. If you didn't request a password reset, you can safely ignore this email.",
        )
    else:
        inviter = escape(str(context.get("inviter_name") or "A family member"))
        family = escape(str(context.get("family_name") or "their family"))
        subject = f"{context.get('inviter_name') or 'A family member'} invited you to join {context.get('family_name') or 'their family'} on Family Budget"
        parts = dict(
            title="Family invitation",
            heading=f"You're invited to join {family}!",
            body=f"{inviter} has invited you to join their family budget. Click the button below to accept the invitation and create your account.",
            button="Accept Invitation",
            button_color="#10b981",
            footer=f"This invitation will expire in {ttl}. If you don't know {inviter}, you can safely ignore this email.",
        )

    html = _LAYOUT.format(link=escape(link, quote=True), **parts)
    return subject, html
