"""
Notification rendering with Jinja2.

Each event kind has a subject, a plain-text body and an HTML body. Templates
use StrictUndefined so a payload missing a field fails loudly instead of
sending a half-empty email.
"""

import logging
from dataclasses import dataclass, fields

from jinja2 import DictLoader, Environment, StrictUndefined, TemplateError, select_autoescape

from herald.core.exceptions import PermanentDeliveryError
from herald.types import EventKind, NotificationPayload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderedNotification:
    subject: str
    body_text: str
    body_html: str | None = None


_EXPIRY_WORDS = {"m": "minutes", "h": "hours", "s": "seconds"}


def humanize_expiry(value: str) -> str:
    """Turn "10m" into "10 minutes"; anything unrecognised is returned unchanged."""
    number, unit = value[:-1], value[-1:]
    if number.isdigit() and unit in _EXPIRY_WORDS:
        return f"{number} {_EXPIRY_WORDS[unit]}"
    return value


_VERIFICATION_HTML = """\
<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>Verification Code</title>
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: #667eea; padding: 30px; text-align: center; border-radius: 10px 10px 0 0;">
        <h1 style="color: white; margin: 0;">Verification Code</h1>
    </div>
    <div style="background: #f9f9f9; padding: 30px; border-radius: 0 0 10px 10px;">
        <p style="font-size: 16px;">Hello,</p>
        <p style="font-size: 16px;">Your verification code is:</p>
        <div style="background: white; border: 2px solid #667eea; border-radius: 8px; padding: 20px; text-align: center; margin: 20px 0;">
            <span style="font-size: 32px; font-weight: bold; letter-spacing: 8px; color: #667eea;">{{ code }}</span>
        </div>
        <p style="font-size: 14px; color: #666;">This code will expire in <strong>{{ expires_in | expiry }}</strong>.</p>
        <p style="font-size: 14px; color: #666;">If you didn't request this code, you can safely ignore this email.</p>
        <hr style="border: none; border-top: 1px solid #ddd; margin: 30px 0;">
        <p style="font-size: 12px; color: #999; text-align: center;">This is an automated message, please do not reply to this email.</p>
    </div>
</body>
</html>
"""

_WELCOME_HTML = """\
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1>Welcome, {{ username }}!</h1>
    <p>Your account is ready. We are glad to have you on board.</p>
    <p style="font-size: 12px; color: #999;">This is an automated message, please do not reply to this email.</p>
</body>
</html>
"""

_PASSWORD_RESET_HTML = """\
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1>Reset your password</h1>
    <p>Someone asked to reset the password for this account. Use the link below to choose a new one:</p>
    <p><a href="{{ reset_link }}">{{ reset_link }}</a></p>
    <p style="font-size: 14px; color: #666;">If you didn't request a reset, you can safely ignore this email.</p>
</body>
</html>
"""

DEFAULT_TEMPLATES: dict[str, str] = {
    "verification_code.subject": "Your Verification Code",
    "verification_code.txt": (
        "Your verification code is: {{ code }}\n\n"
        "This code will expire in {{ expires_in | expiry }}.\n"
        "If you didn't request this code, you can safely ignore this email.\n"
    ),
    "verification_code.html": _VERIFICATION_HTML,
    "welcome.subject": "Welcome, {{ username }}",
    "welcome.txt": "Welcome, {{ username }}!\n\nYour account is ready.\n",
    "welcome.html": _WELCOME_HTML,
    "password_reset.subject": "Reset your password",
    "password_reset.txt": (
        "Use this link to reset your password:\n{{ reset_link }}\n\n"
        "If you didn't request a reset, you can safely ignore this email.\n"
    ),
    "password_reset.html": _PASSWORD_RESET_HTML,
}


class NotificationRenderer:
    """
    Renders typed payloads into email content.

    Usage:
        >>> renderer = NotificationRenderer()
        >>> rendered = renderer.render(VerificationCodePayload(code="123456"))
        >>> rendered.subject
        'Your Verification Code'
    """

    def __init__(self, templates: dict[str, str] | None = None):
        self.env = Environment(
            loader=DictLoader({**DEFAULT_TEMPLATES, **(templates or {})}),
            undefined=StrictUndefined,
            autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
            keep_trailing_newline=True,
        )
        self.env.filters["expiry"] = humanize_expiry

    def render(self, payload: NotificationPayload) -> RenderedNotification:
        """
        Render subject, text and HTML for `payload`.

        Raises:
            PermanentDeliveryError: If a template fails to render; retrying cannot fix it
        """
        kind: EventKind = payload.kind
        context = {f.name: getattr(payload, f.name) for f in fields(payload)}
        try:
            subject = self.env.get_template(f"{kind.value}.subject").render(context).strip()
            body_text = self.env.get_template(f"{kind.value}.txt").render(context)
            body_html = self.env.get_template(f"{kind.value}.html").render(context)
        except TemplateError as e:
            logger.error(f"Template rendering failed for {kind.value}: {e}")
            msg = f"Cannot render {kind.value} notification: {e}"
            raise PermanentDeliveryError(msg) from e

        return RenderedNotification(subject=subject, body_text=body_text, body_html=body_html)
