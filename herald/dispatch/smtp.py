"""SMTP email transport."""

import email.message
import email.policy
import email.utils
import logging

import aiosmtplib

from herald.core.exceptions import DeliveryError, PermanentDeliveryError
from herald.dispatch.templates import NotificationRenderer
from herald.dispatch.transport import TransportConfig
from herald.types import NotificationPayload


class SmtpTransport:
    """
    Async SMTP transport using aiosmtplib.

    Recipient rejections (5xx on RCPT) are permanent; connection problems and
    transient server errors are retryable.
    """

    def __init__(
        self,
        config: TransportConfig,
        renderer: NotificationRenderer | None = None,
        logger: logging.Logger | None = None,
    ):
        self.config = config
        self.renderer = renderer or NotificationRenderer()
        self.logger = logger or logging.getLogger(__name__)

    def build_message(self, target: str, payload: NotificationPayload) -> email.message.EmailMessage:
        rendered = self.renderer.render(payload)

        message = email.message.EmailMessage(policy=email.policy.default)
        message["To"] = target
        message["From"] = email.utils.formataddr((self.config.smtp_from_name, self.config.smtp_from))
        message["Subject"] = rendered.subject
        message.set_content(rendered.body_text, subtype="plain", charset="utf-8")
        if rendered.body_html:
            message.add_alternative(rendered.body_html, subtype="html", charset="utf-8")
        return message

    async def send(self, target: str, payload: NotificationPayload) -> None:
        message = self.build_message(target, payload)

        try:
            async with aiosmtplib.SMTP(
                hostname=self.config.smtp_host,
                port=self.config.smtp_port,
                timeout=self.config.smtp_timeout_seconds,
                start_tls=False,
            ) as smtp:
                if self.config.smtp_use_tls:
                    await smtp.starttls()
                if self.config.smtp_user and self.config.smtp_password:
                    await smtp.login(self.config.smtp_user, self.config.smtp_password)
                await smtp.send_message(message)
        except aiosmtplib.SMTPRecipientsRefused as e:
            msg = f"Recipient {target} rejected: {e}"
            raise PermanentDeliveryError(msg) from e
        except aiosmtplib.SMTPResponseException as e:
            if 500 <= e.code < 600:
                msg = f"SMTP server rejected {payload.kind.value} email to {target}: {e.code} {e.message}"
                raise PermanentDeliveryError(msg) from e
            msg = f"SMTP server deferred {payload.kind.value} email to {target}: {e.code} {e.message}"
            raise DeliveryError(msg) from e
        except (aiosmtplib.SMTPException, OSError) as e:
            msg = f"Failed to send email to {target}: {e}"
            raise DeliveryError(msg) from e

        self.logger.info(f"{payload.kind.value} email sent to {target} via SMTP", extra={"kind": payload.kind.value})
