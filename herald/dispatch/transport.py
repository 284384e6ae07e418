"""
Transports perform the external side effect for one envelope.

A transport raises DeliveryError for a failed attempt that may succeed when
retried, and PermanentDeliveryError when it cannot.
"""

import logging
import os
from collections import deque
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from herald.core.env import get_env
from herald.core.exceptions import ConfigurationError, DeliveryError
from herald.dispatch.templates import NotificationRenderer
from herald.types import NotificationPayload


@runtime_checkable
class Transport(Protocol):
    """Performs the side effect described by a payload for one target."""

    async def send(self, target: str, payload: NotificationPayload) -> None:
        """
        Perform the side effect.

        Raises:
            DeliveryError: If the attempt failed
        """
        ...


@dataclass
class TransportConfig:
    """
    Transport selection and SMTP settings.

    Attributes:
        mode: "log" (development) or "smtp"
        smtp_host: SMTP server host
        smtp_port: SMTP server port
        smtp_user: Login user; login is skipped when unset
        smtp_password: Login password
        smtp_from: Envelope sender address
        smtp_from_name: Display name for the From header
        smtp_use_tls: Issue STARTTLS after connecting
        smtp_timeout_seconds: Connect and command timeout
    """

    mode: str = "log"
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_from: str = "noreply@example.com"
    smtp_from_name: str = "Your App"
    smtp_use_tls: bool = True
    smtp_timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "TransportConfig":
        return cls(
            mode=(os.getenv("EMAIL_MODE") or "log").lower(),
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=int(os.getenv("SMTP_PORT") or 587),
            smtp_user=os.getenv("SMTP_USER") or None,
            smtp_password=os.getenv("SMTP_PASSWORD") or None,
            smtp_from=os.getenv("SMTP_FROM") or "noreply@example.com",
            smtp_from_name=os.getenv("SMTP_FROM_NAME") or "Your App",
            smtp_use_tls=get_env().get_bool("SMTP_USE_TLS", True),
        )

    def validate(self) -> None:
        if self.mode not in ("log", "smtp"):
            msg = f"EMAIL_MODE must be 'log' or 'smtp', got {self.mode!r}"
            raise ConfigurationError(msg)
        if self.mode == "smtp" and not self.smtp_host:
            msg = "SMTP_HOST is required when EMAIL_MODE=smtp"
            raise ConfigurationError(msg)


class LogTransport:
    """
    Development transport: logs the rendered notification instead of sending it.
    """

    def __init__(self, renderer: NotificationRenderer | None = None, logger: logging.Logger | None = None):
        self.renderer = renderer or NotificationRenderer()
        self.logger = logger or logging.getLogger(__name__)

    async def send(self, target: str, payload: NotificationPayload) -> None:
        rendered = self.renderer.render(payload)
        self.logger.info(
            f"[DEV] {payload.kind.value} for {target}: {rendered.subject}\n{rendered.body_text}",
            extra={"kind": payload.kind.value},
        )


class InMemoryTransport:
    """
    Records every send. Failures can be scripted per attempt.

    Usage:
        >>> transport = InMemoryTransport()
        >>> transport.fail_next(2)  # first two attempts fail, third succeeds
        >>> transport.fail_always(PermanentDeliveryError("rejected"))
    """

    def __init__(self):
        self.sent: list[tuple[str, NotificationPayload]] = []
        self.attempts: list[tuple[str, NotificationPayload]] = []
        self._scripted: deque[Exception] = deque()
        self._always: Exception | None = None

    def fail_next(self, count: int = 1, error: Exception | None = None) -> None:
        for _ in range(count):
            self._scripted.append(error or DeliveryError("scripted transport failure"))

    def fail_always(self, error: Exception | None = None) -> None:
        self._always = error or DeliveryError("transport unavailable")

    def recover(self) -> None:
        self._scripted.clear()
        self._always = None

    async def send(self, target: str, payload: NotificationPayload) -> None:
        self.attempts.append((target, payload))
        if self._scripted:
            raise self._scripted.popleft()
        if self._always is not None:
            raise self._always
        self.sent.append((target, payload))

    def sent_to(self, target: str) -> list[NotificationPayload]:
        return [payload for sent_target, payload in self.sent if sent_target == target]


def create_transport(config: TransportConfig, logger: logging.Logger | None = None) -> Transport:
    """Build the transport selected by `config.mode`."""
    config.validate()
    if config.mode == "smtp":
        from herald.dispatch.smtp import SmtpTransport

        return SmtpTransport(config, logger=logger)
    return LogTransport(logger=logger)
