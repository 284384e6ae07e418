"""
Side-effect dispatch: retry policy, executor, transports and rendering.
"""

from herald.dispatch.executor import DispatchResult, SideEffectExecutor
from herald.dispatch.retry import BackoffStrategy, RetryPolicy
from herald.dispatch.smtp import SmtpTransport
from herald.dispatch.templates import NotificationRenderer, RenderedNotification
from herald.dispatch.transport import (
    InMemoryTransport,
    LogTransport,
    Transport,
    TransportConfig,
    create_transport,
)

__all__ = [
    "BackoffStrategy",
    "DispatchResult",
    "InMemoryTransport",
    "LogTransport",
    "NotificationRenderer",
    "RenderedNotification",
    "RetryPolicy",
    "SideEffectExecutor",
    "SmtpTransport",
    "Transport",
    "TransportConfig",
    "create_transport",
]
