"""
Prometheus metrics for the notification pipeline.

Quick Start:
    >>> from prometheus_client import CollectorRegistry
    >>> from herald.monitoring.metrics import PipelineMetrics, start_metrics_server
    >>>
    >>> start_metrics_server(port=9100)
    >>> metrics = PipelineMetrics()
    >>> metrics.record_outcome("delivered", "verification_code")
    >>>
    >>> # Isolated registry, e.g. in tests
    >>> metrics = PipelineMetrics(registry=CollectorRegistry())
"""

import logging

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)


class PipelineMetrics:
    """
    Prometheus metrics collector for the consumer and producer.

    Exposes the following metrics:
        - {prefix}_records_received_total: Records polled from the log, by topic
        - {prefix}_outcomes_total: Terminal outcomes, by outcome and kind
        - {prefix}_dispatch_attempts_total: Transport attempts, by kind and result
        - {prefix}_dispatch_duration_seconds: Successful dispatch duration, by kind
        - {prefix}_dead_letters_total: Dead-letter writes, by result
        - {prefix}_barrier_errors_total: Unreachable-store errors, by operation
        - {prefix}_commit_failures_total: Offset commits that failed
        - {prefix}_published_total: Envelopes handed to the log, by result
        - {prefix}_consumer_running: 1 while the consumer loop runs
    """

    def __init__(self, prefix: str = "herald", registry: CollectorRegistry | None = None):
        """
        Initialize Prometheus metrics.

        Args:
            prefix: Metric name prefix (default: "herald")
            registry: Registry to register with (default: the global registry)
        """
        self._prefix = prefix
        registry = registry if registry is not None else REGISTRY

        self._records_received = Counter(
            f"{prefix}_records_received_total",
            "Records polled from the log",
            ["topic"],
            registry=registry,
        )

        self._outcomes = Counter(
            f"{prefix}_outcomes_total",
            "Terminal processing outcomes",
            ["outcome", "kind"],
            registry=registry,
        )

        self._dispatch_attempts = Counter(
            f"{prefix}_dispatch_attempts_total",
            "Side-effect attempts",
            ["kind", "result"],
            registry=registry,
        )

        self._dispatch_duration = Histogram(
            f"{prefix}_dispatch_duration_seconds",
            "Duration of successful dispatches, retries included",
            ["kind"],
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=registry,
        )

        self._dead_letters = Counter(
            f"{prefix}_dead_letters_total",
            "Dead-letter writes",
            ["result"],
            registry=registry,
        )

        self._barrier_errors = Counter(
            f"{prefix}_barrier_errors_total",
            "Idempotency store errors",
            ["operation"],
            registry=registry,
        )

        self._commit_failures = Counter(
            f"{prefix}_commit_failures_total",
            "Offset commits that failed",
            registry=registry,
        )

        self._published = Counter(
            f"{prefix}_published_total",
            "Envelopes handed to the log",
            ["result"],
            registry=registry,
        )

        self._running = Gauge(
            f"{prefix}_consumer_running",
            "Whether the consumer loop is running",
            registry=registry,
        )

    def record_received(self, topic: str) -> None:
        self._records_received.labels(topic=topic).inc()

    def record_outcome(self, outcome: str, kind: str | None = None) -> None:
        self._outcomes.labels(outcome=outcome, kind=kind or "unknown").inc()

    def record_dispatch_attempt(self, kind: str, result: str) -> None:
        self._dispatch_attempts.labels(kind=kind, result=result).inc()

    def observe_dispatch_duration(self, kind: str, duration: float) -> None:
        self._dispatch_duration.labels(kind=kind).observe(duration)

    def record_dead_letter(self, success: bool) -> None:
        self._dead_letters.labels(result="success" if success else "failure").inc()

    def record_barrier_error(self, operation: str) -> None:
        self._barrier_errors.labels(operation=operation).inc()

    def record_commit_failure(self) -> None:
        self._commit_failures.inc()

    def record_published(self, success: bool) -> None:
        self._published.labels(result="success" if success else "failure").inc()

    def set_running(self, running: bool) -> None:
        self._running.set(1 if running else 0)


def start_metrics_server(port: int = 9100, addr: str = "0.0.0.0") -> None:
    """
    Start the Prometheus metrics HTTP server.

    Args:
        port: Port to listen on
        addr: Address to bind to
    """
    start_http_server(port, addr=addr)
    logger.info(f"Prometheus metrics server started on {addr}:{port}")
