"""
Monitoring: Prometheus metrics and structured logging.
"""

from herald.monitoring.logging import PipelineJsonFormatter, configure_logging
from herald.monitoring.metrics import PipelineMetrics, start_metrics_server

__all__ = [
    "PipelineJsonFormatter",
    "PipelineMetrics",
    "configure_logging",
    "start_metrics_server",
]
