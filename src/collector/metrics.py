"""
Prometheus metrics for the log collector.

Focused on essential metrics:
- Pod lifecycle counts
- Bytes delivered and bytes awaiting retry
- Sink, poll and integrity error rates
"""

import logging
import socket

from prometheus_client import REGISTRY, Counter, Gauge, start_http_server

logger = logging.getLogger(__name__)


# =============================================================================
# Core Metrics
# =============================================================================

pods_gauge = Gauge(
    "collector_pods",
    "Number of Pods by lifecycle state",
    labelnames=["state"],
)

sent_bytes_counter = Counter(
    "collector_sent_bytes",
    "Total record bytes accepted by the sink",
)

unacked_bytes_gauge = Gauge(
    "collector_unacked_bytes",
    "Record bytes waiting in retry queues",
)

sink_failures_counter = Counter(
    "collector_sink_failures",
    "Total failed POSTs to the sink",
)

poll_errors_counter = Counter(
    "collector_poll_errors",
    "Total failed batch discovery requests",
)

integrity_errors_counter = Counter(
    "collector_integrity_errors",
    "Total batches skipped for offset/size inconsistencies",
)


# =============================================================================
# Convenience Functions
# =============================================================================


def record_sent_bytes(size: int) -> None:
    sent_bytes_counter.inc(size)


def record_sink_failure() -> None:
    sink_failures_counter.inc()


def record_poll_error() -> None:
    poll_errors_counter.inc()


def record_integrity_error() -> None:
    integrity_errors_counter.inc()


def update_fleet_gauges(state_counts: dict[str, int], unacked_bytes: int) -> None:
    """Set Pod-state and unacked-bytes gauges from a fleet snapshot."""
    for state, count in state_counts.items():
        pods_gauge.labels(state=state).set(count)
    unacked_bytes_gauge.set(unacked_bytes)


def start_metrics_server(preferred_port: int) -> int:
    """Start Prometheus metrics server with automatic port fallback.
    Returns actual port number that the server is listening on."""
    try:
        start_http_server(preferred_port, registry=REGISTRY)
        return preferred_port
    except OSError as e:
        if e.errno != 98:
            raise

        logger.info(
            "Port already in use, finding available port",
            extra={"error": str(e)},
        )
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("", 0))
            s.listen(1)
            available_port = s.getsockname()[1]

        start_http_server(available_port, registry=REGISTRY)
        return available_port
