"""
Prometheus metrics for the replay engine.

Environment Variables:
    FINREPLAY_METRICS_ENABLED: Start the /metrics HTTP server (true/false) - default: false
    FINREPLAY_METRICS_PORT: HTTP port for /metrics - default: 9108

Usage:
    from finreplay.metrics import start_metrics_server

    start_metrics_server(enabled=True, port=9108)
"""

import logging

from prometheus_client import Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)

REPLAY_DURATION = Histogram(
    "finreplay_replay_duration_seconds",
    "Duration of replay_to_date calls in seconds",
    labelnames=["mode"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0),
)

DELTAS_APPLIED = Counter(
    "finreplay_deltas_applied_total",
    "Total number of deltas folded during replays",
)

SNAPSHOT_CREATE_DURATION = Histogram(
    "finreplay_snapshot_create_duration_seconds",
    "Duration of snapshot creation in seconds",
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0),
)

INTEGRITY_FAILURES = Counter(
    "finreplay_integrity_failures_total",
    "Total number of snapshot integrity or decode failures",
)

REPLAY_TIMEOUTS = Counter(
    "finreplay_replay_timeouts_total",
    "Total number of replays aborted by their deadline",
)


def start_metrics_server(enabled: bool, port: int) -> None:
    """
    Start Prometheus metrics HTTP server in background thread.

    Args:
        enabled: Whether to start metrics server
        port: HTTP port for /metrics endpoint
    """
    if not enabled:
        logger.info("Metrics server disabled")
        return
    start_http_server(port, addr="0.0.0.0")
    logger.info("Metrics server started on http://0.0.0.0:%d/metrics", port)


def observe_replay(mode: str, elapsed_seconds: float, deltas: int) -> None:
    REPLAY_DURATION.labels(mode=mode).observe(elapsed_seconds)
    DELTAS_APPLIED.inc(deltas)


def observe_snapshot_created(elapsed_seconds: float) -> None:
    SNAPSHOT_CREATE_DURATION.observe(elapsed_seconds)


def record_integrity_failure() -> None:
    INTEGRITY_FAILURES.inc()


def record_timeout() -> None:
    REPLAY_TIMEOUTS.inc()
