from __future__ import annotations

from prometheus_client import Counter, Histogram

from .settings import settings

CHANNEL_TRANSITIONS = Counter(
    "livesync_channel_transitions_total",
    "Push channel status transitions",
    ["kind", "status"],
)
RECONNECT_ATTEMPTS = Counter(
    "livesync_reconnect_attempts_total",
    "Automatic resubscription attempts",
    ["kind", "trigger"],
)
POLL_TICKS = Counter(
    "livesync_poll_ticks_total",
    "Fallback polling ticks",
    ["kind"],
)
FETCH_FAILURES = Counter(
    "livesync_fetch_failures_total",
    "Failed snapshot fetches",
    ["kind"],
)
FETCH_LATENCY = Histogram(
    "livesync_fetch_latency_seconds",
    "Snapshot fetch latency (s)",
    ["kind"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)
HEARTBEAT_FAILURES = Counter(
    "livesync_heartbeat_failures_total",
    "Failed participant heartbeats",
)


def record_transition(kind: str, status: str) -> None:
    if settings.METRICS_ENABLED:
        CHANNEL_TRANSITIONS.labels(kind=kind, status=status).inc()


def record_reconnect(kind: str, trigger: str) -> None:
    if settings.METRICS_ENABLED:
        RECONNECT_ATTEMPTS.labels(kind=kind, trigger=trigger).inc()


def record_poll_tick(kind: str) -> None:
    if settings.METRICS_ENABLED:
        POLL_TICKS.labels(kind=kind).inc()


def record_fetch(kind: str, seconds: float, ok: bool) -> None:
    if not settings.METRICS_ENABLED:
        return
    FETCH_LATENCY.labels(kind=kind).observe(seconds)
    if not ok:
        FETCH_FAILURES.labels(kind=kind).inc()


def record_heartbeat_failure() -> None:
    if settings.METRICS_ENABLED:
        HEARTBEAT_FAILURES.inc()
