"""Tests for JSON log formatting and metrics recording."""

import json
import logging

from prometheus_client import REGISTRY

from livesync.core import metrics
from livesync.core.logging import JsonFormatter


def test_json_formatter_includes_structured_context():
    record = logging.LogRecord(
        "livesync.realtime.channels", logging.WARNING, __file__, 1, "channel_manager.transition", None, None
    )
    record.kind = "progress"
    record.new = "DEGRADED"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["msg"] == "channel_manager.transition"
    assert payload["level"] == "WARNING"
    assert payload["logger"] == "livesync.realtime.channels"
    assert payload["service"] == "livesync"
    assert payload["kind"] == "progress"
    assert payload["new"] == "DEGRADED"


def _sample(name, labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_transitions_are_counted_when_enabled(monkeypatch):
    monkeypatch.setattr(metrics.settings, "METRICS_ENABLED", True)
    labels = {"kind": "tasks", "status": "DEGRADED"}
    before = _sample("livesync_channel_transitions_total", labels)
    metrics.record_transition("tasks", "DEGRADED")
    assert _sample("livesync_channel_transitions_total", labels) == before + 1


def test_recording_is_a_noop_when_disabled(monkeypatch):
    monkeypatch.setattr(metrics.settings, "METRICS_ENABLED", False)
    labels = {"kind": "progress"}
    before = _sample("livesync_poll_ticks_total", labels)
    metrics.record_poll_tick("progress")
    metrics.record_fetch("progress", 0.01, ok=False)
    assert _sample("livesync_poll_ticks_total", labels) == before
