"""Tests for breaker transition listeners."""

from __future__ import annotations

import logging

from hostbreaker.breakers import Breaker, BreakerConfig, BreakerState
from hostbreaker.listeners import (
    CompositeBreakerListener,
    LoggingBreakerListener,
    TelemetryBreakerListener,
)


class ListSink:
    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(dict(event))


def _trip_and_recover(listener, clock):
    breaker = Breaker(
        BreakerConfig(failure_threshold=1, success_threshold=1, timeout_s=5),
        key="api.example.com",
        listener=listener,
        clock=clock,
    )
    breaker.record_failure()
    clock.advance(5)
    breaker.should_allow_request()
    breaker.record_success()
    return breaker


def test_telemetry_listener_emits_each_transition(clock):
    sink = ListSink()
    _trip_and_recover(TelemetryBreakerListener(sink, run_id="run-1"), clock)

    assert [(e["old"], e["new"]) for e in sink.events] == [
        ("closed", "open"),
        ("open", "half_open"),
        ("half_open", "closed"),
    ]
    first = sink.events[0]
    assert first["event_type"] == "breaker_state_change"
    assert first["run_id"] == "run-1"
    assert first["host"] == "api.example.com"
    assert first["failures"] == 1
    assert first["state_changed_at"] == clock() - 5


def test_logging_listener_levels(clock, caplog):
    with caplog.at_level(logging.INFO, logger="hostbreaker.listeners"):
        _trip_and_recover(LoggingBreakerListener(), clock)

    levels = [(r.new_state, r.levelno) for r in caplog.records if r.name == "hostbreaker.listeners"]
    assert levels == [
        ("open", logging.WARNING),
        ("half_open", logging.INFO),
        ("closed", logging.INFO),
    ]


def test_logging_listener_custom_logger(clock, caplog):
    logger = logging.getLogger("tests.breakers")
    with caplog.at_level(logging.INFO, logger="tests.breakers"):
        _trip_and_recover(LoggingBreakerListener(logger), clock)
    assert any(r.name == "tests.breakers" for r in caplog.records)


def test_composite_listener_fans_out(clock):
    a, b = ListSink(), ListSink()
    listener = CompositeBreakerListener(
        [TelemetryBreakerListener(a), TelemetryBreakerListener(b, run_id="b")]
    )
    breaker = _trip_and_recover(listener, clock)
    assert breaker.state is BreakerState.CLOSED
    assert len(a.events) == len(b.events) == 3
    assert b.events[0]["run_id"] == "b"
