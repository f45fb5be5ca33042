"""Listeners for breaker state transitions.

Typical Usage:
    from hostbreaker.listeners import LoggingBreakerListener, TelemetryBreakerListener

    manager = BreakerManager(BreakerConfig(), include_port=True,
                             listener=LoggingBreakerListener())

    # or forward structured events to any sink exposing emit(mapping)
    manager = BreakerManager(BreakerConfig(), include_port=True,
                             listener=TelemetryBreakerListener(sink, run_id="run-123"))

A manager delivers transitions after releasing its registry lock, in the order
they occurred, so listeners may call back into the manager.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from hostbreaker.breakers import BreakerListener, BreakerState, BreakerStats

__all__ = (
    "BreakerTelemetrySink",
    "LoggingBreakerListener",
    "TelemetryBreakerListener",
    "CompositeBreakerListener",
)

LOGGER = logging.getLogger(__name__)


class BreakerTelemetrySink(Protocol):
    """Protocol for emitting breaker telemetry events."""

    def emit(self, event: Mapping[str, Any]) -> None: ...


class LoggingBreakerListener:
    """Logs every transition; openings at WARNING, everything else at INFO."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or LOGGER

    def state_change(
        self, key: str, old: BreakerState, new: BreakerState, stats: BreakerStats
    ) -> None:
        level = logging.WARNING if new is BreakerState.OPEN else logging.INFO
        self.logger.log(
            level,
            "breaker %s: %s -> %s (failures=%d successes=%d)",
            key,
            old.value,
            new.value,
            stats.failures,
            stats.successes,
            extra={
                "breaker_key": key,
                "old_state": old.value,
                "new_state": new.value,
                "failures": stats.failures,
                "successes": stats.successes,
            },
        )


@dataclass
class TelemetryBreakerListener:
    """Emits ``breaker_state_change`` events to a telemetry sink."""

    sink: BreakerTelemetrySink
    run_id: Optional[str] = None

    def state_change(
        self, key: str, old: BreakerState, new: BreakerState, stats: BreakerStats
    ) -> None:
        payload = {
            "event_type": "breaker_state_change",
            "ts": time.time(),
            "run_id": self.run_id,
            "host": key,
            "old": old.value,
            "new": new.value,
        }
        payload.update(
            failures=stats.failures,
            successes=stats.successes,
            state_changed_at=stats.state_changed_at,
        )
        self.sink.emit(payload)


@dataclass
class CompositeBreakerListener:
    """Fans a transition out to several listeners in order."""

    listeners: Sequence[BreakerListener]

    def state_change(
        self, key: str, old: BreakerState, new: BreakerState, stats: BreakerStats
    ) -> None:
        for listener in self.listeners:
            listener.state_change(key, old, new, stats)
