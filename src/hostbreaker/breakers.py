# === NAVMAP v1 ===
# {
#   "module": "hostbreaker.breakers",
#   "purpose": "Per-host circuit breaker state machine",
#   "sections": [
#     {
#       "id": "breakerstate",
#       "name": "BreakerState",
#       "anchor": "class-breakerstate",
#       "kind": "class"
#     },
#     {
#       "id": "breakerconfig",
#       "name": "BreakerConfig",
#       "anchor": "class-breakerconfig",
#       "kind": "class"
#     },
#     {
#       "id": "breakerstats",
#       "name": "BreakerStats",
#       "anchor": "class-breakerstats",
#       "kind": "class"
#     },
#     {
#       "id": "breakerlistener",
#       "name": "BreakerListener",
#       "anchor": "class-breakerlistener",
#       "kind": "class"
#     },
#     {
#       "id": "breaker",
#       "name": "Breaker",
#       "anchor": "class-breaker",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Circuit breaker state machine for a single remote host.

This module implements the classic breaker state machine
(Closed → Open → Half-Open → Closed) for one breaker key:

- **Pre-flight checking**: `should_allow_request()` reconciles time-based
  transitions and returns whether a request may be issued.
- **Post-response updates**: `record_success()`/`record_failure()` update the
  counters and apply threshold transitions.
- **Window expiry**: counters in Closed/Half-Open are discarded once a window
  of `window_size_s` seconds elapses, so stale history never trips the breaker.
- **Half-open probing**: probes are let through only while
  `successes < success_threshold`; a single probe failure re-opens.

A `Breaker` is not thread-safe on its own. `BreakerManager` serialises every
call for a key behind its registry guard.

Example:
  ```python
  from hostbreaker.breakers import Breaker, BreakerConfig

  breaker = Breaker(BreakerConfig(failure_threshold=2, timeout_s=30))
  if breaker.should_allow_request():
      try:
          send_request()
          breaker.record_success()
      except OSError:
          breaker.record_failure()
  ```
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol

__all__ = (
    "BreakerState",
    "BreakerConfig",
    "BreakerStats",
    "BreakerListener",
    "Breaker",
)

# ────────────────────────────────────────────────────────────────────────────────
# State & config
# ────────────────────────────────────────────────────────────────────────────────


class BreakerState(str, Enum):
    """The three breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerConfig:
    """Thresholds and windows applied to one breaker for its whole lifetime."""

    failure_threshold: int = 5  # failures in Closed that trip to Open
    success_threshold: int = 3  # successes in Half-Open that close again
    timeout_s: float = 60.0  # minimum dwell in Open before a probe
    window_size_s: float = 300.0  # counters in Closed/Half-Open expire after this

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >=1")
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be >=1")
        if self.timeout_s < 0:
            raise ValueError("timeout_s must be >=0")
        if self.window_size_s < 0:
            raise ValueError("window_size_s must be >=0")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BreakerStats:
    """Counters and monotonic timestamps for one breaker.

    ``failures``/``successes`` are counted since the last reset, which happens
    on the transitions listed in :class:`Breaker` and on window expiry.
    """

    state: BreakerState
    failures: int
    successes: int
    last_failure: Optional[float]
    last_success: Optional[float]
    state_changed_at: float
    window_started_at: float

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


class BreakerListener(Protocol):
    """Receives every state transition of a breaker."""

    def state_change(
        self,
        key: str,
        old: BreakerState,
        new: BreakerState,
        stats: BreakerStats,
    ) -> None: ...


# ────────────────────────────────────────────────────────────────────────────────
# State machine
# ────────────────────────────────────────────────────────────────────────────────


class Breaker:
    """
    Circuit breaker for one key.

    Transition rules:
      - Open and ``timeout_s`` elapsed (checked in should_allow_request)
        → Half-Open, ``successes`` reset.
      - Closed and failures reach ``failure_threshold`` → Open.
      - Half-Open and any failure → Open.
      - Half-Open and successes reach ``success_threshold`` → Closed, both
        counters reset.
    Every transition stamps ``state_changed_at`` and restarts the window.
    """

    def __init__(
        self,
        config: Optional[BreakerConfig] = None,
        *,
        key: str = "",
        listener: Optional[BreakerListener] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or BreakerConfig()
        self.key = key
        self.listener = listener
        self._now = clock
        now = self._now()
        self._stats = BreakerStats(
            state=BreakerState.CLOSED,
            failures=0,
            successes=0,
            last_failure=None,
            last_success=None,
            state_changed_at=now,
            window_started_at=now,
        )

    @property
    def state(self) -> BreakerState:
        return self._stats.state

    # ── Public API ────────────────────────────────────────────────────────────

    def should_allow_request(self) -> bool:
        """Reconcile time-based transitions, then return the allow decision."""
        self._update_state()

        st = self._stats
        if st.state is BreakerState.CLOSED:
            return True
        if st.state is BreakerState.OPEN:
            return False
        # Half-open: bound the probes let through before a verdict
        return st.successes < self.config.success_threshold

    def record_success(self) -> None:
        st = self._stats
        st.successes += 1
        st.last_success = self._now()

        if st.state is BreakerState.HALF_OPEN and st.successes >= self.config.success_threshold:
            self._transition(BreakerState.CLOSED)

    def record_failure(self) -> None:
        st = self._stats
        st.failures += 1
        st.last_failure = self._now()

        if st.state is BreakerState.CLOSED and st.failures >= self.config.failure_threshold:
            self._transition(BreakerState.OPEN)
        elif st.state is BreakerState.HALF_OPEN:
            self._transition(BreakerState.OPEN)

    def stats(self) -> BreakerStats:
        """Return a snapshot; mutating it does not affect the breaker."""
        return replace(self._stats)

    # ── Internals ─────────────────────────────────────────────────────────────

    def _update_state(self) -> None:
        st = self._stats
        now = self._now()

        if st.state is BreakerState.OPEN:
            if now - st.state_changed_at >= self.config.timeout_s:
                self._transition(BreakerState.HALF_OPEN)
        elif now - st.window_started_at >= self.config.window_size_s:
            st.failures = 0
            st.successes = 0
            st.window_started_at = now

    def _transition(self, new: BreakerState) -> None:
        st = self._stats
        old = st.state
        now = self._now()
        st.state = new
        st.state_changed_at = now
        st.window_started_at = now

        if new is BreakerState.HALF_OPEN:
            # failures carry over into the probe; successes restart
            st.successes = 0
        elif new is BreakerState.CLOSED:
            st.failures = 0
            st.successes = 0

        if self.listener is not None:
            self.listener.state_change(self.key, old, new, self.stats())

    def __repr__(self) -> str:
        st = self._stats
        return (
            f"Breaker(key={self.key!r}, state={st.state.value}, "
            f"failures={st.failures}, successes={st.successes})"
        )
