# === NAVMAP v1 ===
# {
#   "module": "hostbreaker.manager",
#   "purpose": "Concurrent registry of per-key breakers",
#   "sections": [
#     {
#       "id": "managerconfig",
#       "name": "ManagerConfig",
#       "anchor": "class-managerconfig",
#       "kind": "class"
#     },
#     {
#       "id": "breakermanager",
#       "name": "BreakerManager",
#       "anchor": "class-breakermanager",
#       "kind": "class"
#     },
#     {
#       "id": "create-default-manager",
#       "name": "create_default_manager",
#       "anchor": "function-create-default-manager",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Breaker manager: a lazily populated, lock-guarded registry of breakers.

The manager is the API consumed by the code that issues outbound requests:

    key = manager.extract_circuit_breaker_key(url)      # may raise BreakerKeyError
    if manager.should_allow_request(key):                # may raise BreakerStateError
        try:
            response = send(url)
        except httpx.TransportError:
            manager.record_failure(key)
            raise
        manager.record_success(key)
    else:
        ...  # short-circuit without touching the network

Concurrency
-----------
One ``threading.Lock`` guards both the registry structure and every breaker's
counters; each call holds it for a single O(1) lookup plus a few comparisons.
The guard is acquired with ``lock_timeout_s``; failing to acquire it raises
:class:`BreakerStateError`, which callers must treat as "status unknown".

Breaker transitions are queued under the lock and handed to the listener once
it is released.

The check → call → record sequence is not atomic: concurrent callers may
interleave, so the breaker bounds load on an unhealthy host approximately.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from hostbreaker.breakers import (
    Breaker,
    BreakerConfig,
    BreakerListener,
    BreakerState,
    BreakerStats,
)
from hostbreaker.errors import BreakerStateError
from hostbreaker.keys import BreakerKeyExtractor, UrlKeyExtractor, normalize_authority

__all__ = (
    "DEFAULT_LOCK_TIMEOUT_S",
    "DEFAULT_COMMON_HOSTS",
    "ManagerConfig",
    "BreakerManager",
    "create_default_manager",
)

LOGGER = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_S = 5.0
DEFAULT_COMMON_HOSTS = ("api.example.com", "localhost:3000", "127.0.0.1:8080")


@dataclass(frozen=True)
class ManagerConfig:
    """
    Fully-resolved manager config (see ``hostbreaker.loader``):
    - defaults: applied to every lazily created breaker
    - hosts: per-key overrides (``host`` or ``host:port``)
    - common_hosts: authorities pre-seeded into the key cache
    """

    defaults: BreakerConfig = field(default_factory=BreakerConfig)
    include_port: bool = True
    common_hosts: Tuple[str, ...] = ()
    hosts: Mapping[str, BreakerConfig] = field(default_factory=dict)
    lock_timeout_s: Optional[float] = DEFAULT_LOCK_TIMEOUT_S
    max_cached_hosts: Optional[int] = None


class BreakerManager:
    """
    Registry of per-key breakers created on first reference.

    Usage:
        manager = BreakerManager(BreakerConfig(failure_threshold=3), include_port=True)
        key = manager.extract_circuit_breaker_key("https://api.example.com/v1/items")
        manager.should_allow_request(key)
    """

    def __init__(
        self,
        default_config: Optional[BreakerConfig] = None,
        include_port: bool = True,
        *,
        key_extractor: Optional[BreakerKeyExtractor] = None,
        host_configs: Optional[Mapping[str, BreakerConfig]] = None,
        listener: Optional[BreakerListener] = None,
        clock: Callable[[], float] = time.monotonic,
        lock_timeout_s: Optional[float] = DEFAULT_LOCK_TIMEOUT_S,
        max_cached_hosts: Optional[int] = None,
    ) -> None:
        self.default_config = default_config or BreakerConfig()
        self.include_port = include_port
        if key_extractor is None:
            key_extractor = UrlKeyExtractor(include_port, max_cached_hosts=max_cached_hosts)
        self.key_extractor: BreakerKeyExtractor = key_extractor
        self.host_configs: Dict[str, BreakerConfig] = {
            normalize_authority(k, include_port=True): v for k, v in (host_configs or {}).items()
        }
        self.listener = listener
        self.lock_timeout_s = lock_timeout_s
        self._now = clock

        self._breakers: Dict[str, Breaker] = {}
        self._lock = threading.Lock()
        # transitions raised under the lock, delivered once it is released
        self._pending: List[Tuple[str, BreakerState, BreakerState, BreakerStats]] = []

    @classmethod
    def with_common_hosts(
        cls,
        default_config: Optional[BreakerConfig],
        include_port: bool,
        hosts: Iterable[str],
        **kwargs,
    ) -> "BreakerManager":
        """Build a manager whose key cache is pre-seeded with ``hosts``."""
        extractor = UrlKeyExtractor.with_common_hosts(
            include_port, hosts, max_cached_hosts=kwargs.pop("max_cached_hosts", None)
        )
        return cls(default_config, include_port, key_extractor=extractor, **kwargs)

    @classmethod
    def from_config(
        cls,
        config: ManagerConfig,
        *,
        listener: Optional[BreakerListener] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "BreakerManager":
        return cls.with_common_hosts(
            config.defaults,
            config.include_port,
            config.common_hosts,
            host_configs=config.hosts,
            listener=listener,
            clock=clock,
            lock_timeout_s=config.lock_timeout_s,
            max_cached_hosts=config.max_cached_hosts,
        )

    # ── Public API ────────────────────────────────────────────────────────────

    def extract_circuit_breaker_key(self, url: str) -> str:
        """Derive the breaker key for ``url``; raises :class:`BreakerKeyError`."""
        return self.key_extractor.extract_key(url)

    def should_allow_request(self, key: str) -> bool:
        with self._locked("should_allow_request") as breakers:
            return self._get_or_create(breakers, key).should_allow_request()

    def record_success(self, key: str) -> None:
        """Forward a success; a key never seen before has nothing to record against."""
        with self._locked("record_success") as breakers:
            breaker = breakers.get(key)
            if breaker is not None:
                breaker.record_success()

    def record_failure(self, key: str) -> None:
        """Forward a failure, creating the breaker so the history is kept."""
        with self._locked("record_failure") as breakers:
            self._get_or_create(breakers, key).record_failure()

    def get_stats(self, key: str) -> Optional[BreakerStats]:
        with self._locked("get_stats") as breakers:
            breaker = breakers.get(key)
            return breaker.stats() if breaker is not None else None

    def get_all_stats(self) -> Dict[str, BreakerStats]:
        with self._locked("get_all_stats") as breakers:
            return {key: breaker.stats() for key, breaker in breakers.items()}

    def clear_all(self) -> None:
        """Drop every breaker (tests and administrative reset)."""
        with self._locked("clear_all") as breakers:
            count = len(breakers)
            breakers.clear()
        LOGGER.info("Cleared %d circuit breakers", count)

    def keys(self) -> List[str]:
        with self._locked("keys") as breakers:
            return sorted(breakers)

    def config_for_key(self, key: str) -> BreakerConfig:
        """Per-key override, then the bare-host override, then the default."""
        pol = self.host_configs.get(key)
        if pol is None and ":" in key and not key.endswith("]"):
            pol = self.host_configs.get(key.rsplit(":", 1)[0])
        return pol or self.default_config

    # ── Internals ─────────────────────────────────────────────────────────────

    @contextmanager
    def _locked(self, op: str) -> Iterator[Dict[str, Breaker]]:
        timeout = -1 if self.lock_timeout_s is None else self.lock_timeout_s
        if not self._lock.acquire(timeout=timeout):
            LOGGER.error(
                "Circuit breaker registry lock unavailable",
                extra={"op": op, "lock_timeout_s": self.lock_timeout_s},
            )
            raise BreakerStateError(
                f"breaker registry lock not acquired within {self.lock_timeout_s}s ({op})"
            )
        try:
            yield self._breakers
        finally:
            pending, self._pending = self._pending, []
            self._lock.release()
            self._notify(pending)

    def _defer(
        self, key: str, old: BreakerState, new: BreakerState, stats: BreakerStats
    ) -> None:
        self._pending.append((key, old, new, stats))

    def _notify(self, pending: List[Tuple[str, BreakerState, BreakerState, BreakerStats]]) -> None:
        for key, old, new, stats in pending:
            self.listener.state_change(key, old, new, stats)

    def _get_or_create(self, breakers: Dict[str, Breaker], key: str) -> Breaker:
        breaker = breakers.get(key)
        if breaker is not None:
            return breaker
        breaker = Breaker(
            self.config_for_key(key),
            key=key,
            listener=_DeferredListener(self) if self.listener is not None else None,
            clock=self._now,
        )
        breakers[key] = breaker
        LOGGER.debug("Created circuit breaker for %s", key)
        return breaker


class _DeferredListener:
    """Queues a breaker's transitions on its manager until the registry lock is released."""

    def __init__(self, manager: BreakerManager) -> None:
        self.manager = manager

    def state_change(
        self, key: str, old: BreakerState, new: BreakerState, stats: BreakerStats
    ) -> None:
        self.manager._defer(key, old, new, stats)


def create_default_manager() -> BreakerManager:
    """Manager with default thresholds, ``include_port=True`` and common local hosts seeded."""
    return BreakerManager.with_common_hosts(BreakerConfig(), True, DEFAULT_COMMON_HOSTS)
