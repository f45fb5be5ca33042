"""URL-level helpers for wiring the breaker manager into an HTTP client.

:class:`UrlBreakerGuard` accepts request URLs instead of keys, deriving the
key on every call through the wrapped :class:`BreakerManager`.
:class:`RequestContext` captures the key once per request so the pre-flight
check and the outcome report are guaranteed to target the same breaker.

Example:
    guard = UrlBreakerGuard(create_default_manager())
    ctx = guard.request_context("https://api.example.com/v1/items", "GET")
    if ctx.should_allow(guard):
        ...
        ctx.record_success(guard)
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional

from hostbreaker.keys import extract_host_with_fallback, is_valid_url
from hostbreaker.manager import BreakerManager, create_default_manager

__all__ = (
    "UrlBreakerGuard",
    "RequestContext",
    "extract_host_with_fallback",
    "is_valid_url",
)


class UrlBreakerGuard:
    """Breaker operations keyed by request URL. Key errors propagate."""

    def __init__(self, manager: Optional[BreakerManager] = None) -> None:
        self.manager = manager or create_default_manager()

    def extract_circuit_breaker_key(self, url: str) -> str:
        return self.manager.extract_circuit_breaker_key(url)

    def should_allow_request(self, url: str) -> bool:
        return self.manager.should_allow_request(self.extract_circuit_breaker_key(url))

    def record_success(self, url: str) -> None:
        self.manager.record_success(self.extract_circuit_breaker_key(url))

    def record_failure(self, url: str) -> None:
        self.manager.record_failure(self.extract_circuit_breaker_key(url))

    def request_context(self, url: str, method: str = "GET") -> "RequestContext":
        return RequestContext.create(url, method, self)

    @staticmethod
    def is_valid_url(url: str) -> bool:
        return is_valid_url(url)

    @staticmethod
    def extract_host(url: str) -> str:
        return extract_host_with_fallback(url)


@dataclass(frozen=True)
class RequestContext:
    """One outbound request bound to its breaker key."""

    url: str
    circuit_breaker_key: str
    method: str
    started_at: float = field(default_factory=time.monotonic)

    @classmethod
    def create(cls, url: str, method: str, guard: UrlBreakerGuard) -> "RequestContext":
        return cls(
            url=url,
            circuit_breaker_key=guard.extract_circuit_breaker_key(url),
            method=method.upper(),
        )

    def elapsed(self) -> float:
        """Seconds since the context was created (monotonic)."""
        return time.monotonic() - self.started_at

    def should_allow(self, guard: UrlBreakerGuard) -> bool:
        return guard.manager.should_allow_request(self.circuit_breaker_key)

    def record_success(self, guard: UrlBreakerGuard) -> None:
        guard.manager.record_success(self.circuit_breaker_key)

    def record_failure(self, guard: UrlBreakerGuard) -> None:
        guard.manager.record_failure(self.circuit_breaker_key)
