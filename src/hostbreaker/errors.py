"""Error taxonomy for breaker key extraction and registry access.

Responsibilities
----------------
- Define :class:`BreakerKeyError` and its subclasses, raised only by the
  fallible URL → key extraction path. Each carries the offending URL so callers
  can log it and pick a fallback key.
- Define :class:`BreakerStateError`, raised when the manager cannot obtain its
  registry guard. Callers must read it as "breaker status unknown", never as
  "allowed".
- Define :class:`BreakerOpenError`, raised by the HTTPX transport adapter when
  a request is short-circuited.

Design Notes
------------
- None of these errors are fatal to the process; ``BreakerManager.clear_all``
  restores a known-good baseline.
"""

from __future__ import annotations

__all__ = (
    "CircuitBreakerError",
    "BreakerKeyError",
    "InvalidUrlError",
    "MissingHostError",
    "UrlParseError",
    "BreakerStateError",
    "BreakerOpenError",
)


class CircuitBreakerError(Exception):
    """Base class for every error raised by :mod:`hostbreaker`."""


class BreakerKeyError(CircuitBreakerError):
    """A breaker key could not be derived from ``url``."""

    kind = "key_error"

    def __init__(self, message: str, *, url: str) -> None:
        super().__init__(message)
        self.url = url


class InvalidUrlError(BreakerKeyError):
    """Input is not an absolute URL."""

    kind = "invalid_url"

    def __init__(self, url: str) -> None:
        super().__init__(f"Invalid URL: {url!r}", url=url)


class MissingHostError(BreakerKeyError):
    """URL parsed but carries no host component."""

    kind = "missing_host"

    def __init__(self, url: str) -> None:
        super().__init__(f"Missing host in URL: {url!r}", url=url)


class UrlParseError(BreakerKeyError):
    """URL syntax could not be parsed (bad IPv6 literal, bad port, ...)."""

    kind = "parse_error"

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"URL parsing failed for {url!r}: {reason}", url=url)
        self.reason = reason


class BreakerStateError(CircuitBreakerError):
    """The breaker registry guard could not be acquired."""


class BreakerOpenError(CircuitBreakerError):
    """Raised by the transport adapter when the breaker for ``key`` blocks a request."""

    def __init__(self, key: str, message: str | None = None) -> None:
        super().__init__(message or f"circuit open for {key}")
        self.key = key
