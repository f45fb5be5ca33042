"""Breaker-aware HTTPX transports.

Responsibilities
----------------
- Wrap any ``httpx.BaseTransport`` / ``httpx.AsyncBaseTransport`` with a
  pre-flight breaker check keyed by the request host.
- Short-circuit blocked requests with :class:`BreakerOpenError` before the
  inner transport is touched.
- Report outcomes: transport errors and responses classified as failures
  (5xx by default) call ``record_failure``; everything else, 4xx included,
  calls ``record_success``.

Design Notes
------------
- No retries happen here; stack a retrying client above this transport.
- Key extraction errors fall back to the full URL text as key.
- A :class:`BreakerStateError` propagates unless ``fail_open=True``, in which
  case the request is sent unprotected and its outcome is not recorded.

Architecture:
    httpx.Client(transport=BreakerTransport(manager, inner=httpx.HTTPTransport()))
        ├─ key = manager.extract_circuit_breaker_key(url)
        ├─ manager.should_allow_request(key) → BreakerOpenError when blocked
        ├─ inner.handle_request(request)
        └─ manager.record_success / record_failure
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import httpx

from hostbreaker.errors import BreakerKeyError, BreakerOpenError, BreakerStateError
from hostbreaker.manager import BreakerManager

__all__ = (
    "is_failure_response",
    "BreakerTransport",
    "AsyncBreakerTransport",
)

LOGGER = logging.getLogger(__name__)

ResponseClassifier = Callable[[httpx.Response], bool]


def is_failure_response(response: httpx.Response) -> bool:
    """Server errors count against the host; client errors do not."""
    return response.status_code >= 500


class _BreakerGate:
    """Pre-flight and post-response bookkeeping shared by both transports."""

    def __init__(
        self,
        manager: BreakerManager,
        *,
        classify: ResponseClassifier = is_failure_response,
        fail_open: bool = False,
    ) -> None:
        self.manager = manager
        self.classify = classify
        self.fail_open = fail_open

    def key_for(self, request: httpx.Request) -> str:
        url = str(request.url)
        try:
            return self.manager.extract_circuit_breaker_key(url)
        except BreakerKeyError as e:
            LOGGER.debug("breaker key fallback to raw URL", extra={"url": url, "error": e.kind})
            return url

    def admit(self, request: httpx.Request) -> Optional[str]:
        """Return the key to record against, or None when running unprotected."""
        key = self.key_for(request)
        try:
            allowed = self.manager.should_allow_request(key)
        except BreakerStateError:
            if not self.fail_open:
                raise
            LOGGER.warning(
                "breaker state unknown; sending unprotected request",
                extra={"breaker_key": key, "method": request.method},
            )
            return None
        if not allowed:
            LOGGER.debug("breaker-open", extra={"breaker_key": key, "method": request.method})
            raise BreakerOpenError(key)
        return key

    def on_response(self, key: Optional[str], response: httpx.Response) -> None:
        if key is None:
            return
        if self.classify(response):
            self.manager.record_failure(key)
        else:
            self.manager.record_success(key)

    def on_error(self, key: Optional[str], exc: httpx.TransportError) -> None:
        if key is None:
            return
        LOGGER.debug(
            "breaker recording transport failure",
            extra={"breaker_key": key, "exc_type": type(exc).__name__},
        )
        self.manager.record_failure(key)


class BreakerTransport(httpx.BaseTransport):
    """Synchronous transport guarded by a :class:`BreakerManager`."""

    def __init__(
        self,
        manager: BreakerManager,
        inner: Optional[httpx.BaseTransport] = None,
        *,
        classify: ResponseClassifier = is_failure_response,
        fail_open: bool = False,
    ) -> None:
        self.inner = inner or httpx.HTTPTransport()
        self.gate = _BreakerGate(manager, classify=classify, fail_open=fail_open)

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        key = self.gate.admit(request)
        try:
            response = self.inner.handle_request(request)
        except httpx.TransportError as e:
            self.gate.on_error(key, e)
            raise
        self.gate.on_response(key, response)
        return response

    def close(self) -> None:
        self.inner.close()


class AsyncBreakerTransport(httpx.AsyncBaseTransport):
    """Async counterpart of :class:`BreakerTransport`; breaker calls never await."""

    def __init__(
        self,
        manager: BreakerManager,
        inner: Optional[httpx.AsyncBaseTransport] = None,
        *,
        classify: ResponseClassifier = is_failure_response,
        fail_open: bool = False,
    ) -> None:
        self.inner = inner or httpx.AsyncHTTPTransport()
        self.gate = _BreakerGate(manager, classify=classify, fail_open=fail_open)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        key = self.gate.admit(request)
        try:
            response = await self.inner.handle_async_request(request)
        except httpx.TransportError as e:
            self.gate.on_error(key, e)
            raise
        self.gate.on_response(key, response)
        return response

    async def aclose(self) -> None:
        await self.inner.aclose()
