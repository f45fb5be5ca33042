# === NAVMAP v1 ===
# {
#   "module": "tests.test_transport",
#   "purpose": "Integration tests for breaker-aware HTTPX transports",
#   "sections": [
#     {"id": "test-preflight", "name": "TestPreflight", "kind": "class"},
#     {"id": "test-postflight", "name": "TestPostflight", "kind": "class"},
#     {"id": "test-state-errors", "name": "TestStateErrors", "kind": "class"},
#     {"id": "test-async", "name": "TestAsyncTransport", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Integration tests for the breaker transports.

Tests the interaction between BreakerManager and HTTPX request handling:
- Pre-flight checks short-circuit before the inner transport is called
- Post-response success/failure classification (5xx and transport errors fail)
- BreakerStateError propagation and the fail-open escape hatch
- Async transport parity
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from hostbreaker.breakers import BreakerConfig, BreakerState
from hostbreaker.errors import BreakerOpenError, BreakerStateError
from hostbreaker.manager import BreakerManager
from hostbreaker.transport import AsyncBreakerTransport, BreakerTransport, is_failure_response


class CountingHandler:
    """MockTransport handler replaying a fixed list of statuses or exceptions."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else 200
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, request=request)


@pytest.fixture
def manager(clock):
    return BreakerManager(
        BreakerConfig(failure_threshold=2, success_threshold=1, timeout_s=30),
        include_port=True,
        clock=clock,
    )


def _client(manager, handler, **kwargs):
    transport = BreakerTransport(manager, httpx.MockTransport(handler), **kwargs)
    return httpx.Client(transport=transport)


# ============================================================================
# Pre-flight
# ============================================================================


class TestPreflight:
    def test_open_breaker_short_circuits(self, manager):
        handler = CountingHandler([503, 503])
        with _client(manager, handler) as client:
            client.get("https://api.example.org/v1/a")
            client.get("https://api.example.org/v1/b")
            with pytest.raises(BreakerOpenError) as exc_info:
                client.get("https://api.example.org/v1/c")
        assert exc_info.value.key == "api.example.org"
        assert handler.calls == 2

    def test_other_hosts_unaffected(self, manager):
        manager.record_failure("api.example.org")
        manager.record_failure("api.example.org")
        handler = CountingHandler([200])
        with _client(manager, handler) as client:
            assert client.get("https://other.example.org/").status_code == 200

    def test_recovers_after_timeout(self, manager, clock):
        handler = CountingHandler([500, 500, 200])
        with _client(manager, handler) as client:
            client.get("https://api.example.org/")
            client.get("https://api.example.org/")
            clock.advance(30)
            assert client.get("https://api.example.org/").status_code == 200
        assert manager.get_stats("api.example.org").state is BreakerState.CLOSED


# ============================================================================
# Post-flight
# ============================================================================


class TestPostflight:
    def test_server_error_records_failure(self, manager):
        with _client(manager, CountingHandler([502])) as client:
            client.get("https://api.example.org/")
        assert manager.get_stats("api.example.org").failures == 1

    def test_client_error_records_success(self, manager):
        with _client(manager, CountingHandler([404])) as client:
            client.get("https://api.example.org/")
        stats = manager.get_stats("api.example.org")
        assert stats.failures == 0
        assert stats.successes == 1

    def test_transport_error_records_failure_and_reraises(self, manager):
        handler = CountingHandler([httpx.ConnectError("refused")])
        with _client(manager, handler) as client:
            with pytest.raises(httpx.ConnectError):
                client.get("https://api.example.org/")
        assert manager.get_stats("api.example.org").failures == 1

    def test_timeout_records_failure(self, manager):
        handler = CountingHandler([httpx.ReadTimeout("slow"), httpx.ReadTimeout("slow")])
        with _client(manager, handler) as client:
            for _ in range(2):
                with pytest.raises(httpx.ReadTimeout):
                    client.get("https://api.example.org/")
        assert manager.get_stats("api.example.org").state is BreakerState.OPEN

    def test_custom_classifier(self, manager):
        with _client(
            manager, CountingHandler([429]), classify=lambda r: r.status_code in (429, 503)
        ) as client:
            client.get("https://api.example.org/")
        assert manager.get_stats("api.example.org").failures == 1

    def test_default_classifier(self):
        assert is_failure_response(httpx.Response(500))
        assert not is_failure_response(httpx.Response(499))
        assert not is_failure_response(httpx.Response(200))

    def test_port_in_key(self, manager):
        with _client(manager, CountingHandler([500])) as client:
            client.get("http://api.example.org:8080/")
        assert manager.get_stats("api.example.org:8080").failures == 1


# ============================================================================
# State errors
# ============================================================================


class FailingManager(BreakerManager):
    def should_allow_request(self, key):
        raise BreakerStateError("registry lock unavailable")


class TestStateErrors:
    def test_state_error_propagates(self):
        handler = CountingHandler([200])
        with _client(FailingManager(), handler) as client:
            with pytest.raises(BreakerStateError):
                client.get("https://api.example.org/")
        assert handler.calls == 0

    def test_fail_open_sends_unrecorded(self):
        manager = FailingManager()
        handler = CountingHandler([500])
        with _client(manager, handler, fail_open=True) as client:
            assert client.get("https://api.example.org/").status_code == 500
        assert handler.calls == 1
        assert manager.get_stats("api.example.org") is None


# ============================================================================
# Async
# ============================================================================


class TestAsyncTransport:
    def test_async_flow(self, manager):
        handler = CountingHandler([500, 500])

        async def run():
            transport = AsyncBreakerTransport(manager, httpx.MockTransport(handler))
            async with httpx.AsyncClient(transport=transport) as client:
                await client.get("https://api.example.org/")
                await client.get("https://api.example.org/")
                with pytest.raises(BreakerOpenError):
                    await client.get("https://api.example.org/")

        asyncio.run(run())
        assert handler.calls == 2

    def test_async_transport_error(self, manager):
        handler = CountingHandler([httpx.ConnectError("refused")])

        async def run():
            transport = AsyncBreakerTransport(manager, httpx.MockTransport(handler))
            async with httpx.AsyncClient(transport=transport) as client:
                with pytest.raises(httpx.ConnectError):
                    await client.get("https://api.example.org/")

        asyncio.run(run())
        assert manager.get_stats("api.example.org").failures == 1
