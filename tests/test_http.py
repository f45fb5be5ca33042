"""Tests for URL-level breaker helpers."""

from __future__ import annotations

import pytest

from hostbreaker.breakers import BreakerConfig
from hostbreaker.errors import InvalidUrlError
from hostbreaker.http import RequestContext, UrlBreakerGuard
from hostbreaker.manager import BreakerManager


@pytest.fixture
def guard(clock):
    manager = BreakerManager(
        BreakerConfig(failure_threshold=2, success_threshold=1, timeout_s=10),
        include_port=True,
        clock=clock,
    )
    return UrlBreakerGuard(manager)


class TestUrlBreakerGuard:
    def test_default_guard(self):
        guard = UrlBreakerGuard()
        url = "https://api.example.com/test"
        assert guard.is_valid_url(url)
        assert guard.extract_circuit_breaker_key(url) == "api.example.com"
        assert guard.should_allow_request(url) is True

    def test_outcomes_keyed_by_host(self, guard):
        guard.record_failure("https://api.example.com/a")
        guard.record_failure("https://api.example.com/b?page=2")
        assert guard.should_allow_request("https://api.example.com/c") is False
        assert guard.should_allow_request("https://api.example.com:8080/c") is True

    def test_success_for_unseen_url_is_noop(self, guard):
        guard.record_success("https://fresh.example/")
        assert guard.manager.get_stats("fresh.example") is None

    def test_invalid_url_propagates(self, guard):
        with pytest.raises(InvalidUrlError):
            guard.should_allow_request("invalid-url")

    def test_extract_host(self, guard):
        assert guard.extract_host("https://api.example.com:8080/path") == "api.example.com:8080"
        assert guard.extract_host("https://api.example.com/path") == "api.example.com"
        assert guard.extract_host("invalid-url") == "invalid_url"


class TestRequestContext:
    def test_context_binds_key(self, guard):
        url = "https://api.example.com/test"
        ctx = guard.request_context(url, "get")
        assert ctx.url == url
        assert ctx.circuit_breaker_key == "api.example.com"
        assert ctx.method == "GET"
        assert ctx.should_allow(guard) is True
        assert ctx.elapsed() >= 0.0

    def test_context_records_outcomes(self, guard, clock):
        ctx = RequestContext.create("https://api.example.com/x", "POST", guard)
        ctx.record_failure(guard)
        ctx.record_failure(guard)
        assert ctx.should_allow(guard) is False
        clock.advance(10)
        assert ctx.should_allow(guard) is True
        ctx.record_success(guard)
        assert guard.manager.get_stats("api.example.com").failures == 0

    def test_context_creation_fails_on_bad_url(self, guard):
        with pytest.raises(InvalidUrlError):
            guard.request_context("not a url")
