"""Tests for clientcreds.token_source -- caching and refresh."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from clientcreds.context import Context
from clientcreds.credentials import Config
from clientcreds.exceptions import RequestCancelledError, RetrievalError
from clientcreds.exchange import TokenExchanger
from clientcreds.models import AuthStyle, Token
from clientcreds.token_source import RefreshingTokenSource, StaticTokenSource, TokenSource


TOKEN_URL = "https://auth.example.com/oauth2/token"


class _Clock:
    """Manually advanced UTC clock."""

    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class _CountingSource(TokenSource):
    """Issues numbered tokens that expire after *lifetime* seconds."""

    def __init__(self, clock: _Clock, lifetime: float = 3600, delay: float = 0.0) -> None:
        self.clock = clock
        self.lifetime = lifetime
        self.delay = delay
        self.calls = 0
        self.fail_with: Optional[Exception] = None
        self._lock = threading.Lock()

    def token(self, ctx: Optional[Context] = None) -> Token:
        with self._lock:
            self.calls += 1
            number = self.calls
        if self.delay:
            time.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        return Token(
            access_token=f"token-{number}",
            expiry=self.clock() + timedelta(seconds=self.lifetime),
        )


def _make_source(lifetime: float = 3600, delay: float = 0.0):
    clock = _Clock()
    inner = _CountingSource(clock, lifetime=lifetime, delay=delay)
    return RefreshingTokenSource(inner, clock=clock), inner, clock


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------


class TestRefreshingTokenSource:
    def test_valid_token_is_cached(self) -> None:
        source, inner, _ = _make_source()
        assert source.token().access_token == "token-1"
        assert source.token().access_token == "token-1"
        assert inner.calls == 1

    def test_refreshes_after_expiry(self) -> None:
        source, inner, clock = _make_source(lifetime=60)
        source.token()
        clock.advance(seconds=61)
        assert source.token().access_token == "token-2"
        assert inner.calls == 2

    def test_refreshes_within_expiry_delta(self) -> None:
        source, inner, clock = _make_source(lifetime=60)
        source.token()
        clock.advance(seconds=55)
        assert source.token().access_token == "token-2"

    def test_custom_expiry_delta(self) -> None:
        clock = _Clock()
        inner = _CountingSource(clock, lifetime=60)
        source = RefreshingTokenSource(inner, expiry_delta=timedelta(0), clock=clock)
        source.token()
        clock.advance(seconds=55)
        assert source.token().access_token == "token-1"

    def test_token_without_expiry_never_refreshes(self) -> None:
        inner = StaticTokenSource(Token(access_token="forever"))
        source = RefreshingTokenSource(inner)
        assert source.token().access_token == "forever"
        assert source.cached is not None
        assert source.cached.expiry is None

    def test_initial_token_is_used_while_valid(self) -> None:
        clock = _Clock()
        inner = _CountingSource(clock)
        initial = Token(access_token="seed", expiry=clock() + timedelta(minutes=5))
        source = RefreshingTokenSource(inner, token=initial, clock=clock)
        assert source.token().access_token == "seed"
        assert inner.calls == 0

    def test_failure_clears_cache_and_propagates(self) -> None:
        source, inner, clock = _make_source(lifetime=60)
        source.token()
        clock.advance(seconds=120)
        inner.fail_with = RetrievalError(status_code=400, body='{"error":"invalid_client"}')

        with pytest.raises(RetrievalError):
            source.token()
        assert source.cached is None

        inner.fail_with = None
        assert source.token().access_token == "token-3"

    def test_concurrent_callers_share_one_refresh(self) -> None:
        source, inner, _ = _make_source(delay=0.05)
        results: list[str] = []
        barrier = threading.Barrier(8)

        def worker() -> None:
            barrier.wait()
            results.append(source.token().access_token)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert inner.calls == 1
        assert results == ["token-1"] * 8

    def test_deadline_while_waiting_for_refresh(self) -> None:
        source, inner, _ = _make_source(delay=0.5)
        started = threading.Event()

        def slow_refresh() -> None:
            started.set()
            source.token()

        thread = threading.Thread(target=slow_refresh)
        thread.start()
        started.wait()
        time.sleep(0.05)
        with pytest.raises(RequestCancelledError):
            source.token(Context(timeout=0.05))
        thread.join()
        assert inner.calls == 1


class TestWithExchanger:
    def test_back_to_back_calls_exchange_once(self, token_endpoint) -> None:
        config = Config(
            client_id="CLIENT_ID",
            client_secret="CLIENT_SECRET",
            token_url=TOKEN_URL,
            auth_style=AuthStyle.IN_PARAMS,
        )
        source = config.token_source(transport=token_endpoint.transport())
        assert source.token().access_token == "token-1"
        assert source.token().access_token == "token-1"
        assert token_endpoint.calls == 1

    def test_exchanger_is_a_token_source(self, token_endpoint) -> None:
        config = Config(client_id="CLIENT_ID", token_url=TOKEN_URL)
        exchanger = TokenExchanger(config, transport=token_endpoint.transport())
        source = RefreshingTokenSource(exchanger)
        source.token()
        source.token()
        assert token_endpoint.calls == 1
