"""Token sources: anything that hands out a currently usable token.

- :class:`TokenSource` / :class:`AsyncTokenSource` -- the interfaces the
  :mod:`clientcreds.transport` facade consumes.
- :class:`StaticTokenSource` -- always returns the same token.
- :class:`RefreshingTokenSource` / :class:`AsyncRefreshingTokenSource` --
  cache one token and go back to the wrapped source (normally a
  :class:`~clientcreds.exchange.TokenExchanger`) once it expires.

A refreshing source is either *empty* or *cached*. A valid cached token is
returned without any network call. An expired one is replaced by a fresh
exchange; if that exchange fails the cache is left empty and the error
propagates, so the next call starts again from scratch.

The lock is held across the refresh, so callers that find the cache
expired at the same time wait for one exchange instead of each starting
their own.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Optional

from clientcreds.context import Context
from clientcreds.exceptions import RequestCancelledError
from clientcreds.models import DEFAULT_EXPIRY_DELTA, Token, utcnow

logger = logging.getLogger(__name__)


class TokenSource(ABC):
    """Supplies tokens to blocking callers."""

    @abstractmethod
    def token(self, ctx: Optional[Context] = None) -> Token:
        """Return a token that is usable now.

        Raises:
            ClientCredsError: Whatever the underlying exchange raised.
        """
        ...


class AsyncTokenSource(ABC):
    """Supplies tokens to coroutines."""

    @abstractmethod
    async def token(self, ctx: Optional[Context] = None) -> Token:
        ...


class StaticTokenSource(TokenSource):
    """Always returns the same token, never refreshing it."""

    def __init__(self, token: Token) -> None:
        self._token = token

    def token(self, ctx: Optional[Context] = None) -> Token:
        return self._token


class _CacheState:
    """The cached token and its validity rule, shared by both refreshing sources."""

    def __init__(
        self,
        token: Optional[Token],
        expiry_delta: timedelta,
        clock: Optional[Callable[[], datetime]],
    ) -> None:
        self._token = token
        self._expiry_delta = expiry_delta
        self._clock = clock or utcnow

    @property
    def cached(self) -> Optional[Token]:
        """The cached token, valid or not, or ``None`` when empty."""
        return self._token

    def current(self) -> Optional[Token]:
        token = self._token
        if token is not None and token.valid(self._clock(), self._expiry_delta):
            return token
        return None

    def _store(self, token: Optional[Token]) -> None:
        self._token = token


class RefreshingTokenSource(_CacheState, TokenSource):
    """Caches a token and refreshes it from *source* on expiry.

    Safe to share between threads.

    Args:
        source: Where fresh tokens come from.
        token: An initial token to serve while it stays valid.
        expiry_delta: Treat tokens as expired this long before their expiry.
        clock: Returns the current UTC time.

    Example::

        source = RefreshingTokenSource(TokenExchanger(config))
        token = source.token()   # exchanges
        token = source.token()   # cached
    """

    def __init__(
        self,
        source: TokenSource,
        token: Optional[Token] = None,
        expiry_delta: timedelta = DEFAULT_EXPIRY_DELTA,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        super().__init__(token, expiry_delta, clock)
        self._source = source
        self._lock = threading.Lock()

    def token(self, ctx: Optional[Context] = None) -> Token:
        remaining = ctx.remaining() if ctx is not None else None
        if not self._lock.acquire(timeout=-1 if remaining is None else remaining):
            raise RequestCancelledError("Context deadline exceeded waiting for token refresh")
        try:
            current = self.current()
            if current is not None:
                return current
            logger.debug("No valid cached token; requesting a new one")
            self._store(None)
            fresh = self._source.token(ctx)
            self._store(fresh)
            return fresh
        finally:
            self._lock.release()


class AsyncRefreshingTokenSource(_CacheState, AsyncTokenSource):
    """Async counterpart of :class:`RefreshingTokenSource`.

    Safe to share between tasks of one event loop.
    """

    def __init__(
        self,
        source: AsyncTokenSource,
        token: Optional[Token] = None,
        expiry_delta: timedelta = DEFAULT_EXPIRY_DELTA,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        super().__init__(token, expiry_delta, clock)
        self._source = source
        self._lock = asyncio.Lock()

    async def token(self, ctx: Optional[Context] = None) -> Token:
        remaining = ctx.remaining() if ctx is not None else None
        await self._acquire(remaining)
        try:
            current = self.current()
            if current is not None:
                return current
            logger.debug("No valid cached token; requesting a new one")
            self._store(None)
            fresh = await self._source.token(ctx)
            self._store(fresh)
            return fresh
        finally:
            self._lock.release()

    async def _acquire(self, remaining: Optional[float]) -> None:
        """Take the lock, giving up after *remaining* seconds.

        The acquire runs as its own task and is only abandoned while still
        pending. A finished acquire always holds the lock.
        """
        if remaining is None:
            await self._lock.acquire()
            return
        acquire = asyncio.ensure_future(self._lock.acquire())
        try:
            await asyncio.wait({acquire}, timeout=max(remaining, 0.0))
        except asyncio.CancelledError:
            self._abandon(acquire)
            raise
        if not acquire.done():
            self._abandon(acquire)
            raise RequestCancelledError("Context deadline exceeded waiting for token refresh")

    def _abandon(self, acquire: asyncio.Future) -> None:
        if acquire.done() and not acquire.cancelled():
            self._lock.release()
        else:
            acquire.cancel()
