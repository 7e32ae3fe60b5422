"""Authenticated HTTP clients.

:class:`BearerAuth` is an :class:`httpx.Auth` that decorates every outgoing
request with the current token from a
:class:`~clientcreds.token_source.TokenSource`. Asking the source for a
token transparently triggers its refresh path; if that fails, the error
propagates and the request is never sent.

:func:`new_client` and :func:`new_async_client` wrap this up into ready
clients::

    source = config.token_source()
    with new_client(source, base_url="https://api.example.com") as client:
        client.get("/reports")
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncGenerator, Generator, Optional, Union

import httpx

from clientcreds.context import Context
from clientcreds.token_source import AsyncTokenSource, TokenSource


class BearerAuth(httpx.Auth):
    """Attach ``Authorization: <scheme> <token>`` to every request.

    With :class:`httpx.Client` the source must be a
    :class:`~clientcreds.token_source.TokenSource`. With
    :class:`httpx.AsyncClient` it may be either kind; a blocking source is
    then called in a worker thread.

    Args:
        source: Supplies the token for each request.
        ctx: Context passed to the source on every call.
    """

    def __init__(
        self,
        source: Union[TokenSource, AsyncTokenSource],
        ctx: Optional[Context] = None,
    ) -> None:
        self._source = source
        self._ctx = ctx

    @property
    def source(self) -> Union[TokenSource, AsyncTokenSource]:
        return self._source

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        if isinstance(self._source, AsyncTokenSource):
            raise RuntimeError("An async token source needs an httpx.AsyncClient")
        token = self._source.token(self._ctx)
        request.headers["Authorization"] = token.authorization_header()
        yield request

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        if isinstance(self._source, AsyncTokenSource):
            token = await self._source.token(self._ctx)
        else:
            token = await asyncio.to_thread(self._source.token, self._ctx)
        request.headers["Authorization"] = token.authorization_header()
        yield request


def new_client(
    source: TokenSource,
    ctx: Optional[Context] = None,
    **client_kwargs: Any,
) -> httpx.Client:
    """Return an :class:`httpx.Client` authorized by *source*.

    Extra keyword arguments go to :class:`httpx.Client` unchanged.
    """
    return httpx.Client(auth=BearerAuth(source, ctx), **client_kwargs)


def new_async_client(
    source: Union[TokenSource, AsyncTokenSource],
    ctx: Optional[Context] = None,
    **client_kwargs: Any,
) -> httpx.AsyncClient:
    """Return an :class:`httpx.AsyncClient` authorized by *source*."""
    return httpx.AsyncClient(auth=BearerAuth(source, ctx), **client_kwargs)
