"""Credential config for the OAuth2 Client Credentials grant.

This module provides:

- :class:`Config` -- the immutable description of *how* a client
  authenticates and *what* it asks the token endpoint for.
- :class:`ClientAssertionSupplier` -- the injected capability that signs a
  one-shot client assertion (typically a JWT) for every token request,
  plus :class:`CallableAssertionSupplier` wrapping a plain function.
- :class:`SecretCredential` / :class:`AssertionCredential` -- the tagged
  variant returned by :attr:`Config.credential`, making explicit which of
  the two authentication modes a request will use.

A config is not validated when it is built. Missing fields surface as a
:class:`~clientcreds.exceptions.ConfigurationError` from the request
builder, before any network activity.

Example::

    config = Config(
        client_id="svc-reporting",
        client_secret=os.environ["REPORTING_SECRET"],
        token_url="https://auth.example.com/oauth2/token",
        scopes=["reports.read"],
    )
    with config.client() as client:
        client.get("https://api.example.com/reports")
"""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from clientcreds.context import Context
from clientcreds.exceptions import ClientAssertionError
from clientcreds.models import DEFAULT_EXPIRY_DELTA, AuthStyle, Token

if TYPE_CHECKING:
    from clientcreds.exchange import AuthStyleCache
    from clientcreds.token_source import AsyncRefreshingTokenSource, RefreshingTokenSource


class ClientAssertionSupplier(ABC):
    """Produces a signed client assertion for a single token request.

    Called afresh for every exchange; the result is never cached by
    clientcreds. Implementations may perform I/O (e.g. signing through a
    remote key service) and should honour *ctx*.
    """

    @abstractmethod
    def get_assertion(self, ctx: Context) -> str:
        """Return a freshly signed assertion string."""
        ...

    async def aget_assertion(self, ctx: Context) -> str:
        """Async variant. Defaults to running :meth:`get_assertion` in a worker thread."""
        return await asyncio.to_thread(self.get_assertion, ctx)


class CallableAssertionSupplier(ClientAssertionSupplier):
    """Adapt a function ``(ctx) -> str`` into a :class:`ClientAssertionSupplier`.

    Coroutine functions are accepted too, but only from the async token
    sources.
    """

    def __init__(self, func: Callable[[Context], Any]) -> None:
        self._func = func

    def get_assertion(self, ctx: Context) -> str:
        result = self._func(ctx)
        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            raise ClientAssertionError(
                "Asynchronous assertion function used from a synchronous token request"
            )
        return result

    async def aget_assertion(self, ctx: Context) -> str:
        result = self._func(ctx)
        if inspect.isawaitable(result):
            result = await result
        return result


@dataclass(frozen=True)
class SecretCredential:
    """The client authenticates with a static shared secret (possibly empty)."""

    secret: str


@dataclass(frozen=True)
class AssertionCredential:
    """The client authenticates with a per-request signed assertion."""

    supplier: ClientAssertionSupplier


Credential = Union[SecretCredential, AssertionCredential]


class Config(BaseModel):
    """Immutable client-credentials configuration.

    Args:
        client_id: The application's ID. Required.
        client_secret: The application's secret. May be empty.
        client_assertion: Supplier of a signed assertion, used instead of
            the secret when set. A plain callable ``(ctx) -> str`` is
            wrapped automatically.
        token_url: The authorization server's token endpoint. Required.
        scopes: Requested scopes, sent space-joined in the given order.
        endpoint_params: Extra form fields for every token request. Values
            may be a string or a sequence of strings. A ``grant_type``
            entry replaces the default ``client_credentials``.
        auth_style: Where ``client_id`` / ``client_secret`` are sent.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    client_id: str = ""
    client_secret: str = Field(default="", repr=False)
    client_assertion: Optional[ClientAssertionSupplier] = None
    token_url: str = ""
    scopes: tuple[str, ...] = ()
    endpoint_params: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    auth_style: AuthStyle = AuthStyle.AUTO_DETECT

    @field_validator("client_assertion", mode="before")
    @classmethod
    def _wrap_callable(cls, value: Any) -> Any:
        if value is None or isinstance(value, ClientAssertionSupplier):
            return value
        if callable(value):
            return CallableAssertionSupplier(value)
        return value

    @field_validator("endpoint_params", mode="before")
    @classmethod
    def _normalise_params(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        return {
            key: (values,) if isinstance(values, str) else tuple(values)
            for key, values in value.items()
        }

    @property
    def credential(self) -> Credential:
        """The credential a token request will use.

        An assertion supplier takes precedence over a secret.
        """
        if self.client_assertion is not None:
            return AssertionCredential(self.client_assertion)
        return SecretCredential(self.client_secret)

    # ------------------------------------------------------------------ #
    # Convenience entry points
    # ------------------------------------------------------------------ #

    def token(
        self,
        ctx: Optional[Context] = None,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 30.0,
    ) -> Token:
        """Perform one token exchange, without caching.

        Raises:
            ConfigurationError: If the config is incomplete.
            ClientAssertionError: If the assertion supplier fails.
            TransportError: On network failure or cancellation.
            ProtocolError: If the response carries no access token.
            RetrievalError: If the endpoint rejects the request.
        """
        from clientcreds.exchange import TokenExchanger

        return TokenExchanger(self, transport=transport, timeout=timeout).exchange(ctx)

    def token_source(
        self,
        *,
        http_client: Optional[httpx.Client] = None,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 30.0,
        style_cache: Optional[AuthStyleCache] = None,
        expiry_delta: timedelta = DEFAULT_EXPIRY_DELTA,
    ) -> RefreshingTokenSource:
        """Return a token source that caches the token and re-exchanges on expiry."""
        from clientcreds.exchange import TokenExchanger
        from clientcreds.token_source import RefreshingTokenSource

        exchanger = TokenExchanger(
            self,
            http_client=http_client,
            transport=transport,
            timeout=timeout,
            style_cache=style_cache,
        )
        return RefreshingTokenSource(exchanger, expiry_delta=expiry_delta)

    def async_token_source(
        self,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
        style_cache: Optional[AuthStyleCache] = None,
        expiry_delta: timedelta = DEFAULT_EXPIRY_DELTA,
    ) -> AsyncRefreshingTokenSource:
        """Async counterpart of :meth:`token_source`."""
        from clientcreds.exchange import AsyncTokenExchanger
        from clientcreds.token_source import AsyncRefreshingTokenSource

        exchanger = AsyncTokenExchanger(
            self,
            http_client=http_client,
            transport=transport,
            timeout=timeout,
            style_cache=style_cache,
        )
        return AsyncRefreshingTokenSource(exchanger, expiry_delta=expiry_delta)

    def client(
        self,
        ctx: Optional[Context] = None,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        **client_kwargs: Any,
    ) -> httpx.Client:
        """Return an :class:`httpx.Client` that authorizes every request.

        Token requests and the returned client share *transport*, so one
        mock transport in tests (or one proxy configuration in production)
        covers both.
        """
        from clientcreds.transport import new_client

        source = self.token_source(transport=transport)
        return new_client(source, ctx=ctx, transport=transport, **client_kwargs)

    def async_client(
        self,
        ctx: Optional[Context] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **client_kwargs: Any,
    ) -> httpx.AsyncClient:
        """Async counterpart of :meth:`client`."""
        from clientcreds.transport import new_async_client

        source = self.async_token_source(transport=transport)
        return new_async_client(source, ctx=ctx, transport=transport, **client_kwargs)
