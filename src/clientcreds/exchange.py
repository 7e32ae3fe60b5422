"""Token exchange against the authorization server.

This module provides:

- :class:`TokenExchanger` -- performs one token request/response round trip
  per call using :class:`httpx.Client`.
- :class:`AsyncTokenExchanger` -- the same over :class:`httpx.AsyncClient`.
- :class:`AuthStyleCache` -- remembers, per token endpoint and client,
  which :class:`~clientcreds.models.AuthStyle` the server accepted.
- :func:`parse_token_response` -- turns a token endpoint response into a
  :class:`~clientcreds.models.Token` or the matching error.

Exchangers never retry a failed request (retries belong to the httpx
transport) and never cache tokens; wrap them in a
:class:`~clientcreds.token_source.RefreshingTokenSource` for that.

Auth-style auto-detection: with ``AuthStyle.AUTO_DETECT`` and nothing
cached for the endpoint, the exchanger sends the credentials in the body
first and, if the server rejects the client (400, 401, or an
``invalid_client`` / ``unauthorized_client`` error), retries once with
HTTP Basic. Server failures such as 5xx or 429 are raised as they are.
Whichever style succeeded is recorded and used directly from then on.
Requests authenticated with a client assertion never probe.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Optional
from urllib.parse import parse_qs

import httpx

from clientcreds.context import Context
from clientcreds.credentials import Config
from clientcreds.exceptions import ProtocolError, RetrievalError, TransportError
from clientcreds.models import AuthStyle, Token, utcnow
from clientcreds.request import (
    TokenRequest,
    aresolve_assertion,
    build_token_request,
    resolve_assertion,
    validate_config,
)
from clientcreds.token_source import AsyncTokenSource, TokenSource

logger = logging.getLogger(__name__)

MAX_RESPONSE_BYTES = 1 << 20
"""Token responses larger than this are rejected."""


class AuthStyleCache:
    """Thread-safe memory of the auth style each token endpoint accepted.

    Keyed by ``(token_url, client_id)``. Each exchanger owns one unless a
    shared instance is passed in, so the memory lives exactly as long as
    the exchangers using it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._styles: dict[tuple[str, str], AuthStyle] = {}

    def lookup(self, token_url: str, client_id: str) -> Optional[AuthStyle]:
        with self._lock:
            return self._styles.get((token_url, client_id))

    def record(self, token_url: str, client_id: str, style: AuthStyle) -> None:
        with self._lock:
            self._styles[(token_url, client_id)] = style

    def clear(self) -> None:
        with self._lock:
            self._styles.clear()


# ------------------------------------------------------------------ #
# Response parsing
# ------------------------------------------------------------------ #


def _media_type(response: httpx.Response) -> str:
    content_type = response.headers.get("content-type", "")
    return content_type.split(";", 1)[0].strip().lower()


def _is_json(media_type: str) -> bool:
    return media_type == "application/json" or media_type.endswith("+json")


def _parse_form(text: str) -> dict[str, Any]:
    parsed = parse_qs(text, keep_blank_values=True)
    return {key: values[0] if len(values) == 1 else values for key, values in parsed.items()}


def _parse_fields(response: httpx.Response, text: str) -> dict[str, Any]:
    """Parse a response body as a flat JSON object or as form fields.

    Raises:
        ProtocolError: If a JSON response is not a JSON object.
    """
    if _is_json(_media_type(response)):
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise ProtocolError(f"Token response is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ProtocolError("Token response JSON is not an object")
        return data
    return _parse_form(text)


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _retrieval_error(response: httpx.Response, text: str) -> RetrievalError:
    """Build a :class:`RetrievalError`, picking OAuth2 error fields out of the body when possible."""
    fields: dict[str, Any] = {}
    try:
        if _is_json(_media_type(response)) or text.lstrip().startswith("{"):
            data = json.loads(text)
            if isinstance(data, dict):
                fields = data
        else:
            fields = _parse_form(text)
    except ValueError:
        fields = {}
    return RetrievalError(
        status_code=response.status_code,
        body=text,
        error_code=_optional_str(fields.get("error")),
        error_description=_optional_str(fields.get("error_description")),
        error_uri=_optional_str(fields.get("error_uri")),
    )


def _decode_lenient(content: bytes, response: httpx.Response) -> str:
    try:
        return content.decode(response.encoding or "utf-8", errors="replace")
    except LookupError:
        return content.decode("utf-8", errors="replace")


def _rejects_client(exc: RetrievalError) -> bool:
    """Whether a failed exchange means the server refused how the client authenticated."""
    if exc.status_code in (400, 401):
        return True
    return exc.error_code in ("invalid_client", "unauthorized_client")


def _parse_expires_in(value: Any) -> Optional[int]:
    """Return ``expires_in`` in whole seconds, accepting numbers and numeric strings."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ProtocolError(f"Invalid expires_in value: {value!r}")
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        pass
    try:
        return int(float(str(value).strip()))
    except (ValueError, OverflowError) as exc:
        raise ProtocolError(f"Invalid expires_in value: {value!r}") from exc


def parse_token_response(response: httpx.Response, received_at: datetime) -> Token:
    """Turn a token endpoint response into a :class:`Token`.

    JSON bodies (``application/json`` or any ``+json`` type) are read as a
    flat object. Every other content type, or none, is read as
    ``application/x-www-form-urlencoded`` fields.

    Args:
        response: A response whose body has been read.
        received_at: When the response arrived; ``expires_in`` counts from here.

    Raises:
        RetrievalError: On a non-2xx status, or a 2xx body carrying an
            OAuth2 ``error`` and no token.
        ProtocolError: If a successful response is oversized, malformed,
            or lacks ``access_token``.
    """
    content = response.content
    if not response.is_success:
        # Error pages keep their status whatever their size or encoding.
        raise _retrieval_error(response, _decode_lenient(content[:MAX_RESPONSE_BYTES], response))

    if len(content) > MAX_RESPONSE_BYTES:
        raise ProtocolError(f"Token response exceeds {MAX_RESPONSE_BYTES} bytes")
    try:
        text = content.decode(response.encoding or "utf-8")
    except (LookupError, UnicodeDecodeError) as exc:
        raise ProtocolError(f"Cannot decode token response: {exc}") from exc

    data = _parse_fields(response, text)
    access_token = data.get("access_token")
    if data.get("error") and not access_token:
        raise _retrieval_error(response, text)
    if not isinstance(access_token, str) or not access_token:
        raise ProtocolError("Server response missing access_token")

    expires_in = _parse_expires_in(data.get("expires_in"))
    expiry: Optional[datetime] = None
    if expires_in:
        try:
            expiry = received_at + timedelta(seconds=expires_in)
        except OverflowError:
            # Lifetimes beyond datetime's range never expire in practice.
            expiry = None

    return Token(
        access_token=access_token,
        token_type=str(data.get("token_type") or "bearer"),
        refresh_token=str(data.get("refresh_token") or ""),
        expiry=expiry,
        raw=data,
    )


# ------------------------------------------------------------------ #
# Exchangers
# ------------------------------------------------------------------ #


class _ExchangerBase:
    """Auth-style bookkeeping shared by the sync and async exchangers."""

    def __init__(
        self,
        config: Config,
        timeout: float,
        style_cache: Optional[AuthStyleCache],
        clock: Optional[Callable[[], datetime]],
    ) -> None:
        self._config = config
        self._timeout = timeout
        self._style_cache = style_cache if style_cache is not None else AuthStyleCache()
        self._clock = clock or utcnow

    @property
    def config(self) -> Config:
        return self._config

    @property
    def style_cache(self) -> AuthStyleCache:
        return self._style_cache

    def _initial_style(self, assertion: Optional[str]) -> tuple[AuthStyle, bool]:
        """Return the style to try first and whether this exchange is a probe."""
        if assertion is not None:
            return AuthStyle.IN_PARAMS, False
        style = self._config.auth_style
        if style != AuthStyle.AUTO_DETECT:
            return style, False
        cached = self._style_cache.lookup(self._config.token_url, self._config.client_id)
        if cached is not None:
            return cached, False
        return AuthStyle.IN_PARAMS, True

    def _remember(self, style: AuthStyle) -> None:
        logger.debug("Token endpoint %s accepts auth style %s", self._config.token_url, style.value)
        self._style_cache.record(self._config.token_url, self._config.client_id, style)


def _transport_error(exc: httpx.HTTPError, url: str, ctx: Context) -> Exception:
    cancelled = ctx.err()
    if cancelled is not None:
        return cancelled
    if isinstance(exc, httpx.TimeoutException):
        return TransportError(f"Token request to {url} timed out: {exc}")
    return TransportError(f"Token request to {url} failed: {exc}")


class TokenExchanger(_ExchangerBase, TokenSource):
    """Performs client-credentials token exchanges over :class:`httpx.Client`.

    Args:
        config: The credential config.
        http_client: Client to send token requests with. It must not carry
            a :class:`~clientcreds.transport.BearerAuth` for the same
            source. When omitted, a client over *transport* is created
            once, or a short-lived default client per exchange.
        transport: Caller-owned transport for token requests.
        timeout: Request timeout in seconds, capped by the context deadline.
        style_cache: Shared auth-style memory. A private one by default.
        clock: Returns the current UTC time; used to stamp expiry.

    Example::

        exchanger = TokenExchanger(config)
        token = exchanger.exchange(Context(timeout=10))
    """

    def __init__(
        self,
        config: Config,
        http_client: Optional[httpx.Client] = None,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 30.0,
        style_cache: Optional[AuthStyleCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        super().__init__(config, timeout, style_cache, clock)
        if http_client is None and transport is not None:
            # One wrapper per exchanger. The transport stays caller-owned, so
            # the wrapper is never closed.
            http_client = httpx.Client(transport=transport)
        self._http_client = http_client

    def token(self, ctx: Optional[Context] = None) -> Token:
        return self.exchange(ctx)

    def exchange(self, ctx: Optional[Context] = None) -> Token:
        """Request a new token from the token endpoint.

        Raises:
            ConfigurationError: If the config is incomplete.
            ClientAssertionError: If the assertion supplier fails.
            TransportError: On network failure.
            RequestCancelledError: If *ctx* is cancelled or past its deadline.
            ProtocolError: If the response carries no usable token.
            RetrievalError: If the endpoint rejects the request.
        """
        ctx = ctx or Context.background()
        validate_config(self._config)
        assertion = resolve_assertion(self._config, ctx)
        style, probing = self._initial_style(assertion)
        request = build_token_request(self._config, style, assertion)
        try:
            token = self._round_trip(request, ctx)
        except RetrievalError as exc:
            if not probing or not _rejects_client(exc):
                raise
            logger.debug(
                "Token endpoint rejected credentials in the body (%s); retrying with HTTP Basic",
                exc.status_code,
            )
            request = build_token_request(self._config, AuthStyle.IN_HEADER)
            token = self._round_trip(request, ctx)
        if probing:
            self._remember(request.auth_style)
        return token

    def _round_trip(self, request: TokenRequest, ctx: Context) -> Token:
        ctx.raise_if_done()
        timeout = ctx.timeout(self._timeout)
        logger.debug(
            "Requesting token from %s (auth style: %s)", request.url, request.auth_style.value
        )
        try:
            if self._http_client is not None:
                response = self._send(self._http_client, request, timeout)
            else:
                with httpx.Client() as client:
                    response = self._send(client, request, timeout)
        except httpx.HTTPError as exc:
            raise _transport_error(exc, request.url, ctx) from exc
        received_at = self._clock()
        ctx.raise_if_done()
        return parse_token_response(response, received_at)

    @staticmethod
    def _send(client: httpx.Client, request: TokenRequest, timeout: float) -> httpx.Response:
        return client.post(
            request.url,
            content=request.encode_body().encode("utf-8"),
            headers=request.headers(),
            timeout=timeout,
        )


class AsyncTokenExchanger(_ExchangerBase, AsyncTokenSource):
    """Async counterpart of :class:`TokenExchanger` over :class:`httpx.AsyncClient`.

    Honours native :mod:`asyncio` cancellation in addition to *ctx*.
    """

    def __init__(
        self,
        config: Config,
        http_client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
        style_cache: Optional[AuthStyleCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        super().__init__(config, timeout, style_cache, clock)
        if http_client is None and transport is not None:
            http_client = httpx.AsyncClient(transport=transport)
        self._http_client = http_client

    async def token(self, ctx: Optional[Context] = None) -> Token:
        return await self.exchange(ctx)

    async def exchange(self, ctx: Optional[Context] = None) -> Token:
        """Request a new token. Raises the same errors as :meth:`TokenExchanger.exchange`."""
        ctx = ctx or Context.background()
        validate_config(self._config)
        assertion = await aresolve_assertion(self._config, ctx)
        style, probing = self._initial_style(assertion)
        request = build_token_request(self._config, style, assertion)
        try:
            token = await self._round_trip(request, ctx)
        except RetrievalError as exc:
            if not probing or not _rejects_client(exc):
                raise
            logger.debug(
                "Token endpoint rejected credentials in the body (%s); retrying with HTTP Basic",
                exc.status_code,
            )
            request = build_token_request(self._config, AuthStyle.IN_HEADER)
            token = await self._round_trip(request, ctx)
        if probing:
            self._remember(request.auth_style)
        return token

    async def _round_trip(self, request: TokenRequest, ctx: Context) -> Token:
        ctx.raise_if_done()
        timeout = ctx.timeout(self._timeout)
        logger.debug(
            "Requesting token from %s (auth style: %s)", request.url, request.auth_style.value
        )
        try:
            if self._http_client is not None:
                response = await self._send(self._http_client, request, timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._send(client, request, timeout)
        except httpx.HTTPError as exc:
            raise _transport_error(exc, request.url, ctx) from exc
        received_at = self._clock()
        ctx.raise_if_done()
        return parse_token_response(response, received_at)

    @staticmethod
    async def _send(
        client: httpx.AsyncClient, request: TokenRequest, timeout: float
    ) -> httpx.Response:
        return await client.post(
            request.url,
            content=request.encode_body().encode("utf-8"),
            headers=request.headers(),
            timeout=timeout,
        )
