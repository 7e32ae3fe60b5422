"""clientcreds -- OAuth2 Client Credentials grant for httpx.

A service authenticates as itself (no user involved) by exchanging its
client ID and secret, or a signed client assertion, for an access token
at the authorization server's token endpoint. clientcreds performs that
exchange, caches the token until shortly before it expires, and attaches
it to outgoing :mod:`httpx` requests.

Typical use::

    from clientcreds import Config

    config = Config(
        client_id="svc-reporting",
        client_secret="...",
        token_url="https://auth.example.com/oauth2/token",
        scopes=["reports.read"],
    )
    with config.client() as client:
        client.get("https://api.example.com/reports")

The ``clientcreds`` console script wraps the same machinery around stored
profiles.

Modules:
    credentials: The credential :class:`Config` and assertion suppliers.
    request: Token request building.
    exchange: Token request/response round trips.
    token_source: Cached, self-refreshing token sources.
    transport: :class:`httpx.Auth` integration.
    context: Cancellation and deadlines.
    app: Typer application and CLI entry point.
"""

__version__ = "0.1.0"

from clientcreds.context import Context
from clientcreds.credentials import (
    AssertionCredential,
    CallableAssertionSupplier,
    ClientAssertionSupplier,
    Config,
    SecretCredential,
)
from clientcreds.exceptions import (
    ClientAssertionError,
    ClientCredsError,
    ConfigurationError,
    ProtocolError,
    RequestCancelledError,
    RetrievalError,
    TransportError,
)
from clientcreds.exchange import AsyncTokenExchanger, AuthStyleCache, TokenExchanger
from clientcreds.models import AuthStyle, Token
from clientcreds.token_source import (
    AsyncRefreshingTokenSource,
    AsyncTokenSource,
    RefreshingTokenSource,
    StaticTokenSource,
    TokenSource,
)
from clientcreds.transport import BearerAuth, new_async_client, new_client

__all__ = [
    "AssertionCredential",
    "AsyncRefreshingTokenSource",
    "AsyncTokenExchanger",
    "AsyncTokenSource",
    "AuthStyle",
    "AuthStyleCache",
    "BearerAuth",
    "CallableAssertionSupplier",
    "ClientAssertionError",
    "ClientAssertionSupplier",
    "ClientCredsError",
    "Config",
    "ConfigurationError",
    "Context",
    "ProtocolError",
    "RefreshingTokenSource",
    "RequestCancelledError",
    "RetrievalError",
    "SecretCredential",
    "StaticTokenSource",
    "Token",
    "TokenExchanger",
    "TokenSource",
    "TransportError",
    "new_async_client",
    "new_client",
]
