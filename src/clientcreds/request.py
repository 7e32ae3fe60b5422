"""Token request builder.

Turns a :class:`~clientcreds.credentials.Config` into a
:class:`TokenRequest`: the form fields of the body plus, for
:attr:`~clientcreds.models.AuthStyle.IN_HEADER`, the HTTP Basic
credentials. Building is pure; the only side effect of this module is
calling the client assertion supplier in :func:`resolve_assertion`, which
the exchanger does once per request.

The body is encoded with keys sorted and each key's values in the order
given, so the same config always produces the same bytes::

    audience=audience1&client_id=CLIENT_ID&client_secret=CLIENT_SECRET&grant_type=client_credentials&scope=scope1+scope2
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote_plus, urlencode, urlsplit

from clientcreds.context import Context
from clientcreds.credentials import Config
from clientcreds.exceptions import ClientAssertionError, ClientCredsError, ConfigurationError
from clientcreds.models import AuthStyle

GRANT_TYPE_CLIENT_CREDENTIALS = "client_credentials"
CLIENT_ASSERTION_TYPE_JWT_BEARER = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


@dataclass(frozen=True)
class TokenRequest:
    """A fully-formed token request, ready to send.

    Args:
        url: The token endpoint.
        fields: Form fields as ``(key, value)`` pairs. A key may repeat.
        auth_style: The style actually used, never ``AUTO_DETECT``.
        basic_credentials: ``(client_id, client_secret)`` for the
            ``Authorization`` header when ``auth_style`` is ``IN_HEADER``.
    """

    url: str
    fields: tuple[tuple[str, str], ...]
    auth_style: AuthStyle
    basic_credentials: Optional[tuple[str, str]] = None

    def get(self, key: str) -> Optional[str]:
        """Return the first value of form field *key*, or ``None``."""
        for name, value in self.fields:
            if name == key:
                return value
        return None

    def get_all(self, key: str) -> list[str]:
        """Return every value of form field *key*, in order."""
        return [value for name, value in self.fields if name == key]

    def encode_body(self) -> str:
        """URL-encode the form fields, keys sorted, values in given order."""
        ordered = sorted(self.fields, key=lambda pair: pair[0])
        return urlencode(ordered)

    def headers(self) -> dict[str, str]:
        """Return the request headers (content type, accept and Basic auth)."""
        headers = {
            "Content-Type": FORM_CONTENT_TYPE,
            "Accept": "application/json",
        }
        if self.basic_credentials is not None:
            client_id, client_secret = self.basic_credentials
            # RFC 6749 section 2.3.1: form-encode both before joining.
            userpass = f"{quote_plus(client_id)}:{quote_plus(client_secret)}"
            encoded = base64.b64encode(userpass.encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {encoded}"
        return headers


def validate_config(config: Config) -> None:
    """Check the fields every token request needs.

    Raises:
        ConfigurationError: If ``client_id`` or ``token_url`` is missing,
            or ``token_url`` is not an absolute http(s) URL.
    """
    if not config.client_id:
        raise ConfigurationError("client_id is required for the client_credentials grant")
    if not config.token_url:
        raise ConfigurationError("token_url is required for the client_credentials grant")
    parts = urlsplit(config.token_url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ConfigurationError(
            f"token_url must be an absolute http(s) URL, got {config.token_url!r}"
        )


def _check_assertion(assertion: object) -> str:
    if not isinstance(assertion, str) or not assertion:
        raise ClientAssertionError("Client assertion supplier returned an empty assertion")
    return assertion


def resolve_assertion(config: Config, ctx: Context) -> Optional[str]:
    """Invoke the config's assertion supplier, if any.

    Returns:
        The assertion, or ``None`` when the config uses a secret.

    Raises:
        ClientAssertionError: If the supplier raises or returns nothing.
        RequestCancelledError: If *ctx* is done before or after the call.
    """
    supplier = config.client_assertion
    if supplier is None:
        return None
    ctx.raise_if_done()
    try:
        assertion = supplier.get_assertion(ctx)
    except ClientCredsError:
        raise
    except Exception as exc:
        raise ClientAssertionError(f"Client assertion supplier failed: {exc}") from exc
    ctx.raise_if_done()
    return _check_assertion(assertion)


async def aresolve_assertion(config: Config, ctx: Context) -> Optional[str]:
    """Async variant of :func:`resolve_assertion`."""
    supplier = config.client_assertion
    if supplier is None:
        return None
    ctx.raise_if_done()
    try:
        assertion = await supplier.aget_assertion(ctx)
    except ClientCredsError:
        raise
    except Exception as exc:
        raise ClientAssertionError(f"Client assertion supplier failed: {exc}") from exc
    ctx.raise_if_done()
    return _check_assertion(assertion)


def build_token_request(
    config: Config,
    auth_style: AuthStyle,
    assertion: Optional[str] = None,
) -> TokenRequest:
    """Build the token request for *config*.

    Args:
        config: The credential config.
        auth_style: Where to put ``client_id`` / ``client_secret``.
            ``AUTO_DETECT`` is treated as ``IN_PARAMS``; probing is the
            exchanger's job.
        assertion: A signed client assertion from
            :func:`resolve_assertion`. When given, the secret and
            *auth_style* are ignored.

    Raises:
        ConfigurationError: If the config is incomplete, or an endpoint
            param would overwrite ``scope``.
    """
    validate_config(config)

    values: dict[str, list[str]] = {"grant_type": [GRANT_TYPE_CLIENT_CREDENTIALS]}
    if config.scopes:
        values["scope"] = [" ".join(config.scopes)]
    for key, params in config.endpoint_params.items():
        if key in values and key != "grant_type":
            raise ConfigurationError(f"Endpoint param {key!r} would overwrite a built-in field")
        values[key] = list(params)

    basic_credentials: Optional[tuple[str, str]] = None
    if assertion is not None:
        auth_style = AuthStyle.IN_PARAMS
        values.pop("client_secret", None)
        values["client_id"] = [config.client_id]
        values["client_assertion"] = [assertion]
        values["client_assertion_type"] = [CLIENT_ASSERTION_TYPE_JWT_BEARER]
    else:
        values.pop("client_assertion", None)
        values.pop("client_assertion_type", None)
        if auth_style == AuthStyle.IN_HEADER:
            basic_credentials = (config.client_id, config.client_secret)
        else:
            auth_style = AuthStyle.IN_PARAMS
            values["client_id"] = [config.client_id]
            if config.client_secret:
                values["client_secret"] = [config.client_secret]

    fields = tuple((key, value) for key, vals in values.items() for value in vals)
    return TokenRequest(
        url=config.token_url,
        fields=fields,
        auth_style=auth_style,
        basic_credentials=basic_credentials,
    )
