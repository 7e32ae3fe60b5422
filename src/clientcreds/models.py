"""Canonical Pydantic models shared across clientcreds modules.

The models fall into two groups:

**Protocol models** -- produced and consumed by the token machinery:
    :class:`AuthStyle` and :class:`Token`.

**Configuration models** -- serialised as JSON in the user's config directory
and consumed by the CLI:
    :class:`RequestConfig`, :class:`Profile`, and :class:`GlobalConfig`.

The credential config itself (:class:`~clientcreds.credentials.Config`)
lives in :mod:`clientcreds.credentials` because it carries a live
assertion supplier that cannot be serialised.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_EXPIRY_DELTA = timedelta(seconds=10)
"""How long before its real expiry a token is already treated as expired."""


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


# --- Protocol models ---


class AuthStyle(str, enum.Enum):
    """Where the client ID and secret travel in a token request.

    ``AUTO_DETECT`` sends them in the body first and falls back to HTTP
    Basic if the endpoint rejects that, remembering what worked (see
    :class:`~clientcreds.exchange.AuthStyleCache`).
    """

    AUTO_DETECT = "auto"
    IN_PARAMS = "params"
    IN_HEADER = "header"


_CANONICAL_SCHEMES = {"bearer": "Bearer", "mac": "MAC", "basic": "Basic"}


class Token(BaseModel):
    """A token issued by the authorization server.

    ``expiry`` is absolute (receipt time plus ``expires_in``). ``None``
    means the server gave no lifetime and the token never expires by time.
    ``raw`` keeps every field of the response, including provider-specific
    ones such as ``id_token``.

    Example::

        token = Token(access_token="abc", expiry=utcnow() + timedelta(hours=1))
        assert token.valid()
        assert token.authorization_header() == "Bearer abc"
    """

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(repr=False)
    token_type: str = "bearer"
    refresh_token: str = Field(default="", repr=False)
    expiry: Optional[datetime] = None
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)

    @field_validator("expiry")
    @classmethod
    def _aware_expiry(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def auth_scheme(self) -> str:
        """Return the scheme for the ``Authorization`` header.

        Common types are canonicalised (``bearer`` becomes ``Bearer``);
        unknown types pass through unchanged and an empty type means
        ``Bearer``.
        """
        if not self.token_type:
            return "Bearer"
        return _CANONICAL_SCHEMES.get(self.token_type.lower(), self.token_type)

    def authorization_header(self) -> str:
        """Return the value of the ``Authorization`` header for this token."""
        return f"{self.auth_scheme()} {self.access_token}"

    def extra(self, key: str) -> Any:
        """Return a raw response field, or ``None`` if the server did not send it."""
        return self.raw.get(key)

    def expired(
        self,
        now: Optional[datetime] = None,
        expiry_delta: timedelta = DEFAULT_EXPIRY_DELTA,
    ) -> bool:
        """Whether the token is expired, or will be within *expiry_delta*."""
        if self.expiry is None:
            return False
        now = now or utcnow()
        return self.expiry - expiry_delta < now

    def valid(
        self,
        now: Optional[datetime] = None,
        expiry_delta: timedelta = DEFAULT_EXPIRY_DELTA,
    ) -> bool:
        """Whether the token is non-empty and not expired."""
        return bool(self.access_token) and not self.expired(now, expiry_delta)


# --- Configuration models ---


class RequestConfig(BaseModel):
    """HTTP settings for token requests and authenticated calls made by the CLI."""

    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")


class Profile(BaseModel):
    """A named client-credentials connection stored under ``profiles/``.

    Secrets are never stored inline. Each ``*_source`` field is a
    credential source descriptor resolved at use time by
    :func:`~clientcreds.config.resolve_credential`.

    Example::

        Profile(
            name="billing",
            token_url="https://auth.example.com/oauth2/token",
            client_id_source="env:BILLING_CLIENT_ID",
            client_secret_source="env:BILLING_CLIENT_SECRET",
            scopes=["invoices.read"],
            endpoint_params={"audience": ["https://billing.example.com"]},
        )
    """

    name: str = Field(description="Profile name (also the file name)")
    token_url: str = Field(description="Token endpoint URL")
    client_id_source: str = Field(
        description="Credential source for the client ID: env:VAR, file:/path, prompt"
    )
    client_secret_source: Optional[str] = Field(
        default=None, description="Credential source for the client secret"
    )
    client_assertion_source: Optional[str] = Field(
        default=None,
        description="Credential source re-read on every request for a signed client assertion",
    )
    scopes: list[str] = Field(default_factory=list)
    endpoint_params: dict[str, list[str]] = Field(
        default_factory=dict, description="Extra form fields sent with every token request"
    )
    auth_style: AuthStyle = AuthStyle.AUTO_DETECT
    request: RequestConfig = Field(default_factory=RequestConfig)


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/clientcreds/config.json``.

    Loaded and saved by :func:`~clientcreds.config.load_global_config` and
    :func:`~clientcreds.config.save_global_config`.
    """

    default_profile: Optional[str] = None
    auto_select_single_profile: bool = Field(
        default=True,
        description="Use the only existing profile when none is selected",
    )
