"""Token commands -- fetch a token, or call an API with one.

Provides the top-level ``clientcreds token`` and ``clientcreds request``
commands. Both act on the active profile (see
:func:`~clientcreds.config.resolve_profile`).

Typical workflow::

    clientcreds -p billing token --plain       # access_token<TAB>...
    clientcreds -p billing request https://billing.example.com/v1/invoices
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
import typer

from clientcreds.exceptions import ClientCredsError
from clientcreds.exit_codes import EXIT_CONNECTION_ERROR, EXIT_GENERIC_FAILURE, EXIT_INVALID_USAGE
from clientcreds.models import Profile, Token
from clientcreds.output import debug, error, format_response, info, print_data, warning


def _http_transport(profile: Profile) -> httpx.BaseTransport:
    """Transport shared by token requests and API calls for *profile*."""
    return httpx.HTTPTransport(verify=profile.request.verify_ssl)


def _selected_profile(ctx: typer.Context) -> Profile:
    from clientcreds.config import resolve_profile

    name = ctx.obj.get("profile") if ctx.obj else None
    profile = resolve_profile(name)
    if not profile.request.verify_ssl:
        warning(f"TLS certificate verification is disabled for profile '{profile.name}'.")
    return profile


def _token_fields(token: Token, include_raw: bool) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "access_token": token.access_token,
        "token_type": token.token_type,
        "expiry": token.expiry.isoformat() if token.expiry else None,
    }
    if token.refresh_token:
        fields["refresh_token"] = token.refresh_token
    if include_raw:
        fields["raw"] = token.raw
    return fields


def token_command(
    ctx: typer.Context,
    raw: bool = typer.Option(
        False, "--raw", help="Include every field of the token response."
    ),
) -> None:
    """Fetch a fresh access token for the active profile and print it.

    Raises:
        typer.Exit: With the error's exit code if the exchange fails.

    Example::

        clientcreds --profile billing token
        clientcreds --profile billing token --json --raw
    """
    from clientcreds.config import build_config
    from clientcreds.exchange import TokenExchanger

    try:
        profile = _selected_profile(ctx)
        config = build_config(profile)
        debug(f"Requesting token from {profile.token_url}")
        with _http_transport(profile) as transport:
            exchanger = TokenExchanger(
                config, transport=transport, timeout=profile.request.timeout
            )
            token = exchanger.exchange()
    except ClientCredsError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    format_response(_token_fields(token, raw))


def _parse_headers(values: list[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for value in values:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            error(f"Invalid header {value!r}; expected 'Name: value'")
            raise typer.Exit(code=EXIT_INVALID_USAGE)
        headers[name.strip()] = content.strip()
    return headers


def request_command(
    ctx: typer.Context,
    url: str = typer.Argument(help="Absolute URL of the protected resource."),
    method: str = typer.Option("GET", "--method", "-X", help="HTTP method."),
    data: Optional[str] = typer.Option(None, "--data", "-d", help="Request body."),
    header: list[str] = typer.Option(
        [], "--header", "-H", help="Extra header, 'Name: value'. Repeatable."
    ),
) -> None:
    """Call a protected resource with the active profile's token.

    The token is obtained (and refreshed) transparently for the request.
    The response body goes to stdout; a non-2xx status exits with code 1.

    Example::

        clientcreds -p billing request https://billing.example.com/v1/invoices
        clientcreds -p billing request -X POST -d '{"amount": 3}' \\
            -H 'Content-Type: application/json' https://billing.example.com/v1/charges
    """
    from clientcreds.config import build_config

    headers = _parse_headers(header)
    try:
        profile = _selected_profile(ctx)
        config = build_config(profile)
        transport = _http_transport(profile)
        with config.client(transport=transport, timeout=profile.request.timeout) as client:
            response = client.request(
                method.upper(),
                url,
                content=data.encode("utf-8") if data is not None else None,
                headers=headers,
            )
    except ClientCredsError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    except httpx.HTTPError as exc:
        error(f"Request to {url} failed: {exc}")
        raise typer.Exit(code=EXIT_CONNECTION_ERROR) from None

    info(f"{response.status_code} {response.reason_phrase}")
    if response.headers.get("content-type", "").startswith("application/json"):
        format_response(response.text)
    elif response.text:
        print_data(response.text)
    if not response.is_success:
        raise typer.Exit(code=EXIT_GENERIC_FAILURE)
