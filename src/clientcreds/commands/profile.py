"""Profile commands -- manage stored client-credentials profiles.

Provides the ``clientcreds profile`` sub-command group. A profile names a
token endpoint, where to read the client's credentials from, and what to
request. Secrets are referenced by source (``env:VAR``, ``file:/path``,
``prompt``) and never written to disk.

Typical workflow::

    clientcreds profile add billing \\
        --token-url https://auth.example.com/oauth2/token \\
        --client-id-source env:BILLING_CLIENT_ID \\
        --client-secret-source env:BILLING_CLIENT_SECRET \\
        --scope invoices.read --param audience=https://billing.example.com
    clientcreds profile use billing
    clientcreds token
"""

from __future__ import annotations

from typing import Optional

import typer

from clientcreds.exceptions import ClientCredsError
from clientcreds.exit_codes import EXIT_INVALID_USAGE
from clientcreds.models import AuthStyle, Profile, RequestConfig
from clientcreds.output import error, format_response, info, print_table, success


profile_app = typer.Typer(no_args_is_help=True)


def _parse_params(values: list[str]) -> dict[str, list[str]]:
    """Parse repeated ``key=value`` options, keeping every value of a repeated key."""
    params: dict[str, list[str]] = {}
    for value in values:
        key, sep, content = value.partition("=")
        if not sep or not key:
            error(f"Invalid param {value!r}; expected 'key=value'")
            raise typer.Exit(code=EXIT_INVALID_USAGE)
        params.setdefault(key, []).append(content)
    return params


@profile_app.command("add")
def profile_add(
    name: str = typer.Argument(help="Profile name."),
    token_url: str = typer.Option(..., "--token-url", help="Token endpoint URL."),
    client_id_source: str = typer.Option(
        ..., "--client-id-source", help="Client ID source: env:VAR, file:/path, prompt."
    ),
    client_secret_source: Optional[str] = typer.Option(
        None, "--client-secret-source", help="Client secret source."
    ),
    client_assertion_source: Optional[str] = typer.Option(
        None,
        "--client-assertion-source",
        help="Source of a signed client assertion, re-read for every token request.",
    ),
    scope: list[str] = typer.Option([], "--scope", help="Scope to request. Repeatable."),
    param: list[str] = typer.Option(
        [], "--param", help="Extra token request field, key=value. Repeatable."
    ),
    auth_style: AuthStyle = typer.Option(
        AuthStyle.AUTO_DETECT, "--auth-style", help="Where to send the client credentials."
    ),
    timeout: float = typer.Option(30.0, "--timeout", help="Request timeout in seconds."),
    insecure: bool = typer.Option(
        False, "--insecure", help="Skip TLS certificate verification."
    ),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace an existing profile."),
) -> None:
    """Create a profile.

    Raises:
        typer.Exit: With code 2 if the profile exists (without
            ``--overwrite``) or the options are invalid.
    """
    from clientcreds.config import profile_exists, save_profile

    if client_secret_source and client_assertion_source:
        error("Use either --client-secret-source or --client-assertion-source, not both.")
        raise typer.Exit(code=EXIT_INVALID_USAGE)

    try:
        if profile_exists(name) and not overwrite:
            error(f"Profile '{name}' already exists. Pass --overwrite to replace it.")
            raise typer.Exit(code=EXIT_INVALID_USAGE)
        profile = Profile(
            name=name,
            token_url=token_url,
            client_id_source=client_id_source,
            client_secret_source=client_secret_source,
            client_assertion_source=client_assertion_source,
            scopes=scope,
            endpoint_params=_parse_params(param),
            auth_style=auth_style,
            request=RequestConfig(timeout=timeout, verify_ssl=not insecure),
        )
        save_profile(profile)
    except ClientCredsError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    success(f'Profile "{name}" saved.')


@profile_app.command("list")
def profile_list() -> None:
    """List stored profiles, marking the default one."""
    from clientcreds.config import list_profiles, load_global_config, load_profile

    try:
        default = load_global_config().default_profile
        rows = []
        for name in list_profiles():
            profile = load_profile(name)
            marker = "*" if name == default else ""
            rows.append([name, profile.token_url, profile.auth_style.value, marker])
    except ClientCredsError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    if not rows:
        info("No profiles. Create one with 'clientcreds profile add'.")
        return
    print_table(["name", "token_url", "auth_style", "default"], rows, title="Profiles")


@profile_app.command("show")
def profile_show(name: str = typer.Argument(help="Profile name.")) -> None:
    """Print a stored profile."""
    from clientcreds.config import load_profile

    try:
        profile = load_profile(name)
    except ClientCredsError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    format_response(profile.model_dump(mode="json"))


@profile_app.command("remove")
def profile_remove(
    name: str = typer.Argument(help="Profile name."),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation."),
) -> None:
    """Delete a stored profile, clearing it as default if needed."""
    from clientcreds.config import delete_profile, load_global_config, save_global_config

    if not force and not typer.confirm(f"Delete profile '{name}'?"):
        info("Cancelled.")
        raise typer.Exit()

    try:
        delete_profile(name)
        global_cfg = load_global_config()
        if global_cfg.default_profile == name:
            global_cfg.default_profile = None
            save_global_config(global_cfg)
    except ClientCredsError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    success(f'Profile "{name}" removed.')


@profile_app.command("use")
def profile_use(name: str = typer.Argument(help="Profile name.")) -> None:
    """Make a profile the default."""
    from clientcreds.config import load_global_config, profile_exists, save_global_config

    try:
        if not profile_exists(name):
            error(f"Profile '{name}' not found.")
            raise typer.Exit(code=EXIT_INVALID_USAGE)
        global_cfg = load_global_config()
        global_cfg.default_profile = name
        save_global_config(global_cfg)
    except ClientCredsError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    success(f'Default profile set to "{name}".')
