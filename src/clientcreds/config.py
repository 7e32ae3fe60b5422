"""Configuration management with XDG paths, atomic writes, and profile resolution.

This module handles all persistent configuration for the ``clientcreds`` CLI:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.clientcreds/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_data_dir`, :func:`get_profiles_dir`.
* **Global config** -- A single :class:`~clientcreds.models.GlobalConfig`
  JSON file holding the default profile.
* **Profiles** -- One JSON file per token endpoint / client pair, each
  deserialised into a :class:`~clientcreds.models.Profile`.
* **Credential resolution** -- :func:`resolve_credential` reads secrets
  from env vars, files, or interactive prompts at use time, so profiles
  never hold secrets themselves.
* **Credential config** -- :func:`build_config` turns a profile into a
  :class:`~clientcreds.credentials.Config`.

Tokens are never written to disk.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import sys
import tempfile
from pathlib import Path
from typing import Optional

from clientcreds.context import Context
from clientcreds.credentials import ClientAssertionSupplier, Config
from clientcreds.exceptions import ClientAssertionError, ConfigurationError
from clientcreds.models import GlobalConfig, Profile

_APP_NAME = "clientcreds"
_CONFIG_FILENAME = "config.json"
PROFILE_ENV_VAR = "CLIENTCREDS_PROFILE"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True on platforms that follow the XDG Base Directory layout (Linux/BSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/clientcreds/`` (default ``~/.config/clientcreds/``).
    On macOS/Windows: ``~/.clientcreds/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/clientcreds/`` (default ``~/.local/share/clientcreds/``).
    On macOS/Windows: ``~/.clientcreds/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_profiles_dir() -> Path:
    """Return ``<config_dir>/profiles/``, creating it if necessary."""
    path = get_config_dir() / "profiles"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file lives in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def _global_config_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration, or defaults if the file does not exist.

    Raises:
        ConfigurationError: If the file contains invalid JSON or fails validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically."""
    data = config.model_dump(mode="json")
    _atomic_write(_global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Profiles ---


def _profile_path(name: str) -> Path:
    if not name or "/" in name or "\\" in name or name.startswith("."):
        raise ConfigurationError(f"Invalid profile name: {name!r}")
    return get_profiles_dir() / f"{name}.json"


def list_profiles() -> list[str]:
    """Return all profile names, sorted alphabetically."""
    return sorted(p.stem for p in get_profiles_dir().glob("*.json") if p.is_file())


def profile_exists(name: str) -> bool:
    return _profile_path(name).is_file()


def load_profile(name: str) -> Profile:
    """Load and validate a profile from disk.

    Raises:
        ConfigurationError: If the profile does not exist, contains invalid
            JSON, or fails validation.
    """
    path = _profile_path(name)
    if not path.is_file():
        raise ConfigurationError(f"Profile '{name}' not found at {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return Profile.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid profile '{name}' at {path}: {exc}") from exc


def save_profile(profile: Profile) -> None:
    """Persist a profile atomically; the file name is derived from ``profile.name``."""
    data = profile.model_dump(mode="json")
    _atomic_write(_profile_path(profile.name), json.dumps(data, indent=2) + "\n")


def delete_profile(name: str) -> None:
    """Delete a profile's JSON file.

    Raises:
        ConfigurationError: If the profile does not exist.
    """
    path = _profile_path(name)
    if not path.is_file():
        raise ConfigurationError(f"Profile '{name}' not found at {path}")
    path.unlink()


def resolve_profile(cli_profile: Optional[str] = None) -> Profile:
    """Pick the active profile.

    Precedence (high to low):
        1. ``--profile`` CLI flag
        2. ``CLIENTCREDS_PROFILE`` environment variable
        3. ``default_profile`` in the global config
        4. The only existing profile, if ``auto_select_single_profile`` is set

    Raises:
        ConfigurationError: If no profile can be selected or it cannot be loaded.
    """
    name = cli_profile or os.environ.get(PROFILE_ENV_VAR) or None
    if name is None:
        global_cfg = load_global_config()
        name = global_cfg.default_profile
        if name is None and global_cfg.auto_select_single_profile:
            profiles = list_profiles()
            if len(profiles) == 1:
                name = profiles[0]
    if name is None:
        raise ConfigurationError(
            "No profile selected. Pass --profile, set CLIENTCREDS_PROFILE, "
            "or run 'clientcreds profile use NAME'."
        )
    return load_profile(name)


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts interactively (requires a TTY)

    Raises:
        ConfigurationError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigurationError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigurationError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigurationError(f"Cannot read credential file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigurationError(
                "Cannot prompt for credentials: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass("Enter credential: ")

    raise ConfigurationError(f"Unknown credential source format: {source}")


class SourceAssertionSupplier(ClientAssertionSupplier):
    """Reads a pre-signed client assertion from a credential source on every request.

    Suits assertions that another process keeps fresh, such as a projected
    service-account JWT at ``file:/var/run/secrets/tokens/client.jwt``.
    """

    def __init__(self, source: str) -> None:
        self._source = source

    def get_assertion(self, ctx: Context) -> str:
        try:
            return resolve_credential(self._source)
        except ConfigurationError as exc:
            raise ClientAssertionError(str(exc)) from exc


def build_config(profile: Profile) -> Config:
    """Turn *profile* into a credential :class:`~clientcreds.credentials.Config`.

    The client ID and secret are resolved now; an assertion source is
    resolved again on every token request.

    Raises:
        ConfigurationError: If a credential source cannot be resolved.
    """
    client_secret = ""
    if profile.client_secret_source:
        client_secret = resolve_credential(profile.client_secret_source)
    assertion: Optional[ClientAssertionSupplier] = None
    if profile.client_assertion_source:
        assertion = SourceAssertionSupplier(profile.client_assertion_source)
    return Config(
        client_id=resolve_credential(profile.client_id_source),
        client_secret=client_secret,
        client_assertion=assertion,
        token_url=profile.token_url,
        scopes=tuple(profile.scopes),
        endpoint_params=profile.endpoint_params,
        auth_style=profile.auth_style,
    )
