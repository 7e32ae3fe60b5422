"""Shared test fixtures for clientcreds.

Provides isolated config environments, output state management, a CLI
runner, and a scriptable fake token endpoint built on
:class:`httpx.MockTransport`. These fixtures are automatically discovered
by pytest and available to all test modules without explicit imports.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Callable
from urllib.parse import parse_qs

import httpx
import pytest

from clientcreds.output import OutputFormat, OutputManager, configure_logging, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager and CLI log handler after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale
    ("I/O operation on closed file"). Resetting forces a fresh manager
    to be created on next use.
    """
    yield
    reset_output()
    configure_logging(False)


# ---------------------------------------------------------------------------
# Fake token endpoint
# ---------------------------------------------------------------------------


class TokenEndpoint:
    """Scriptable token endpoint that records every request it receives.

    By default it answers every POST with a JSON bearer token valid for
    one hour. Replace :attr:`responder` to script other answers.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responder: Callable[[httpx.Request], httpx.Response] = self.issue_token
        self._lock = threading.Lock()
        self._issued = 0

    @staticmethod
    def json_response(data: Any, status_code: int = 200) -> httpx.Response:
        return httpx.Response(
            status_code,
            headers={"content-type": "application/json"},
            content=json.dumps(data).encode("utf-8"),
        )

    def issue_token(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self._issued += 1
            number = self._issued
        return self.json_response(
            {"access_token": f"token-{number}", "token_type": "bearer", "expires_in": 3600}
        )

    @property
    def calls(self) -> int:
        return len(self.requests)

    def form(self, index: int = -1) -> dict[str, list[str]]:
        """Return the parsed form body of a recorded request."""
        return parse_qs(self.requests[index].content.decode("utf-8"), keep_blank_values=True)

    def body(self, index: int = -1) -> str:
        return self.requests[index].content.decode("utf-8")

    def handler(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
        return self.responder(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def token_endpoint() -> TokenEndpoint:
    """A fresh :class:`TokenEndpoint` for each test."""
    return TokenEndpoint()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path
    so that tests never touch real user config, and clears
    CLIENTCREDS_PROFILE.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setattr("clientcreds.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.delenv("CLIENTCREDS_PROFILE", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
