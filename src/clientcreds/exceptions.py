"""Exception hierarchy for clientcreds.

All exceptions inherit from :class:`ClientCredsError`, which carries an
``exit_code`` attribute mapped to a constant from
:mod:`clientcreds.exit_codes`. Library callers catch the specific
subclasses; the CLI catches ``ClientCredsError`` and exits with the
appropriate code.

Subclass hierarchy::

    ClientCredsError              (exit 1)
    +-- ConfigurationError        (exit 2)
    +-- ClientAssertionError      (exit 3)
    +-- TransportError            (exit 6)
    |   +-- RequestCancelledError (exit 130)
    +-- ProtocolError             (exit 5)
    +-- RetrievalError            (exit 3)

None of these is fatal: a caller may retry later and the token sources
start again from an empty cache.
"""

from __future__ import annotations

from typing import Optional

from clientcreds.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_PROTOCOL_ERROR,
)


class ClientCredsError(Exception):
    """Base exception for all clientcreds errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigurationError(ClientCredsError):
    """Raised for an incomplete credential config, a bad profile, or an unresolvable credential source.

    Always raised before any network activity.
    """

    exit_code = EXIT_INVALID_USAGE


class ClientAssertionError(ClientCredsError):
    """Raised when the client assertion supplier fails. No token request is sent."""

    exit_code = EXIT_AUTH_FAILURE


class TransportError(ClientCredsError):
    """Raised on network-level failures talking to the token endpoint.

    The request may or may not have reached the server.
    """

    exit_code = EXIT_CONNECTION_ERROR


class RequestCancelledError(TransportError):
    """Raised when a :class:`~clientcreds.context.Context` is cancelled or its deadline passes."""

    exit_code = EXIT_CANCELLED


class ProtocolError(ClientCredsError):
    """Raised when a successful HTTP response does not carry a usable token."""

    exit_code = EXIT_PROTOCOL_ERROR


class RetrievalError(ClientCredsError):
    """Raised when the token endpoint answers with a non-2xx status or an OAuth2 error body.

    Args:
        status_code: HTTP status of the token response.
        body: Raw response body text.
        error_code: ``error`` field of the response, if any.
        error_description: ``error_description`` field, if any.
        error_uri: ``error_uri`` field, if any.
    """

    exit_code = EXIT_AUTH_FAILURE

    def __init__(
        self,
        status_code: int,
        body: str,
        error_code: Optional[str] = None,
        error_description: Optional[str] = None,
        error_uri: Optional[str] = None,
    ):
        self.status_code = status_code
        self.body = body
        self.error_code = error_code
        self.error_description = error_description
        self.error_uri = error_uri
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.error_code:
            message = f'Token endpoint returned {self.status_code}: "{self.error_code}"'
            if self.error_description:
                message += f" {self.error_description}"
            if self.error_uri:
                message += f" ({self.error_uri})"
            return message
        return f"Token request failed with status {self.status_code}: {self.body}"
