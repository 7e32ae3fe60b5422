"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~clientcreds.exceptions.ClientCredsError` subclass.
Shell wrappers can inspect the exit code to tell a rejected credential
from an unreachable token endpoint without parsing stderr.

Example::

    $ clientcreds --profile billing token
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- the token endpoint rejected the client
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""Invalid arguments, an invalid profile, or an incomplete credential config."""

EXIT_AUTH_FAILURE = 3
"""The token endpoint rejected the request, or no client assertion could be produced."""

EXIT_PROTOCOL_ERROR = 5
"""The token endpoint answered with a malformed token response."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_CANCELLED = 130
"""The operation was cancelled or ran past its deadline."""
