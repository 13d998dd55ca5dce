"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~pkceflow.exceptions.PkceflowError` subclass.
Shell wrappers can inspect the exit code to tell a missing login apart
from a network outage without parsing stderr.

Example::

    $ pkceflow auth token my-server
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- no valid token, run `pkceflow auth login`
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""Authorization was denied, a token could not be obtained, or reauthentication is needed."""

EXIT_NOT_FOUND = 4
"""The named server profile does not exist."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_STORAGE_ERROR = 7
"""The token store could not be read or written."""

EXIT_DISCOVERY_ERROR = 8
"""Authorization server discovery or dynamic client registration failed."""

EXIT_CANCELLED = 130
"""The flow was cancelled (Ctrl-C or callback timeout)."""
