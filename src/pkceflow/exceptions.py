"""Exception hierarchy for pkceflow.

All exceptions inherit from :class:`PkceflowError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`pkceflow.exit_codes`.
The top-level error handler in :func:`pkceflow.app.main` catches
``PkceflowError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Errors raised by the OAuth flow itself derive from :class:`OAuthError`.
Each one is scoped to a single flow attempt for a single server and is
never retried internally; retry policy belongs to the caller.

Subclass hierarchy::

    PkceflowError (exit 1)
    +-- InvalidUsageError          (exit 2)
    +-- ConfigError                (exit 1)
    +-- ServerNotFoundError        (exit 4)
    +-- DiscoveryError             (exit 8)
    +-- OAuthError                 (exit 3)
        +-- AuthorizationDenied
        +-- InvalidState
        +-- InvalidCallbackURL
        +-- TokenExchangeFailed
        +-- InvalidTokenResponse
        +-- RefreshFailed
        +-- ReauthenticationDeclined
        +-- AuthenticationRequired
        +-- DelegateUnavailable
        +-- FlowCancelled          (exit 130)
        +-- NetworkError           (exit 6)
        +-- StorageError           (exit 7)
"""

from __future__ import annotations

from typing import Optional

from pkceflow.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_DISCOVERY_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_STORAGE_ERROR,
)


class PkceflowError(Exception):
    """Base exception for all pkceflow errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`pkceflow.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(PkceflowError):
    """Raised for invalid CLI arguments or missing required parameters."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(PkceflowError):
    """Raised for configuration problems (invalid JSON, bad credential sources)."""

    exit_code = EXIT_GENERIC_FAILURE


class ServerNotFoundError(PkceflowError):
    """Raised when a named server profile does not exist."""

    exit_code = EXIT_NOT_FOUND


class DiscoveryError(PkceflowError):
    """Raised when metadata discovery or dynamic client registration fails."""

    exit_code = EXIT_DISCOVERY_ERROR


# --- OAuth flow errors ---


class OAuthError(PkceflowError):
    """Base class for failures of the authorization flow."""

    exit_code = EXIT_AUTH_FAILURE


class AuthorizationDenied(OAuthError):
    """The provider or the user rejected the authorization request.

    Args:
        error: The ``error`` value from the callback (e.g. ``access_denied``).
        description: The optional ``error_description`` value.
    """

    def __init__(self, error: str, description: Optional[str] = None):
        self.error = error
        self.description = description
        message = f"Authorization denied: {error}"
        if description:
            message += f" ({description})"
        super().__init__(message)


class InvalidState(OAuthError):
    """The callback ``state`` is unknown, expired, superseded, or already used.

    This is the CSRF and replay guard: a state nonce is honoured at most
    once.
    """

    def __init__(self, message: str = "OAuth state mismatch: unknown, expired, or already used"):
        super().__init__(message)


class InvalidCallbackURL(OAuthError):
    """The callback URL is malformed or lacks ``code``/``state``."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Invalid OAuth callback URL: {detail}")


class TokenExchangeFailed(OAuthError):
    """The token endpoint answered with a non-success HTTP status.

    Args:
        status: The HTTP status code.
        body: The raw response body.
        error: The OAuth ``error`` code parsed from a JSON body, if any.
        description: The OAuth ``error_description``, if any.
    """

    def __init__(
        self,
        status: int,
        body: str,
        error: Optional[str] = None,
        description: Optional[str] = None,
    ):
        self.status = status
        self.body = body
        self.error = error
        self.description = description
        if error:
            detail = f"{error}: {description or 'No description'}"
        else:
            detail = body.strip()[:200] or "empty response"
        super().__init__(f"Token request failed with status {status}: {detail}")


class InvalidTokenResponse(OAuthError):
    """The token endpoint answered 2xx but the payload is unusable."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Invalid token response: {detail}")


class RefreshFailed(OAuthError):
    """A refresh-token grant was rejected or returned an unusable response."""

    def __init__(self, reason: str, status: Optional[int] = None):
        self.reason = reason
        self.status = status
        super().__init__(f"Token refresh failed: {reason}")


class ReauthenticationDeclined(OAuthError):
    """The user declined to reauthenticate after a failed refresh."""

    def __init__(self, server_id: str, reason: Optional[str] = None):
        self.server_id = server_id
        self.reason = reason
        super().__init__(f"Reauthentication declined for '{server_id}'")


class AuthenticationRequired(OAuthError):
    """No usable token exists; the caller must drive the interactive flow."""

    def __init__(self, server_id: str, reason: Optional[str] = None):
        self.server_id = server_id
        self.reason = reason
        message = f"Authentication required for '{server_id}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class DelegateUnavailable(OAuthError):
    """No delegate surface is available to open the authorization URL."""

    def __init__(self, message: str = "No delegate available to open the authorization URL"):
        super().__init__(message)


class FlowCancelled(OAuthError):
    """The interactive flow was cancelled or timed out."""

    exit_code = EXIT_CANCELLED

    def __init__(self, message: str = "OAuth flow was cancelled"):
        super().__init__(message)


class NetworkError(OAuthError):
    """A transport-level failure while talking to the token endpoint."""

    exit_code = EXIT_CONNECTION_ERROR

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Network error: {detail}")


class StorageError(OAuthError):
    """The token store could not save, load, or delete a token set."""

    exit_code = EXIT_STORAGE_ERROR

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Token storage error: {detail}")
