"""Host-supplied capabilities for the human-in-the-loop steps of the flow.

The flow never opens a browser or asks the user anything by itself. It
calls an :class:`AuthDelegate` supplied by the host application:

- :meth:`~AuthDelegate.open_authorization_url` -- present the
  authorization page (browser, embedded web view, printed URL, ...).
- :meth:`~AuthDelegate.prompt_reauthentication` -- ask whether to sign in
  again after a refresh failed.
- :meth:`~AuthDelegate.authentication_progress` -- non-blocking progress
  notifications. These are observational only and never gate the flow.

See Also:
    :class:`pkceflow.console.ConsoleDelegate` for the terminal
    implementation used by the CLI.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class ProgressState(str, enum.Enum):
    OPENING_BROWSER = "opening_browser"
    WAITING_FOR_USER = "waiting_for_user"
    EXCHANGING_CODE = "exchanging_code"
    REFRESHING_TOKENS = "refreshing_tokens"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class AuthProgress:
    """One progress notification. ``error`` is set only for ``FAILED``."""

    state: ProgressState
    server_id: Optional[str] = None
    error: Optional[BaseException] = None

    @classmethod
    def failed(cls, error: BaseException, server_id: Optional[str] = None) -> AuthProgress:
        return cls(state=ProgressState.FAILED, server_id=server_id, error=error)


@runtime_checkable
class AuthDelegate(Protocol):
    """Capability set the host application provides to the flow."""

    async def open_authorization_url(self, url: str) -> None:
        """Present *url* to the user. Returns once the surface is shown.

        Raises:
            DelegateUnavailable: If no browser or UI surface exists.
        """
        ...

    async def prompt_reauthentication(self, server_id: str, reason: str) -> bool:
        """Ask the user whether to sign in to *server_id* again."""
        ...

    def authentication_progress(self, progress: AuthProgress) -> None:
        """Receive a progress notification. Must not block."""
        ...


def notify(
    delegate: Optional[AuthDelegate],
    state: ProgressState,
    server_id: Optional[str] = None,
    error: Optional[BaseException] = None,
) -> None:
    """Send a progress notification, ignoring delegate failures."""
    if delegate is None:
        return
    try:
        delegate.authentication_progress(AuthProgress(state=state, server_id=server_id, error=error))
    except Exception as exc:
        logger.warning("Progress delegate raised on '%s': %s", state.value, exc)
