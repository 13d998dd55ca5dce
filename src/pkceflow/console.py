"""Terminal implementation of :class:`~pkceflow.delegate.AuthDelegate`.

Used by the ``pkceflow`` CLI: the authorization URL is printed to stderr
and opened in the system browser, reauthentication is confirmed with a
terminal prompt, and progress goes through :mod:`pkceflow.output`.
"""

from __future__ import annotations

import asyncio
import logging
import webbrowser

import typer

from pkceflow.delegate import AuthProgress, ProgressState
from pkceflow.exceptions import DelegateUnavailable
from pkceflow.output import get_output

logger = logging.getLogger(__name__)

_MESSAGES = {
    ProgressState.OPENING_BROWSER: "Opening browser for authorization...",
    ProgressState.WAITING_FOR_USER: "Waiting for you to finish signing in...",
    ProgressState.EXCHANGING_CODE: "Exchanging authorization code for tokens...",
    ProgressState.REFRESHING_TOKENS: "Refreshing access token...",
    ProgressState.COMPLETE: "Done.",
}


class ConsoleDelegate:
    """Browser, prompts, and progress for an interactive terminal.

    Args:
        open_browser: Launch the system browser. When ``False`` the URL is
            only printed (``auth login --manual``).
        allow_prompts: When ``False`` (``--no-input``) reauthentication is
            always declined.
    """

    def __init__(self, open_browser: bool = True, allow_prompts: bool = True) -> None:
        self._open_browser = open_browser
        self._allow_prompts = allow_prompts

    async def open_authorization_url(self, url: str) -> None:
        output = get_output()
        output.info("Open this URL to authorize:")
        output.info(url)
        if not self._open_browser:
            return
        opened = await asyncio.to_thread(webbrowser.open, url)
        if not opened:
            logger.debug("webbrowser.open reported no browser")
            output.warning("Could not open a browser; open the URL above manually.")

    async def prompt_reauthentication(self, server_id: str, reason: str) -> bool:
        if not self._allow_prompts:
            return False
        get_output().warning(f"Session for '{server_id}' could not be renewed: {reason}")
        return await asyncio.to_thread(
            typer.confirm, f"Sign in to '{server_id}' again?", default=True, err=True
        )

    def authentication_progress(self, progress: AuthProgress) -> None:
        output = get_output()
        if progress.state == ProgressState.FAILED:
            output.debug(f"Authorization step failed: {progress.error}")
            return
        output.progress(_MESSAGES[progress.state])


class HeadlessDelegate(ConsoleDelegate):
    """Delegate for environments with no browser and no prompts."""

    def __init__(self) -> None:
        super().__init__(open_browser=False, allow_prompts=False)

    async def open_authorization_url(self, url: str) -> None:
        raise DelegateUnavailable("Interactive authorization is disabled (--no-input)")
