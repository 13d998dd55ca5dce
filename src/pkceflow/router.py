"""Routes authorization redirects to the flow waiting for them.

An interactive authorization registers interest in its ``state`` nonce
*before* the browser opens, then awaits the redirect. Whatever receives
redirects (a URL-scheme handler, a loopback HTTP listener, a pasted URL)
hands the URL to :meth:`CallbackRouter.handle_callback`, which resolves
the matching waiter.

The router lives on the event loop. Producers on other threads must hop
onto the loop first (``loop.call_soon_threadsafe``).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from pkceflow.exceptions import FlowCancelled, InvalidCallbackURL
from pkceflow.flow.callback import parse_callback_url

logger = logging.getLogger(__name__)


@dataclass
class _Waiter:
    server_id: str
    future: asyncio.Future[str]


class CallbackRouter:
    """State-keyed rendezvous between redirect receivers and waiting flows."""

    def __init__(self) -> None:
        self._waiters: dict[str, _Waiter] = {}

    def expect(self, state: str, server_id: str) -> asyncio.Future[str]:
        """Register a waiter for *state* and return its future.

        A previous waiter for the same state is cancelled.
        """
        self.cancel(state, reason="superseded by a newer wait for the same state")
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._waiters[state] = _Waiter(server_id=server_id, future=future)
        logger.debug("Waiting for callback for '%s'", server_id)
        return future

    async def wait(
        self,
        state: str,
        future: asyncio.Future[str],
        timeout: Optional[float] = None,
    ) -> str:
        """Await a future returned by :meth:`expect`.

        Raises:
            FlowCancelled: On timeout or when the wait is cancelled through
                :meth:`cancel` / :meth:`cancel_all`.
        """
        try:
            if timeout is None:
                return await future
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise FlowCancelled(
                f"Timed out after {timeout:g}s waiting for the authorization callback"
            ) from None
        finally:
            waiter = self._waiters.get(state)
            if waiter is not None and waiter.future is future:
                del self._waiters[state]

    async def wait_for_callback(
        self, state: str, server_id: str, timeout: Optional[float] = None
    ) -> str:
        """Register for *state* and wait for the redirect URL carrying it."""
        return await self.wait(state, self.expect(state, server_id), timeout)

    def handle_callback(self, url: str) -> bool:
        """Deliver a redirect URL. Returns True if a waiter accepted it."""
        try:
            params = parse_callback_url(url)
        except InvalidCallbackURL as exc:
            logger.warning("Ignoring callback: %s", exc)
            return False
        if params.state is None:
            logger.warning("Ignoring callback without 'state'")
            return False
        waiter = self._waiters.pop(params.state, None)
        if waiter is None or waiter.future.done():
            logger.debug("No flow is waiting for the callback's state")
            return False
        waiter.future.set_result(url)
        return True

    def cancel(self, state: str, reason: str = "authorization was cancelled") -> bool:
        """Fail the waiter for *state* with :class:`FlowCancelled`."""
        waiter = self._waiters.pop(state, None)
        if waiter is None:
            return False
        self._fail(waiter, reason)
        return True

    def cancel_all(self, server_id: Optional[str] = None) -> int:
        """Cancel every waiter, or only those for *server_id*. Returns the count."""
        states = [
            state
            for state, waiter in self._waiters.items()
            if server_id is None or waiter.server_id == server_id
        ]
        for state in states:
            self._fail(self._waiters.pop(state), "authorization was cancelled")
        return len(states)

    def pending_states(self, server_id: Optional[str] = None) -> list[str]:
        return [
            state
            for state, waiter in self._waiters.items()
            if server_id is None or waiter.server_id == server_id
        ]

    def __len__(self) -> int:
        return len(self._waiters)

    @staticmethod
    def _fail(waiter: _Waiter, reason: str) -> None:
        if waiter.future.done():
            return
        waiter.future.set_exception(FlowCancelled(f"OAuth flow cancelled: {reason}"))
        # Nobody may be awaiting yet; keep asyncio from reporting it as unretrieved.
        waiter.future.exception()
