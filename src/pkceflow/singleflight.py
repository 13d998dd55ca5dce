"""Keyed single-flight coordination for asyncio.

:class:`SingleFlight` collapses concurrent calls for the same key into one
in-flight task whose outcome every caller shares. Waiters await the task
through :func:`asyncio.shield`, so a cancelled waiter never cancels the
shared work, and the key is released when the task finishes regardless
of how it finished.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """One outstanding operation per key, shared by all callers.

    Example::

        flights: SingleFlight[str] = SingleFlight()
        token = await flights.do("server-a", refresh_server_a)
    """

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Task[T]] = {}

    async def do(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run *fn* for *key*, or join the run already in progress.

        Args:
            key: Coordination key (one flight per key at a time).
            fn: Zero-argument coroutine factory. Only called when no
                flight exists for *key*.

        Returns:
            The result of the shared flight. Exceptions raised by the
            flight propagate to every caller.
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._run(fn))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._release(k, t))
        else:
            logger.debug("Joining in-flight operation for '%s'", key)
        return await asyncio.shield(task)

    @staticmethod
    async def _run(fn: Callable[[], Awaitable[T]]) -> T:
        return await fn()

    def _release(self, key: str, task: asyncio.Task[T]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the exception retrieved when every waiter was cancelled.
        if not task.cancelled():
            task.exception()

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    def __len__(self) -> int:
        return len(self._inflight)
