"""Registry of pending authorizations (state nonce -> PKCE verifier).

Entries are created when an authorization URL is built and removed by
exactly one of: a callback consuming the state, a newer authorization for
the same server superseding it, an explicit invalidation (cancel), or TTL
expiry. A state nonce is therefore honoured at most once.

The registry is protected by a mutex so it can be shared between the
event loop and helper threads (e.g. a loopback redirect receiver).
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

from pkceflow.models import OAuthConfig
from pkceflow.pkce import PKCEPair

logger = logging.getLogger(__name__)

# The authorization code itself is short-lived at most servers; 10 minutes
# leaves room for the user to log in.
DEFAULT_PENDING_TTL = 600.0


@dataclass(frozen=True)
class PendingAuthState:
    state: str
    server_id: str
    config: OAuthConfig
    pkce: Optional[PKCEPair] = None
    created_at: float = field(default_factory=time.monotonic)

    def expired(self, ttl: Optional[float]) -> bool:
        if ttl is None:
            return False
        return (time.monotonic() - self.created_at) > ttl


class PendingAuthRegistry:
    """Thread-safe map of pending authorizations keyed by state nonce.

    At most one pending authorization exists per server: registering a
    new one invalidates the previous state for that server.

    Args:
        ttl: Seconds after which an unconsumed entry is treated as absent.
            ``None`` disables expiry.
    """

    def __init__(self, ttl: Optional[float] = DEFAULT_PENDING_TTL) -> None:
        self._ttl = ttl
        self._lock = threading.Lock()
        self._by_state: dict[str, PendingAuthState] = {}
        self._by_server: dict[str, str] = {}

    def register(self, pending: PendingAuthState) -> Optional[PendingAuthState]:
        """Store *pending*, returning the entry it superseded, if any."""
        with self._lock:
            superseded = None
            previous_state = self._by_server.get(pending.server_id)
            if previous_state is not None:
                superseded = self._by_state.pop(previous_state, None)
            self._by_state[pending.state] = pending
            self._by_server[pending.server_id] = pending.state
        if superseded is not None:
            logger.debug("Superseded pending authorization for '%s'", pending.server_id)
        return superseded

    def consume(self, state: str) -> Optional[PendingAuthState]:
        """Atomically remove and return the entry for *state*.

        Returns ``None`` if the state is unknown, already consumed,
        superseded, or expired.
        """
        with self._lock:
            pending = self._by_state.pop(state, None)
            if pending is None:
                return None
            if self._by_server.get(pending.server_id) == state:
                del self._by_server[pending.server_id]
        if pending.expired(self._ttl):
            logger.debug("Pending authorization for '%s' expired", pending.server_id)
            return None
        return pending

    def invalidate(self, server_id: str) -> bool:
        """Drop the pending authorization for *server_id*. Returns True if one existed."""
        with self._lock:
            state = self._by_server.pop(server_id, None)
            if state is None:
                return False
            self._by_state.pop(state, None)
            return True

    def get_for_server(self, server_id: str) -> Optional[PendingAuthState]:
        """Peek at the live pending authorization for *server_id* without consuming it."""
        with self._lock:
            state = self._by_server.get(server_id)
            pending = self._by_state.get(state) if state is not None else None
        if pending is None or pending.expired(self._ttl):
            return None
        return pending

    def purge_expired(self) -> int:
        """Remove expired entries and return how many were dropped."""
        if self._ttl is None:
            return 0
        with self._lock:
            expired = [s for s, p in self._by_state.items() if p.expired(self._ttl)]
            for state in expired:
                pending = self._by_state.pop(state)
                if self._by_server.get(pending.server_id) == state:
                    del self._by_server[pending.server_id]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_state)

    def __contains__(self, state: object) -> bool:
        with self._lock:
            return state in self._by_state
