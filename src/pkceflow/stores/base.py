"""The token store capability.

Callers depend only on this four-operation contract; the concrete stores
are interchangeable. Implementations must tolerate concurrent callers and
raise :class:`~pkceflow.exceptions.StorageError` for every failure.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from pkceflow.models import TokenSet


@runtime_checkable
class TokenStore(Protocol):
    async def save(self, server_id: str, tokens: TokenSet) -> None:
        """Store *tokens* for *server_id*, replacing any previous set atomically."""
        ...

    async def load(self, server_id: str) -> Optional[TokenSet]:
        """Return the stored token set, or ``None`` when nothing is stored."""
        ...

    async def delete(self, server_id: str) -> None:
        """Remove the token set for *server_id*. A missing entry is not an error."""
        ...

    async def list_server_ids(self) -> list[str]:
        """Return the identifiers of all servers with stored tokens."""
        ...
