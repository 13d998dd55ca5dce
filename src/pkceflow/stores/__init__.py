"""Token stores: where token sets live between runs.

Three interchangeable implementations of :class:`TokenStore` ship with
pkceflow:

- :class:`MemoryTokenStore` -- volatile, for tests and demos.
- :class:`FileTokenStore` -- one ``0o600`` JSON file per server.
- :class:`KeyringTokenStore` -- the platform keychain via :mod:`keyring`.

:func:`create_token_store` builds one from the ``token_store`` setting of
:class:`~pkceflow.models.GlobalConfig`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pkceflow.exceptions import ConfigError
from pkceflow.stores.base import TokenStore
from pkceflow.stores.file import FileTokenStore
from pkceflow.stores.keyring_store import DEFAULT_SERVICE, KeyringTokenStore
from pkceflow.stores.memory import MemoryTokenStore

__all__ = [
    "FileTokenStore",
    "KeyringTokenStore",
    "MemoryTokenStore",
    "TokenStore",
    "create_token_store",
]


def create_token_store(
    kind: str,
    *,
    directory: Optional[Path] = None,
    keyring_service: str = DEFAULT_SERVICE,
) -> TokenStore:
    """Instantiate the token store named *kind*.

    Args:
        kind: ``"file"``, ``"keyring"``, or ``"memory"``.
        directory: Token directory for the file store.
        keyring_service: Service name for the keyring store.

    Raises:
        ConfigError: If *kind* is not a known store.
    """
    if kind == "file":
        return FileTokenStore(directory)
    if kind == "keyring":
        return KeyringTokenStore(keyring_service)
    if kind == "memory":
        return MemoryTokenStore()
    raise ConfigError(f"Unknown token store '{kind}'. Expected one of: file, keyring, memory")
