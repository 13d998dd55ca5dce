"""pkceflow -- OAuth 2.0 authorization code flow with PKCE for API clients.

This package implements the client side of the authorization-code grant
with PKCE and the whole token lifecycle: interactive authorization, code
exchange, expiry-aware refresh with at most one refresh in flight per
server, and delegate-driven reauthentication when a refresh fails.

Typical library use::

    from pkceflow import OAuthConfig, OAuthFlow, FileTokenStore

    config = OAuthConfig(
        client_id="abc",
        authorization_url="https://auth.example.com/authorize",
        token_url="https://auth.example.com/token",
        scopes=["read", "write"],
        redirect_scheme="app",
    )
    async with OAuthFlow(store=FileTokenStore(), delegate=my_delegate) as flow:
        url = flow.build_authorization_url(config, "example")
        # ... the host opens url; the provider redirects to app://oauth/callback?...
        tokens = await flow.handle_callback(redirect_url)
        token = await flow.get_valid_token("example")

The ``pkceflow`` command line drives the same flow for configured servers.

Modules:
    flow: The authorization flow and :class:`OAuthFlow`.
    stores: Token stores (memory, file, keyring).
    discovery: RFC 9728 / RFC 8414 discovery and RFC 7591 registration.
    transport: :class:`httpx.Auth` that injects and refreshes bearer tokens.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration and server profiles.
    exceptions: Exception hierarchy with exit-code mapping.
    app: Typer application and CLI entry point.
"""

__version__ = "0.1.0"

from pkceflow.delegate import AuthDelegate, AuthProgress, ProgressState  # noqa: E402
from pkceflow.flow.manager import OAuthFlow  # noqa: E402
from pkceflow.models import OAuthConfig, PKCEMethod, TokenSet  # noqa: E402
from pkceflow.router import CallbackRouter  # noqa: E402
from pkceflow.stores import (  # noqa: E402
    FileTokenStore,
    KeyringTokenStore,
    MemoryTokenStore,
    TokenStore,
)

__all__ = [
    "AuthDelegate",
    "AuthProgress",
    "CallbackRouter",
    "FileTokenStore",
    "KeyringTokenStore",
    "MemoryTokenStore",
    "OAuthConfig",
    "OAuthFlow",
    "PKCEMethod",
    "ProgressState",
    "TokenSet",
    "TokenStore",
    "__version__",
]
