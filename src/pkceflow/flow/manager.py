"""The flow orchestrator: :class:`OAuthFlow`.

``OAuthFlow`` composes the PKCE generator, the pending-authorization
registry, the token endpoint client, the token store and the refresh
coordinator into the operations a host application uses:

- :meth:`OAuthFlow.build_authorization_url` and
  :meth:`OAuthFlow.handle_callback` -- the two halves of an interactive
  authorization, for hosts that own the browser and the redirect.
- :meth:`OAuthFlow.get_valid_token` -- the access path for everything
  downstream; refreshes when needed and never opens a browser.
- :meth:`OAuthFlow.authorize` and :meth:`OAuthFlow.authenticate` -- the
  coordinated interactive flow through the delegate and the callback
  router.

Per server the flow moves through::

    Idle -> AuthorizationRequested -> AwaitingCallback -> ExchangingCode
         -> Authenticated -> Refreshing -> Authenticated
                                       \\-> ReauthenticationRequired

and any step may end in ``Failed(error)``, announced to the delegate as
``failed`` progress before the error is raised.

Example::

    async with OAuthFlow(store=FileTokenStore(), delegate=ConsoleDelegate()) as flow:
        flow.register_server("github", config)
        token = await flow.authenticate("github")
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

import httpx

from pkceflow.delegate import AuthDelegate, ProgressState, notify
from pkceflow.exceptions import (
    AuthenticationRequired,
    AuthorizationDenied,
    ConfigError,
    DelegateUnavailable,
    InvalidCallbackURL,
    InvalidState,
    PkceflowError,
)
from pkceflow.flow.authorization import build_authorization_url
from pkceflow.flow.callback import parse_callback_url
from pkceflow.flow.refresh import DEFAULT_REFRESH_MARGIN, RefreshCoordinator
from pkceflow.flow.token_endpoint import TokenEndpoint
from pkceflow.models import OAuthConfig, TokenSet, utcnow
from pkceflow.pending import DEFAULT_PENDING_TTL, PendingAuthRegistry, PendingAuthState
from pkceflow.pkce import generate_pkce_pair, generate_state
from pkceflow.router import CallbackRouter
from pkceflow.stores.base import TokenStore
from pkceflow.stores.memory import MemoryTokenStore

logger = logging.getLogger(__name__)


class OAuthFlow:
    """OAuth 2.0 authorization-code flow with PKCE for many servers.

    Servers are independent: each has its own pending authorization,
    stored token set and refresh slot.

    Args:
        store: Token store. Defaults to a :class:`MemoryTokenStore`.
        delegate: Host capabilities (browser, prompts, progress).
        http_client: Client for token requests. When omitted the flow
            creates one and closes it in :meth:`aclose`.
        router: Callback router shared with the redirect receiver.
        refresh_margin: Seconds before expiry at which tokens are refreshed.
        pending_ttl: Seconds an unanswered authorization stays valid
            (``None`` disables expiry).
        timeout: HTTP timeout for the client the flow creates.
        clock: Current UTC time; injectable for tests.
    """

    def __init__(
        self,
        store: Optional[TokenStore] = None,
        delegate: Optional[AuthDelegate] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        router: Optional[CallbackRouter] = None,
        refresh_margin: float = DEFAULT_REFRESH_MARGIN,
        pending_ttl: Optional[float] = DEFAULT_PENDING_TTL,
        timeout: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store: TokenStore = store if store is not None else MemoryTokenStore()
        self._delegate = delegate
        self._owns_client = http_client is None
        self._client = http_client if http_client is not None else httpx.AsyncClient(timeout=timeout)
        self._router = router if router is not None else CallbackRouter()
        self._pending = PendingAuthRegistry(ttl=pending_ttl)
        self._configs: dict[str, OAuthConfig] = {}
        self._endpoint = TokenEndpoint(self._client, clock=clock)
        self._refresher = RefreshCoordinator(
            self._store,
            self._endpoint,
            self._configs.get,
            delegate=delegate,
            margin=refresh_margin,
            clock=clock,
        )

    async def __aenter__(self) -> OAuthFlow:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel waiting authorizations and close the owned HTTP client."""
        self._router.cancel_all()
        if self._owns_client:
            await self._client.aclose()

    @property
    def store(self) -> TokenStore:
        return self._store

    @property
    def router(self) -> CallbackRouter:
        return self._router

    @property
    def pending(self) -> PendingAuthRegistry:
        return self._pending

    # --- configuration ---

    def register_server(self, server_id: str, config: OAuthConfig) -> None:
        """Remember *config* for *server_id* (needed to refresh its tokens)."""
        self._configs[server_id] = config

    def config_for(self, server_id: str) -> Optional[OAuthConfig]:
        return self._configs.get(server_id)

    def _require_config(self, server_id: str, config: Optional[OAuthConfig]) -> OAuthConfig:
        if config is not None:
            self._configs[server_id] = config
            return config
        known = self._configs.get(server_id)
        if known is None:
            raise ConfigError(f"No OAuth configuration registered for '{server_id}'")
        return known

    # --- authorization request ---

    def build_authorization_url(self, config: OAuthConfig, server_id: str) -> str:
        """Start an authorization for *server_id* and return the URL to open.

        Generates a fresh state nonce and, when ``config.use_pkce``, a fresh
        PKCE pair. Any earlier unanswered authorization for the same server
        is invalidated, and a flow waiting on it is cancelled.
        """
        url, _ = self._begin_authorization(config, server_id)
        return url

    def _begin_authorization(self, config: OAuthConfig, server_id: str) -> tuple[str, PendingAuthState]:
        self._configs[server_id] = config
        pkce = generate_pkce_pair(config.pkce_method) if config.use_pkce else None
        pending = PendingAuthState(
            state=generate_state(), server_id=server_id, config=config, pkce=pkce
        )
        superseded = self._pending.register(pending)
        if superseded is not None:
            self._router.cancel(superseded.state, reason="superseded by a newer authorization")

        url = build_authorization_url(config, pending)
        logger.debug("Built authorization URL for '%s'", server_id)
        notify(self._delegate, ProgressState.OPENING_BROWSER, server_id)
        return url, pending

    # --- callback ---

    async def handle_callback(self, url: str) -> TokenSet:
        """Complete an authorization from its redirect URL.

        Raises:
            AuthorizationDenied: The redirect carries ``error``.
            InvalidCallbackURL: ``code`` or ``state`` is missing.
            InvalidState: The state is unknown, expired, superseded or used.
            TokenExchangeFailed: The token endpoint answered non-2xx.
            InvalidTokenResponse: The token response is unusable.
            NetworkError: The token endpoint could not be reached.
            StorageError: The tokens could not be saved.
        """
        server_id: Optional[str] = None
        try:
            params = parse_callback_url(url)
            if params.is_error:
                if params.state is not None:
                    consumed = self._pending.consume(params.state)
                    server_id = consumed.server_id if consumed is not None else None
                raise AuthorizationDenied(params.error or "unknown_error", params.error_description)
            if params.code is None or params.state is None:
                raise InvalidCallbackURL("missing 'code' or 'state' parameter")

            pending = self._pending.consume(params.state)
            if pending is None:
                raise InvalidState()
            server_id = pending.server_id

            notify(self._delegate, ProgressState.EXCHANGING_CODE, server_id)
            tokens = await self._endpoint.exchange_code(
                pending.config,
                params.code,
                pending.pkce.verifier if pending.pkce is not None else None,
            )
            await self._store.save(server_id, tokens)
        except PkceflowError as exc:
            logger.debug("Callback handling failed: %s", exc)
            notify(self._delegate, ProgressState.FAILED, server_id, exc)
            raise

        logger.info("Authorized '%s'", server_id)
        notify(self._delegate, ProgressState.COMPLETE, server_id)
        return tokens

    def receive_callback(self, url: str) -> bool:
        """Hand a redirect URL to the :meth:`authorize` call waiting for it."""
        return self._router.handle_callback(url)

    # --- token access ---

    async def get_valid_token(self, server_id: str) -> str:
        """Return a valid access token, refreshing it if needed.

        See :meth:`RefreshCoordinator.get_valid_token
        <pkceflow.flow.refresh.RefreshCoordinator.get_valid_token>`.
        """
        return await self._refresher.get_valid_token(server_id)

    async def refresh_tokens(
        self, server_id: str, rejected_token: Optional[str] = None
    ) -> TokenSet:
        """Refresh now, sharing the server's single-flight slot. Never prompts."""
        return await self._refresher.force_refresh(server_id, rejected_token=rejected_token)

    async def load_tokens(self, server_id: str) -> Optional[TokenSet]:
        return await self._store.load(server_id)

    async def has_tokens(self, server_id: str) -> bool:
        return await self._store.load(server_id) is not None

    # --- interactive flow ---

    async def authorize(
        self,
        server_id: str,
        config: Optional[OAuthConfig] = None,
        timeout: Optional[float] = None,
    ) -> TokenSet:
        """Run the interactive authorization through the delegate.

        The callback wait is registered before the browser opens so a fast
        redirect cannot be missed. On timeout, cancellation or failure the
        pending state is released.

        Raises:
            DelegateUnavailable: No delegate can open the URL.
            FlowCancelled: Timed out, cancelled, or superseded.
            OAuthError: Any error of :meth:`handle_callback`.
        """
        config = self._require_config(server_id, config)
        url, pending = self._begin_authorization(config, server_id)
        future = self._router.expect(pending.state, server_id)

        try:
            if self._delegate is None:
                raise DelegateUnavailable()
            await self._delegate.open_authorization_url(url)
            notify(self._delegate, ProgressState.WAITING_FOR_USER, server_id)
            callback_url = await self._router.wait(pending.state, future, timeout)
        except Exception as exc:
            self._release(pending)
            if not isinstance(exc, PkceflowError):
                logger.warning("Authorization for '%s' failed in the delegate: %s", server_id, exc)
            notify(self._delegate, ProgressState.FAILED, server_id, exc)
            raise
        except asyncio.CancelledError:
            self._release(pending)
            raise

        return await self.handle_callback(callback_url)

    async def authenticate(
        self,
        server_id: str,
        config: Optional[OAuthConfig] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Return a valid access token, authorizing interactively if required.

        A declined reauthentication prompt is not overridden:
        :class:`~pkceflow.exceptions.ReauthenticationDeclined` propagates.
        """
        if config is not None:
            self.register_server(server_id, config)
        try:
            return await self.get_valid_token(server_id)
        except AuthenticationRequired as exc:
            logger.info("Starting interactive authorization for '%s': %s", server_id, exc)
        tokens = await self.authorize(server_id, timeout=timeout)
        return tokens.access_token

    def cancel(self, server_id: str) -> bool:
        """Abandon the in-progress authorization for *server_id*.

        Releases its pending state and fails any waiting :meth:`authorize`
        with :class:`~pkceflow.exceptions.FlowCancelled`.
        """
        released = self._pending.invalidate(server_id)
        cancelled = self._router.cancel_all(server_id)
        return released or cancelled > 0

    async def logout(self, server_id: str) -> None:
        """Cancel any authorization in progress and delete stored tokens."""
        self.cancel(server_id)
        await self._store.delete(server_id)
        logger.info("Logged out of '%s'", server_id)

    def _release(self, pending: PendingAuthState) -> None:
        # Drops only this attempt's state, never a newer one.
        self._pending.consume(pending.state)
        self._router.cancel(pending.state)
