"""Auth commands -- sign in, print tokens, refresh, sign out.

Provides the ``pkceflow auth`` sub-command group. Every command acts on
one server profile, chosen by the optional argument, ``--server``, or the
configured default (see :func:`~pkceflow.config.resolve_server_name`).

Typical workflow::

    pkceflow auth login github       # browser sign-in
    pkceflow auth token github       # valid access token on stdout
    pkceflow auth status             # all servers with stored tokens
    pkceflow auth logout github
"""

from __future__ import annotations

import asyncio
from typing import Optional
from urllib.parse import urlsplit

import typer

from pkceflow.commands.common import active_server, confirm_or_exit, ctx_flag, run
from pkceflow.output import get_output, info, print_data, success, suggest

auth_app = typer.Typer(no_args_is_help=True)

_LOOPBACK_HOSTS = ("127.0.0.1", "localhost")


@auth_app.command("login")
def auth_login(
    ctx: typer.Context,
    server: Optional[str] = typer.Argument(None, help="Server profile name."),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for the redirect (default from config)."
    ),
    manual: bool = typer.Option(
        False, "--manual", help="Print the URL instead of opening a browser."
    ),
) -> None:
    """Sign in through the browser and store the tokens.

    With a loopback redirect URI (``http://127.0.0.1:<port>/...``) the
    redirect is received automatically. With a custom-scheme redirect URI
    the redirected URL must be pasted back into the terminal.

    Example::

        pkceflow auth login github
        pkceflow auth login github --manual --timeout 120
    """
    from pkceflow.config import build_oauth_config
    from pkceflow.console import ConsoleDelegate

    global_cfg, profile = active_server(ctx, server)
    no_input = bool(ctx_flag(ctx, "no_input"))
    wait = timeout if timeout is not None else float(global_cfg.callback_timeout_seconds)
    delegate = ConsoleDelegate(open_browser=not manual, allow_prompts=not no_input)

    async def _login() -> None:
        config = build_oauth_config(profile)
        async with _make_flow(global_cfg, delegate) as flow:
            target = _loopback_target(config.redirect_uri)
            if target is not None:
                tokens = await _login_loopback(flow, profile.name, config, target, wait)
            else:
                if no_input:
                    from pkceflow.exceptions import InvalidUsageError

                    raise InvalidUsageError(
                        "A custom-scheme redirect URI needs the redirect pasted back; "
                        "this is not possible with --no-input"
                    )
                tokens = await _login_paste(flow, delegate, profile.name, config)
        success(f'Signed in to "{profile.name}".')
        if tokens.expires_at is not None:
            info(f"Access token expires at {tokens.expires_at.isoformat()}")

    run(_login())
    suggest(f"Get a token: pkceflow auth token {profile.name}")


@auth_app.command("token")
def auth_token(
    ctx: typer.Context,
    server: Optional[str] = typer.Argument(None, help="Server profile name."),
) -> None:
    """Print a valid access token to stdout, refreshing it if needed.

    Example::

        curl -H "Authorization: Bearer $(pkceflow auth token github)" ...
    """
    from pkceflow.config import build_oauth_config
    from pkceflow.console import ConsoleDelegate, HeadlessDelegate
    from pkceflow.exceptions import AuthenticationRequired

    global_cfg, profile = active_server(ctx, server)
    delegate = HeadlessDelegate() if ctx_flag(ctx, "no_input") else ConsoleDelegate(open_browser=False)

    async def _token() -> str:
        async with _make_flow(global_cfg, delegate) as flow:
            flow.register_server(profile.name, build_oauth_config(profile))
            try:
                return await flow.get_valid_token(profile.name)
            except AuthenticationRequired:
                suggest(f"Sign in: pkceflow auth login {profile.name}")
                raise

    print_data(run(_token()))


@auth_app.command("refresh")
def auth_refresh(
    ctx: typer.Context,
    server: Optional[str] = typer.Argument(None, help="Server profile name."),
) -> None:
    """Refresh the stored tokens now, whether or not they have expired."""
    from pkceflow.config import build_oauth_config

    global_cfg, profile = active_server(ctx, server)

    async def _refresh():
        async with _make_flow(global_cfg, None) as flow:
            flow.register_server(profile.name, build_oauth_config(profile))
            return await flow.refresh_tokens(profile.name)

    tokens = run(_refresh())
    success(f'Refreshed tokens for "{profile.name}".')
    if tokens.expires_at is not None:
        info(f"Access token expires at {tokens.expires_at.isoformat()}")


@auth_app.command("status")
def auth_status(
    ctx: typer.Context,
    server: Optional[str] = typer.Argument(None, help="Only show this server."),
) -> None:
    """Show stored tokens and whether they are still valid.

    Token values are never printed.
    """
    from pkceflow.config import list_servers, load_global_config
    from pkceflow.models import utcnow

    global_cfg = load_global_config()
    selected = server or ctx_flag(ctx, "server")

    async def _collect():
        store = _make_store(global_cfg)
        names = [selected] if selected else sorted(set(list_servers()) | set(await store.list_server_ids()))
        return [(name, await store.load(name)) for name in names]

    entries = run(_collect())
    if not entries:
        info("No servers configured.")
        suggest("Add one: pkceflow server add NAME ...")
        return

    now = utcnow()
    rows: list[list[str]] = []
    for name, tokens in entries:
        if tokens is None:
            rows.append([name, "signed out", "-", "-", "-"])
            continue
        expired = tokens.is_expired(global_cfg.refresh_margin_seconds, now=now)
        rows.append(
            [
                name,
                "expired" if expired else "valid",
                tokens.expires_at.isoformat() if tokens.expires_at else "never",
                "yes" if tokens.can_refresh else "no",
                tokens.scope or "-",
            ]
        )
    get_output().print_table(
        ["Server", "Status", "Expires", "Refreshable", "Scope"], rows, title="Token Status"
    )


@auth_app.command("logout")
def auth_logout(
    ctx: typer.Context,
    server: Optional[str] = typer.Argument(None, help="Server profile name."),
) -> None:
    """Delete the stored tokens for a server."""
    global_cfg, profile = active_server(ctx, server)
    confirm_or_exit(ctx, f'Sign out of "{profile.name}"?')

    async def _logout() -> None:
        async with _make_flow(global_cfg, None) as flow:
            await flow.logout(profile.name)

    run(_logout())
    success(f'Signed out of "{profile.name}".')


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_store(global_cfg):  # noqa: ANN001, ANN202
    from pkceflow.stores import create_token_store

    return create_token_store(global_cfg.token_store, keyring_service=global_cfg.keyring_service)


def _make_flow(global_cfg, delegate):  # noqa: ANN001, ANN202
    from pkceflow.flow.manager import OAuthFlow

    return OAuthFlow(
        store=_make_store(global_cfg),
        delegate=delegate,
        refresh_margin=float(global_cfg.refresh_margin_seconds),
        pending_ttl=float(global_cfg.pending_ttl_seconds),
        timeout=float(global_cfg.http_timeout_seconds),
    )


def _loopback_target(redirect_uri: str) -> Optional[tuple[str, int, str]]:
    """Return ``(host, port, path)`` for an ``http`` loopback redirect URI."""
    parts = urlsplit(redirect_uri)
    if parts.scheme != "http" or parts.hostname not in _LOOPBACK_HOSTS or parts.port is None:
        return None
    host = "127.0.0.1" if parts.hostname == "localhost" else parts.hostname
    return host, parts.port, parts.path or "/"


async def _login_loopback(flow, server_id, config, target, timeout):  # noqa: ANN001, ANN202
    from pkceflow.loopback import LoopbackCallbackServer

    host, port, path = target
    async with LoopbackCallbackServer(port=port, path=path, host=host) as receiver:

        async def _relay() -> None:
            flow.receive_callback(await receiver.wait())

        relay = asyncio.create_task(_relay())
        try:
            return await flow.authorize(server_id, config, timeout=timeout)
        finally:
            relay.cancel()


async def _login_paste(flow, delegate, server_id, config):  # noqa: ANN001, ANN202
    url = flow.build_authorization_url(config, server_id)
    await delegate.open_authorization_url(url)
    redirected = await asyncio.to_thread(
        typer.prompt, "Paste the URL you were redirected to", err=True
    )
    return await flow.handle_callback(redirected.strip())
