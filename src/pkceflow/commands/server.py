"""Server commands -- manage authorization server profiles.

Provides the ``pkceflow server`` sub-command group. A profile records the
client registration and endpoints for one authorization target; client
secrets are referenced by credential source (``env:``, ``file:``,
``prompt``, ``keyring:``) and never written to the profile itself.

Typical workflow::

    pkceflow server discover https://mcp.example.com --name example
    pkceflow server add github --client-id abc \\
        --authorization-url https://github.com/login/oauth/authorize \\
        --token-url https://github.com/login/oauth/access_token \\
        --redirect-uri http://127.0.0.1:8765/callback --scope repo
    pkceflow server list
"""

from __future__ import annotations

from typing import Optional

import typer

from pkceflow.commands.common import confirm_or_exit, ctx_flag, run
from pkceflow.output import error, get_output, info, success, suggest

server_app = typer.Typer(no_args_is_help=True)

DEFAULT_LOOPBACK_REDIRECT = "http://127.0.0.1:8765/callback"
_CLIENT_SECRET_SERVICE = "pkceflow-clients"


@server_app.command("add")
def server_add(
    ctx: typer.Context,
    name: str = typer.Argument(help="Profile name."),
    client_id: str = typer.Option(..., "--client-id", help="OAuth client ID."),
    authorization_url: str = typer.Option(
        ..., "--authorization-url", help="Authorization endpoint."
    ),
    token_url: str = typer.Option(..., "--token-url", help="Token endpoint."),
    redirect_uri: str = typer.Option(
        DEFAULT_LOOPBACK_REDIRECT,
        "--redirect-uri",
        help="Loopback (http://127.0.0.1:PORT/path) or custom-scheme redirect URI.",
    ),
    scope: Optional[list[str]] = typer.Option(
        None, "--scope", help="Scope to request (repeatable)."
    ),
    client_secret_source: Optional[str] = typer.Option(
        None,
        "--client-secret-source",
        help="Client secret source: env:VAR, file:/path, prompt, keyring:service:account.",
    ),
    no_pkce: bool = typer.Option(False, "--no-pkce", help="Do not use PKCE."),
    pkce_method: str = typer.Option("S256", "--pkce-method", help="S256 or plain."),
    scope_separator: str = typer.Option(" ", "--scope-separator", help="Scope separator."),
    param: Optional[list[str]] = typer.Option(
        None, "--param", help="Extra authorization parameter KEY=VALUE (repeatable)."
    ),
    resource: Optional[str] = typer.Option(
        None, "--resource", help="Resource indicator (RFC 8707)."
    ),
) -> None:
    """Create or replace a server profile.

    Existing profiles are only replaced with ``--force``.

    Example::

        pkceflow server add github --client-id abc \\
            --authorization-url https://github.com/login/oauth/authorize \\
            --token-url https://github.com/login/oauth/access_token --scope repo
    """
    from pkceflow.config import save_server, server_exists
    from pkceflow.models import ServerProfile

    if server_exists(name) and not ctx_flag(ctx, "force"):
        error(f'Server "{name}" already exists.')
        suggest("Replace it with --force, or remove it first: pkceflow server remove " + name)
        raise typer.Exit(code=2)

    try:
        profile = ServerProfile(
            name=name,
            client_id=client_id,
            client_secret_source=client_secret_source,
            authorization_url=authorization_url,
            token_url=token_url,
            scopes=list(scope or []),
            redirect_uri=redirect_uri,
            use_pkce=not no_pkce,
            pkce_method=pkce_method,
            scope_separator=scope_separator,
            additional_params=_parse_params(param or []),
            resource=resource,
        )
    except ValueError as exc:
        error(f"Invalid server profile: {exc}")
        raise typer.Exit(code=2) from None

    save_server(profile)
    success(f'Server "{name}" saved.')
    suggest(f"Sign in: pkceflow auth login {name}")


@server_app.command("list")
def server_list() -> None:
    """List configured server profiles."""
    from pkceflow.config import list_servers, load_global_config, load_server
    from pkceflow.exceptions import PkceflowError

    names = list_servers()
    if not names:
        info("No servers configured.")
        suggest("Add one: pkceflow server add NAME ... or pkceflow server discover URL")
        return

    default = load_global_config().default_server
    rows: list[list[str]] = []
    for name in names:
        label = f"{name} (default)" if name == default else name
        try:
            profile = load_server(name)
        except PkceflowError:
            rows.append([label, "error", "-", "-"])
            continue
        rows.append(
            [label, profile.client_id, profile.authorization_url, " ".join(profile.scopes) or "-"]
        )
    get_output().print_table(
        ["Server", "Client ID", "Authorization URL", "Scopes"], rows, title="Servers"
    )


@server_app.command("show")
def server_show(name: str = typer.Argument(help="Profile name.")) -> None:
    """Show a server profile."""
    from pkceflow.config import load_server
    from pkceflow.exceptions import PkceflowError

    try:
        profile = load_server(name)
    except PkceflowError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    get_output().print_record(profile.model_dump(mode="json"))


@server_app.command("remove")
def server_remove(
    ctx: typer.Context,
    name: str = typer.Argument(help="Profile name."),
) -> None:
    """Remove a server profile and its stored tokens."""
    from pkceflow.config import delete_server, load_global_config, server_exists
    from pkceflow.stores import create_token_store

    if not server_exists(name):
        error(f'Server "{name}" not found.')
        raise typer.Exit(code=4)
    confirm_or_exit(ctx, f'Remove server "{name}" and its stored tokens?')

    global_cfg = load_global_config()
    store = create_token_store(global_cfg.token_store, keyring_service=global_cfg.keyring_service)
    run(store.delete(name))
    delete_server(name)
    success(f'Server "{name}" removed.')


@server_app.command("discover")
def server_discover(
    ctx: typer.Context,
    url: str = typer.Argument(help="Protected resource URL, e.g. an MCP server."),
    name: str = typer.Option(..., "--name", "-n", help="Profile name to save."),
    redirect_uri: str = typer.Option(
        DEFAULT_LOOPBACK_REDIRECT, "--redirect-uri", help="Redirect URI to register."
    ),
    client_id: Optional[str] = typer.Option(
        None, "--client-id", help="Existing client ID (skips dynamic registration)."
    ),
    client_name: str = typer.Option(
        "pkceflow", "--client-name", help="Client name for dynamic registration."
    ),
    scope: Optional[list[str]] = typer.Option(
        None, "--scope", help="Scope to request (repeatable; default: advertised scopes)."
    ),
    www_authenticate: Optional[str] = typer.Option(
        None, "--www-authenticate", help="WWW-Authenticate header from a 401 response."
    ),
) -> None:
    """Discover OAuth endpoints for a protected resource and save a profile.

    Follows RFC 9728 resource metadata to the authorization server's
    RFC 8414 metadata, and registers a client (RFC 7591) when no
    ``--client-id`` is given. A registered client secret is stored in the
    system keyring and referenced from the profile.

    Example::

        pkceflow server discover https://mcp.example.com/mcp --name example
    """
    from pkceflow.config import load_global_config, save_server, server_exists
    from pkceflow.discovery import AuthDiscovery

    if server_exists(name) and not ctx_flag(ctx, "force"):
        error(f'Server "{name}" already exists.')
        suggest("Replace it with --force.")
        raise typer.Exit(code=2)

    timeout = float(load_global_config().http_timeout_seconds)

    async def _discover():
        async with AuthDiscovery(timeout=timeout) as discovery:
            return await discovery.discover_config(
                url,
                redirect_uri,
                www_authenticate=www_authenticate,
                client_id=client_id,
                client_name=client_name,
                scopes=list(scope) if scope else None,
            )

    discovered = run(_discover())
    secret_source = None
    if discovered.client_secret:
        secret_source = _store_client_secret(name, discovered.client_secret)

    profile = discovered.to_profile(name, redirect_uri, client_secret_source=secret_source)
    save_server(profile)
    success(f'Server "{name}" saved (client {profile.client_id}).')
    if not discovered.supports_pkce:
        get_output().warning("The authorization server does not advertise S256 PKCE support.")
    suggest(f"Sign in: pkceflow auth login {name}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_params(items: list[str]) -> dict[str, str]:
    params: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            error(f"Invalid --param '{item}': expected KEY=VALUE")
            raise typer.Exit(code=2)
        params[key] = value
    return params


def _store_client_secret(name: str, secret: str) -> str:
    """Save a registered client secret in the keyring and return its source descriptor."""
    import keyring
    from keyring.errors import KeyringError

    try:
        keyring.set_password(_CLIENT_SECRET_SERVICE, name, secret)
    except KeyringError as exc:
        error(f"Could not store the client secret in the keyring: {exc}")
        raise typer.Exit(code=7) from None
    return f"keyring:{_CLIENT_SECRET_SERVICE}:{name}"
