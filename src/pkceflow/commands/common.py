"""Helpers shared by the CLI command groups.

Commands are synchronous Typer callbacks; the flow is asyncio. :func:`run`
bridges the two and turns :class:`~pkceflow.exceptions.PkceflowError`
into an error message and the matching exit code.
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Optional, TypeVar

import typer

from pkceflow.exceptions import InvalidUsageError, PkceflowError
from pkceflow.models import GlobalConfig, ServerProfile
from pkceflow.output import error, suggest

T = TypeVar("T")


def run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro* to completion, exiting with the error's code on failure."""
    try:
        return asyncio.run(coro)
    except PkceflowError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


def ctx_flag(ctx: typer.Context, name: str) -> Any:
    return ctx.obj.get(name) if ctx.obj else None


def active_server(ctx: typer.Context, name: Optional[str] = None) -> tuple[GlobalConfig, ServerProfile]:
    """Resolve the server a command acts on.

    An explicit *name* argument wins over ``--server`` and the rest of the
    precedence chain in :func:`~pkceflow.config.resolve_server_name`.

    Raises:
        typer.Exit: If no server can be determined or it does not exist.
    """
    from pkceflow.config import load_global_config, load_server, resolve_server_name

    try:
        global_cfg = load_global_config()
        server_name = resolve_server_name(name or ctx_flag(ctx, "server"), global_cfg)
        if server_name is None:
            raise InvalidUsageError("No server selected and no default server is configured.")
        return global_cfg, load_server(server_name)
    except PkceflowError as exc:
        error(str(exc))
        if isinstance(exc, InvalidUsageError):
            suggest("Pass --server NAME, or add one: pkceflow server add NAME ...")
        raise typer.Exit(code=exc.exit_code) from None


def confirm_or_exit(ctx: typer.Context, question: str) -> None:
    """Ask *question* unless ``--force``; exit quietly on "no"."""
    from pkceflow.output import info

    if ctx_flag(ctx, "force"):
        return
    if ctx_flag(ctx, "no_input"):
        error("Confirmation required; pass --force to proceed without prompting.")
        raise typer.Exit(code=2)
    if not typer.confirm(question):
        info("Cancelled.")
        raise typer.Exit()
