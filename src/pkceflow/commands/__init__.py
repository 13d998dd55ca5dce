"""Built-in CLI sub-commands for pkceflow.

* :mod:`~pkceflow.commands.server` -- add, discover, list, and remove
  server profiles.
* :mod:`~pkceflow.commands.auth` -- sign in, print and refresh tokens,
  show status, sign out.
* :mod:`~pkceflow.commands.config` -- view and modify global settings.

Each module exports a :class:`typer.Typer` sub-application registered on
the root app in :func:`pkceflow.app.main`.
"""
