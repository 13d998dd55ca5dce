"""Config commands -- view and modify global configuration.

Provides the ``pkceflow config`` sub-command group for the user's global
:class:`~pkceflow.models.GlobalConfig`: default server, token store,
refresh margin, and timeouts.
"""

from __future__ import annotations

import typer

from pkceflow.commands.common import confirm_or_exit
from pkceflow.output import error, get_output, info, success

config_app = typer.Typer(no_args_is_help=True)

_NULL_VALUES = ("", "none", "null")


@config_app.command("show")
def config_show() -> None:
    """Show the current configuration.

    Example::

        pkceflow config show --json
    """
    from pkceflow.config import get_config_dir, load_global_config

    config = load_global_config()
    info(f"Config directory: {get_config_dir()}")
    get_output().print_record(config.model_dump(mode="json"))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Config key, e.g. 'token_store'."),
    value: str = typer.Argument(help="Value to set ('none' clears optional keys)."),
) -> None:
    """Set a configuration value.

    The value is coerced to the type of the current setting and the
    result validated before saving.

    Example::

        pkceflow config set default_server github
        pkceflow config set token_store keyring
        pkceflow config set refresh_margin_seconds 120
    """
    from pydantic import ValidationError

    from pkceflow.config import load_global_config, save_global_config
    from pkceflow.models import GlobalConfig

    data = load_global_config().model_dump(mode="json")
    if key not in GlobalConfig.model_fields:
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=2)

    current = data.get(key)
    coerced: object
    if isinstance(current, bool):
        coerced = value.lower() in ("true", "1", "yes")
    elif isinstance(current, int):
        try:
            coerced = int(value)
        except ValueError:
            error(f"Expected integer for {key}, got: {value}")
            raise typer.Exit(code=2) from None
    elif value.lower() in _NULL_VALUES and GlobalConfig.model_fields[key].default is None:
        coerced = None
    else:
        coerced = value
    data[key] = coerced

    try:
        new_config = GlobalConfig.model_validate(data)
    except ValidationError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    save_global_config(new_config)
    success(f"Set {key} = {coerced}")


@config_app.command("reset")
def config_reset(ctx: typer.Context) -> None:
    """Reset configuration to defaults."""
    from pkceflow.config import save_global_config
    from pkceflow.models import GlobalConfig

    confirm_or_exit(ctx, "Reset all config to defaults?")
    save_global_config(GlobalConfig())
    success("Configuration reset to defaults.")
