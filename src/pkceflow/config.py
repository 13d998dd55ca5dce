"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for pkceflow:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.pkceflow/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_data_dir`, :func:`get_servers_dir`, :func:`get_tokens_dir`.
* **Global config** -- A single :class:`~pkceflow.models.GlobalConfig`
  JSON file storing defaults (token store, refresh margin, timeouts).
* **Server profiles** -- One JSON file per authorization target, each
  deserialised into a :class:`~pkceflow.models.ServerProfile`. Managed via
  :func:`load_server`, :func:`save_server`, :func:`delete_server`.
* **Precedence resolution** -- :func:`resolve_config` picks the active
  server from CLI flags, environment variables, project-local config, and
  global config.
* **Credential resolution** -- :func:`resolve_credential` reads client
  secrets from env vars, files, interactive prompts, or the system keyring.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) so a crash never leaves a half-written file.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import sys
import tempfile
from pathlib import Path
from typing import Any, Optional

import keyring
from keyring.errors import KeyringError

from pkceflow.exceptions import ConfigError, ServerNotFoundError
from pkceflow.models import GlobalConfig, OAuthConfig, ServerProfile

_APP_NAME = "pkceflow"
_CONFIG_FILENAME = "config.json"
_PROJECT_CONFIG_FILENAME = "pkceflow.json"
_ENV_SERVER = "PKCEFLOW_SERVER"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/pkceflow/`` (default ``~/.config/pkceflow/``).
    On macOS/Windows: ``~/.pkceflow/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (tokens, crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/pkceflow/`` (default ``~/.local/share/pkceflow/``).
    On macOS/Windows: ``~/.pkceflow/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_servers_dir() -> Path:
    """Return the server profiles directory (``<config_dir>/servers/``)."""
    path = get_config_dir() / "servers"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_tokens_dir() -> Path:
    """Return the directory used by :class:`~pkceflow.stores.FileTokenStore`."""
    path = get_data_dir() / "tokens"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. When *mode* is
    given, permissions are applied to the temp file before any content is
    written, so secrets are never world-readable even momentarily.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


def _read_json(path: Path, what: str) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        raise ConfigError(f"Invalid {what} at {path}: {exc}") from exc


# --- Global config ---


def _global_config_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration, or defaults when the file is absent.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    data = _read_json(path, "global config")
    try:
        return GlobalConfig.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    data = config.model_dump(mode="json")
    atomic_write(_global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Server profiles ---


def _server_path(name: str) -> Path:
    return get_servers_dir() / f"{name}.json"


def list_servers() -> list[str]:
    """Return all server profile names, sorted alphabetically."""
    return sorted(p.stem for p in get_servers_dir().glob("*.json") if p.is_file())


def load_server(name: str) -> ServerProfile:
    """Load and validate a server profile from disk.

    Raises:
        ServerNotFoundError: If no profile with that name exists.
        ConfigError: If the file contains invalid JSON or fails validation.
    """
    path = _server_path(name)
    if not path.is_file():
        raise ServerNotFoundError(f"Server '{name}' not found at {path}")
    data = _read_json(path, f"server profile '{name}'")
    try:
        return ServerProfile.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid server profile '{name}' at {path}: {exc}") from exc


def save_server(profile: ServerProfile) -> None:
    """Persist a server profile atomically. The file name is ``<name>.json``."""
    data = profile.model_dump(mode="json")
    atomic_write(_server_path(profile.name), json.dumps(data, indent=2) + "\n")


def delete_server(name: str) -> None:
    """Delete a server profile.

    Raises:
        ServerNotFoundError: If the profile does not exist.
    """
    path = _server_path(name)
    if not path.is_file():
        raise ServerNotFoundError(f"Server '{name}' not found at {path}")
    path.unlink()


def server_exists(name: str) -> bool:
    return _server_path(name).is_file()


# --- Project-local config ---


def load_project_config() -> Optional[dict[str, Any]]:
    """Load project-local configuration from ``./pkceflow.json``.

    Project-local config typically sets ``default_server`` so that a
    repository can pin which server to authenticate against.

    Returns:
        The parsed JSON as a dict, or ``None`` if the file does not exist.

    Raises:
        ConfigError: If the file exists but contains invalid JSON.
    """
    path = Path.cwd() / _PROJECT_CONFIG_FILENAME
    if not path.is_file():
        return None
    return _read_json(path, "project config")


# --- Precedence resolution ---


def resolve_server_name(
    cli_server: Optional[str] = None,
    global_cfg: Optional[GlobalConfig] = None,
) -> Optional[str]:
    """Resolve the active server name with the full precedence chain.

    Precedence (high to low):
        1. CLI flag (``--server``)
        2. Environment variable ``PKCEFLOW_SERVER``
        3. Project config (``./pkceflow.json``)
        4. User config ``default_server``
        5. The only configured server, when ``auto_select_single_server``
    """
    if cli_server is not None:
        return cli_server
    env_server = os.environ.get(_ENV_SERVER)
    if env_server:
        return env_server
    project = load_project_config()
    if project is not None and project.get("default_server"):
        return str(project["default_server"])
    cfg = global_cfg or load_global_config()
    if cfg.default_server:
        return cfg.default_server
    if cfg.auto_select_single_server:
        servers = list_servers()
        if len(servers) == 1:
            return servers[0]
    return None


def resolve_config(
    cli_server: Optional[str] = None,
) -> tuple[GlobalConfig, Optional[ServerProfile]]:
    """Return ``(global_config, active_server_profile_or_None)``."""
    global_cfg = load_global_config()
    name = resolve_server_name(cli_server, global_cfg)
    profile = load_server(name) if name is not None else None
    return global_cfg, profile


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts user interactively (requires a TTY)
        - ``"keyring:service:account"`` -- reads from the system keyring

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigError(
                "Cannot prompt for credentials: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass("Enter client secret: ")

    if source.startswith("keyring:"):
        parts = source.split(":", 2)
        if len(parts) != 3 or not parts[1] or not parts[2]:
            raise ConfigError(
                f"Keyring source must look like keyring:service:account (source: {source})"
            )
        try:
            value = keyring.get_password(parts[1], parts[2])
        except KeyringError as exc:
            raise ConfigError(f"Keyring lookup failed: {exc} (source: {source})") from exc
        if value is None:
            raise ConfigError(f"No keyring entry for {parts[1]}/{parts[2]} (source: {source})")
        return value

    raise ConfigError(f"Unknown credential source format: {source}")


def build_oauth_config(profile: ServerProfile) -> OAuthConfig:
    """Resolve the profile's client secret and build its :class:`OAuthConfig`."""
    secret = (
        resolve_credential(profile.client_secret_source)
        if profile.client_secret_source
        else None
    )
    return profile.to_oauth_config(client_secret=secret)
