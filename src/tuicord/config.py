from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

HOME_CONFIG_PATH = Path.home() / ".tuicord" / "tuicord.toml"


class ConfigError(RuntimeError):
    pass


def resolve_config_path(path: str | Path | None = None) -> Path:
    """`path` with `~` expanded, or the per-user default."""
    return Path(path).expanduser() if path else HOME_CONFIG_PATH


def read_config(cfg_path: Path) -> dict[str, Any]:
    if cfg_path.exists() and not cfg_path.is_file():
        raise ConfigError(f"Config path {cfg_path} exists but is not a file.")
    try:
        raw = cfg_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(
            f"Missing config file {cfg_path}; create it with a [gateway] token."
        ) from None
    except OSError as e:
        raise ConfigError(f"Failed to read config file {cfg_path}: {e}") from e
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Malformed TOML in {cfg_path}: {e}") from None
    gateway = data.get("gateway")
    if gateway is not None and not isinstance(gateway, dict):
        raise ConfigError(f"Invalid `gateway` in {cfg_path}; expected a table.")
    return data
