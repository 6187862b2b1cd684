"""CLI configuration store using TOML.

Manages ~/.mya/config.toml for CLI-specific settings. Gateway settings live in
the gateway's environment; this is just for the CLI client.

The gateway URL resolves in order: MYA_API_URL, then ``server.url`` from the
config file, then the built-in URL for MYA_ENV (production by default).
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

import tomli_w

PRODUCTION_API_URL = "https://mya-production.monibee-fudgekin.workers.dev"
DEVELOPMENT_API_URL = "http://localhost:8787"

# Default configuration
DEFAULT_CONFIG: dict[str, Any] = {
    "server": {
        "url": "",
    },
}


def config_dir() -> Path:
    """Get the MYA config directory (~/.mya)."""
    return Path.home() / ".mya"


def config_path() -> Path:
    """Get the config file path (~/.mya/config.toml)."""
    return config_dir() / "config.toml"


def ensure_config_dir() -> Path:
    """Ensure the config directory exists."""
    path = config_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_config() -> dict[str, Any]:
    """Load config from TOML file.

    Returns default config merged with file contents.
    Missing keys get default values.
    """
    config = _deep_copy(DEFAULT_CONFIG)

    path = config_path()
    if path.exists():
        try:
            with open(path, "rb") as f:
                file_config = tomllib.load(f)
            _deep_merge(config, file_config)
        except (OSError, tomllib.TOMLDecodeError):
            # If file is missing/corrupted, return defaults
            pass

    return config


def save_config(config: dict[str, Any]) -> None:
    """Save config to TOML file."""
    ensure_config_dir()
    with open(config_path(), "wb") as f:
        tomli_w.dump(config, f)


def get(key: str, default: Any = None) -> Any:
    """Get a config value by dot-notation key, e.g. get("server.url")."""
    return _get_nested(load_config(), key, default)


def set_value(key: str, value: Any) -> None:
    """Set a config value by dot-notation key."""
    config = load_config()
    _set_nested(config, key, value)
    save_config(config)


def environment_api_url() -> str:
    """Built-in gateway URL for MYA_ENV."""
    if os.environ.get("MYA_ENV", "production").lower() == "development":
        return DEVELOPMENT_API_URL
    return PRODUCTION_API_URL


def get_api_url() -> str:
    """Resolve the gateway base URL."""
    explicit = os.environ.get("MYA_API_URL", "").strip()
    if explicit:
        return explicit.rstrip("/")
    configured = str(get("server.url", "") or "").strip()
    if configured:
        return configured.rstrip("/")
    return environment_api_url()


def set_server_url(url: str) -> None:
    """Set the server URL in config."""
    set_value("server.url", url.strip().rstrip("/"))


def reset_config() -> None:
    """Reset config to defaults."""
    save_config(_deep_copy(DEFAULT_CONFIG))


# --- Private helpers ---


def _deep_copy(d: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for k, v in d.items():
        result[k] = _deep_copy(v) if isinstance(v, dict) else v
    return result


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> None:
    """Deep merge override into base (mutates base)."""
    for k, v in override.items():
        if k in base and isinstance(base[k], dict) and isinstance(v, dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v


def _get_nested(d: dict[str, Any], key: str, default: Any = None) -> Any:
    current: Any = d
    for k in key.split("."):
        if isinstance(current, dict) and k in current:
            current = current[k]
        else:
            return default
    return current


def _set_nested(d: dict[str, Any], key: str, value: Any) -> None:
    keys = key.split(".")
    current = d
    for k in keys[:-1]:
        if k not in current or not isinstance(current[k], dict):
            current[k] = {}
        current = current[k]
    current[keys[-1]] = value
