"""Configuration system for Pedaru using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.pedaru] section (project-level)
3. ./pedaru.toml (project-level, explicit)
4. ~/.config/pedaru/config.toml (user-level, overrides project)
5. Environment variables (highest priority)

Environment variables use PEDARU_ prefix with nested delimiter __.
Example: PEDARU_OAUTH2__CALLBACK_PORT, PEDARU_STORAGE__BACKEND
"""

from __future__ import annotations

import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105
DRIVE_READONLY_SCOPE = "https://www.googleapis.com/auth/drive.readonly"


def _user_config_dir() -> Path:
    """Return the per-user configuration directory."""
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "~")).expanduser() / "pedaru"
    return Path("~/.config/pedaru").expanduser()


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    pedaru_toml = Path("pedaru.toml")
    if pedaru_toml.exists():
        files.append(pedaru_toml)

    user_config = _user_config_dir() / "config.toml"
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("PEDARU_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError):
            continue

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("pedaru", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class OAuth2Settings(BaseSettings):
    """OAuth2 authorization settings.

    Environment prefix: PEDARU_OAUTH2__
    Example: PEDARU_OAUTH2__CALLBACK_PORT=8585

    TOML section: [oauth2]
    """

    model_config = SettingsConfigDict(
        env_prefix="PEDARU_OAUTH2__",
        extra="ignore",
    )

    authorize_url: str = Field(
        default=GOOGLE_AUTHORIZE_URL,
        description="Provider authorization endpoint",
    )
    token_url: str = Field(
        default=GOOGLE_TOKEN_URL,
        description="Provider token endpoint",
    )
    scopes: str = Field(
        default=DRIVE_READONLY_SCOPE,
        description="Space-separated OAuth2 scopes to request",
    )

    # Loopback redirect
    callback_host: str = Field(
        default="127.0.0.1",
        description="Address the callback listener binds to",
    )
    redirect_host: str = Field(
        default="localhost",
        description="Host name used in the registered redirect URI",
    )
    callback_port: int = Field(
        default=8585,
        ge=0,
        le=65535,
        description="Callback listener port (0 selects an ephemeral port)",
    )
    callback_path: str = Field(
        default="/callback",
        description="Path of the redirect URI",
    )

    # Timeouts
    callback_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Seconds the callback listener waits for the redirect",
    )
    refresh_buffer_seconds: int = Field(
        default=300,
        ge=0,
        description="Seconds before token expiry at which a refresh is performed",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for token endpoint requests",
    )

    open_browser: bool = Field(
        default=True,
        description="Open the system browser when starting a login",
    )

    @field_validator("callback_path")
    @classmethod
    def _ensure_leading_slash(cls, v: str) -> str:
        """Normalize the callback path to start with '/'."""
        return v if v.startswith("/") else f"/{v}"

    @property
    def scope_list(self) -> list[str]:
        """Scopes as a list."""
        return [s for s in self.scopes.split() if s]


class StorageSettings(BaseSettings):
    """Credential storage settings.

    Environment prefix: PEDARU_STORAGE__
    Example: PEDARU_STORAGE__BACKEND=keyring

    TOML section: [storage]
    """

    model_config = SettingsConfigDict(
        env_prefix="PEDARU_STORAGE__",
        extra="ignore",
    )

    backend: Literal["sqlite", "keyring", "memory"] = Field(
        default="sqlite",
        description="Credential store backend: sqlite, keyring, or memory",
    )
    database_path: Path = Field(
        default_factory=lambda: _user_config_dir() / "pedaru.db",
        description="SQLite database file (sqlite backend)",
    )
    keyring_service: str = Field(
        default="pedaru",
        description="Service name for OS keychain entries (keyring backend)",
    )


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: PEDARU_LOG__
    """

    model_config = SettingsConfigDict(
        env_prefix="PEDARU_LOG__",
        extra="ignore",
    )

    level: str = Field(default="WARNING", description="Log level")
    format: str = Field(
        default="%(name)s - %(levelname)s - %(message)s",
        description="Log record format",
    )


class PedaruSettings(BaseSettings):
    """Top-level Pedaru settings.

    Aggregates all settings sections. Values from TOML files are merged
    beneath explicit keyword arguments; each section still reads its own
    environment variables.
    """

    model_config = SettingsConfigDict(
        env_prefix="PEDARU__",
        extra="ignore",
    )

    oauth2: OAuth2Settings = Field(default_factory=OAuth2Settings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    def __init__(self, **data: Any) -> None:
        merged = _deep_merge(_load_toml_config(), data)
        # Sections are built here so that their own env prefixes win over TOML values
        for name, section_cls in (
            ("oauth2", OAuth2Settings),
            ("storage", StorageSettings),
            ("log", LogSettings),
        ):
            section = merged.get(name)
            if isinstance(section, dict):
                # pydantic-settings matches env names case-insensitively
                environ = {key.upper() for key in os.environ}
                env_keys = {
                    field
                    for field in section_cls.model_fields
                    if f"{section_cls.model_config['env_prefix']}{field}".upper() in environ
                }
                merged[name] = section_cls(
                    **{k: v for k, v in section.items() if k not in env_keys}
                )
        super().__init__(**merged)

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["Pedaru Configuration", "=" * 60]
        for display_name, attr_name in (
            ("OAuth2", "oauth2"),
            ("Storage", "storage"),
            ("Logging", "log"),
        ):
            lines.append(f"\n{display_name}")
            lines.append("-" * 40)
            for field_name, field_value in getattr(self, attr_name).model_dump().items():
                value_str = str(field_value)
                if len(value_str) > 50:
                    value_str = value_str[:47] + "..."
                lines.append(f"  {field_name:26} = {value_str}")
        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> PedaruSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return PedaruSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> PedaruSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()
