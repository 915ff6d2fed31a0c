"""Configuration management for vibesync.

Configuration is loaded from ~/.vibesync/config.toml with sensible defaults.

Example config file:
    [api]
    url = "https://app.vibe-log.dev"
    timeout = 30

    [sources.claude_code]
    enabled = true
    path = "~/.claude/projects"

    [sources.cursor]
    enabled = true
    path = "~/Library/Application Support/Cursor/User/globalStorage/state.vscdb"
    workspace_path = "~/Library/Application Support/Cursor/User/workspaceStorage"

    [state]
    path = "~/.vibesync/state.sqlite"
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError, field_validator

# Use tomllib for Python 3.11+, tomli for earlier versions
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://app.vibe-log.dev"
API_URL_ENV = "VIBESYNC_API_URL"
DEBUG_ENV = "VIBESYNC_DEBUG"


def get_app_dir() -> Path:
    """Directory holding the state database, hook lock and hook log."""
    return Path.home() / ".vibesync"


def _validate_http_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"API URL must be an http(s) URL, got {value!r}")
    return value.rstrip("/")


class ApiConfig(BaseModel):
    """Configuration for the upload endpoint."""

    url: str = DEFAULT_API_URL
    timeout: float = Field(default=30.0, gt=0)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        return _validate_http_url(value)


class SourceConfig(BaseModel):
    """Configuration for a session reader."""

    enabled: bool = True
    path: str = ""
    workspace_path: str = ""


class StateConfig(BaseModel):
    """Where persisted sync state lives."""

    path: str = "~/.vibesync/state.sqlite"


class Config(BaseModel):
    """Main configuration model for vibesync."""

    api: ApiConfig = Field(default_factory=ApiConfig)
    sources: dict[str, SourceConfig] = Field(default_factory=dict)
    state: StateConfig = Field(default_factory=StateConfig)

    def get_source_path(self, source_name: str) -> Path | None:
        """Get the expanded path for a source.

        Args:
            source_name: The name of the source (e.g., 'claude_code', 'cursor').

        Returns:
            Expanded Path object, or None if the source or its path is unset.
        """
        if source_name not in self.sources:
            return None

        path_str = self.sources[source_name].path
        if not path_str:
            return None

        return Path(path_str).expanduser()

    def get_workspace_path(self, source_name: str) -> Path | None:
        """Get the expanded workspace storage path for a source, if set."""
        source = self.sources.get(source_name)
        if source is None or not source.workspace_path:
            return None
        return Path(source.workspace_path).expanduser()

    def is_source_enabled(self, source_name: str) -> bool:
        """Check if a source is enabled."""
        if source_name not in self.sources:
            return False
        return self.sources[source_name].enabled

    @property
    def state_path(self) -> Path:
        """Expanded path of the state database."""
        return Path(self.state.path).expanduser()


def get_default_config() -> Config:
    """Get the default configuration.

    Source paths are left empty so each reader falls back to its own
    platform-specific default location.
    """
    return Config(
        api=ApiConfig(),
        sources={
            "claude_code": SourceConfig(enabled=True),
            "cursor": SourceConfig(enabled=True),
        },
        state=StateConfig(path=str(get_app_dir() / "state.sqlite")),
    )


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from a TOML file.

    If the file doesn't exist, returns the default configuration.
    Partial configurations are merged with defaults. The API URL can be
    overridden with the VIBESYNC_API_URL environment variable.

    Args:
        config_path: Path to the config file. Defaults to ~/.vibesync/config.toml.

    Returns:
        Config object with loaded or default values.
    """
    if config_path is None:
        config_path = get_app_dir() / "config.toml"

    config = get_default_config()

    if config_path.exists():
        try:
            with config_path.open("rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning("Ignoring unreadable config file %s: %s", config_path, e)
        else:
            try:
                config = _merge_config(config, data)
            except (ValidationError, TypeError, AttributeError) as e:
                logger.warning("Ignoring invalid config file %s: %s", config_path, e)

    env_url = os.environ.get(API_URL_ENV)
    if env_url:
        try:
            config = config.model_copy(
                update={"api": ApiConfig(url=env_url, timeout=config.api.timeout)}
            )
        except ValidationError as e:
            logger.warning("Ignoring %s: %s", API_URL_ENV, e)

    return config


def _merge_config(default: Config, data: dict[str, Any]) -> Config:
    """Merge loaded config data with defaults.

    Args:
        default: Default configuration.
        data: Loaded TOML data.

    Returns:
        Merged Config object.
    """
    sources = dict(default.sources)

    if "sources" in data:
        for source_name, source_data in data["sources"].items():
            if isinstance(source_data, dict):
                if source_name in sources:
                    existing = sources[source_name]
                    sources[source_name] = SourceConfig(
                        enabled=source_data.get("enabled", existing.enabled),
                        path=source_data.get("path", existing.path),
                        workspace_path=source_data.get("workspace_path", existing.workspace_path),
                    )
                else:
                    sources[source_name] = SourceConfig(**source_data)

    api_data = data.get("api", {})
    api = ApiConfig(
        url=api_data.get("url", default.api.url),
        timeout=api_data.get("timeout", default.api.timeout),
    )

    state_data = data.get("state", {})
    state = StateConfig(path=state_data.get("path", default.state.path))

    return Config(api=api, sources=sources, state=state)


def is_debug_enabled() -> bool:
    """Check whether VIBESYNC_DEBUG asks for credential previews."""
    return os.environ.get(DEBUG_ENV, "").strip().lower() == "true"


# Global config cache
_config_cache: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance.

    Loads from ~/.vibesync/config.toml on first call, then returns cached instance.
    """
    global _config_cache
    if _config_cache is None:
        _config_cache = load_config()
    return _config_cache


def _clear_config_cache() -> None:
    """Clear the config cache. Used for testing."""
    global _config_cache
    _config_cache = None
