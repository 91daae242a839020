"""
Configuration for tool servers and the runtime.

Two sources:

- a JSON server file (``.mcp-servers.json`` in the working directory, or
  the path in ``MCP_SERVERS_CONFIG_PATH``) listing how to launch each server:

      {
        "servers": {
          "research": {
            "command": "python",
            "args": ["-m", "mcp_runtime.servers.research"],
            "env": {"ARXIV_BASE_URL": "http://export.arxiv.org/api/query"},
            "tool_timeouts": {"search_papers": 45}
          }
        }
      }

  Files written for older clients use a top-level ``mcpServers`` key; those
  are accepted and converted in memory.

- process-wide runtime knobs read from ``MCP_*`` environment variables or a
  ``.env`` file (see RuntimeSettings).
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mcp_runtime.errors import ConfigError
from mcp_runtime.readiness import DEFAULT_READY_BANNER

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "MCP_SERVERS_CONFIG_PATH"
DEFAULT_CONFIG_FILENAME = ".mcp-servers.json"
PROTOCOL_VERSION = "2024-11-05"


class ServerConfig(BaseModel):
    """How to launch and talk to one stdio tool server."""
    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] | None = None
    transport: Literal["stdio"] = "stdio"
    description: str | None = None
    ready_banner: str | None = DEFAULT_READY_BANNER  # None: handshake response only
    startup_timeout: float = Field(default=10.0, gt=0)
    request_timeout: float = Field(default=30.0, gt=0)
    tool_timeouts: dict[str, float] = Field(default_factory=dict)
    fallback: bool = True  # use direct-network fallbacks for this server's tools

    @model_validator(mode="before")
    @classmethod
    def split_command_list(cls, data: Any) -> Any:
        # {"command": ["python", "-m", "x"]} is common in hand-written files
        if isinstance(data, dict) and isinstance(data.get("command"), list):
            parts = [str(p) for p in data["command"]]
            if not parts:
                raise ValueError("command must not be empty")
            data = dict(data)
            data["command"] = parts[0]
            data["args"] = parts[1:] + list(data.get("args") or [])
        return data

    @field_validator("tool_timeouts")
    @classmethod
    def positive_timeouts(cls, v: dict[str, float]) -> dict[str, float]:
        for tool, seconds in v.items():
            if seconds <= 0:
                raise ValueError(f"timeout for {tool} must be positive")
        return v

    def timeout_for(self, tool_name: str) -> float:
        return self.tool_timeouts.get(tool_name, self.request_timeout)


class McpConfig(BaseModel):
    """All configured tool servers, keyed by server id."""
    servers: dict[str, ServerConfig] = Field(default_factory=dict)


class RuntimeSettings(BaseSettings):
    """Process-wide runtime settings, overridable via MCP_* env vars."""

    model_config = SettingsConfigDict(
        env_prefix="MCP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    tools_cache_ttl: float = Field(default=300.0, description="Seconds a tools/list result stays valid")
    liveness_interval: float = Field(default=60.0, description="Idle seconds before a pooled session is pinged")
    liveness_timeout: float = Field(default=5.0, description="Timeout for the liveness ping")
    fallback_timeout: float = Field(default=15.0, description="Timeout for direct-network fallbacks")
    terminate_grace: float = Field(default=5.0, description="Seconds between SIGTERM and SIGKILL")
    validate_tool_names: bool = Field(default=True, description="Check names against tools/list before calling")
    client_name: str = "mcp-runtime"
    client_version: str = "1.0.0"
    protocol_version: str = PROTOCOL_VERSION
    arxiv_base_url: str = "http://export.arxiv.org/api/query"
    log_level: str = "INFO"


_cached_settings: RuntimeSettings | None = None


def get_settings() -> RuntimeSettings:
    """Return the cached runtime settings, loading them on first use."""
    global _cached_settings
    if _cached_settings is None:
        _cached_settings = RuntimeSettings()
    return _cached_settings


def resolve_config_path(path: str | os.PathLike | None = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.getenv(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)
    return Path.cwd() / DEFAULT_CONFIG_FILENAME


def parse_config(data: Any) -> McpConfig:
    """Validate a decoded server file, accepting the legacy mcpServers layout."""
    if not isinstance(data, dict):
        raise ConfigError("server config must be a JSON object")

    if "servers" not in data and "mcpServers" in data:
        logger.info("Converting legacy mcpServers config to servers format")
        data = {
            "servers": {
                name: {**server, "transport": server.get("transport") or "stdio"}
                for name, server in (data["mcpServers"] or {}).items()
            }
        }
    elif "servers" not in data:
        raise ConfigError("server config is missing the 'servers' property")

    try:
        return McpConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"invalid server config: {e}") from e


def load_config(path: str | os.PathLike | None = None) -> McpConfig:
    """
    Load tool server definitions.

    A missing file is not an error: the runtime simply has no servers.

    Raises:
        ConfigError: the file exists but is not valid.
    """
    config_path = resolve_config_path(path)
    if not config_path.exists():
        logger.warning(f"Tool server config not found: {config_path}")
        return McpConfig()

    logger.info(f"Loading tool servers from {config_path}")
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigError(f"cannot read server config {config_path}: {e}") from e
    return parse_config(data)
