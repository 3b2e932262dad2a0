"""Configuration module for toolhub-server using pydantic-settings."""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ToolhubSettings(BaseSettings):
    """Main configuration settings for toolhub-server.

    All settings can be overridden via environment variables with the TOOLHUB_ prefix.
    For example, TOOLHUB_FS_ROOT will override the fs_root setting.
    """

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # CORS
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Logging
    log_level: str = "INFO"

    # LLM provider
    provider: Literal["anthropic", "ollama"] = "anthropic"
    ollama_host: str = "http://localhost:11434"
    anthropic_api_key: str | None = None
    default_model: str = "claude-3-5-sonnet-latest"
    fallback_models: list[str] = Field(
        default_factory=lambda: [
            "claude-3-5-sonnet-latest",
            "claude-3-5-haiku-latest",
            "claude-3-opus-latest",
        ]
    )
    max_tokens: int = 1024
    max_turns: int = 5

    # External tool servers
    rpc_timeout_seconds: float = 8.0
    ready_timeout_seconds: float = 10.0
    ready_poll_interval: float = 0.3
    quick_exit_seconds: float = 2.0
    servers_config_path: str | None = "mcp_servers.json"
    watch_specification: bool = True
    watch_interval_seconds: float = 2.0
    fs_root: str = "."
    filesystem_module: str = "toolhub_server.tools.filesystem"
    filesystem_package: str = "@modelcontextprotocol/server-filesystem"

    # Tools
    usage_log_limit: int = 200
    usage_log_capacity: int = 5000
    tool_result_preview_chars: int = 4000
    tool_result_message_chars: int = 8000

    # Session memory
    memory_max_chars: int = 12000

    model_config = SettingsConfigDict(env_prefix="TOOLHUB_")

    @property
    def resolved_fs_root(self) -> Path:
        """Get the absolute filesystem tool root."""
        return Path(self.fs_root).resolve()
