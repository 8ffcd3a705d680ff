"""Application settings using Pydantic Settings."""

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    workspace_root: Path | None = Field(default=None)
    state_dir: Path = Field(default=Path.home() / ".deo")

    # Ollama settings
    ollama_base_url: str = Field(default="http://127.0.0.1:11434")
    ollama_model: str | None = Field(default=None)
    ollama_default_model: str = Field(default="qwen2.5:latest")
    ollama_timeout: float | None = Field(default=None)
    ollama_num_ctx: int = Field(default=8192)
    ollama_temperature: float = Field(default=0.2)
    ollama_stream: bool = Field(default=True)
    ollama_format: str | None = Field(default="json")

    # Agent loop settings
    agent_max_steps: int = Field(default=15)
    agent_history_entries: int = Field(default=10)
    agent_default_mode: Literal["iterative", "single_shot"] = Field(default="iterative")

    # Memory and workspace context
    memory_window: int = Field(default=15)
    context_max_depth: int = Field(default=3)
    context_max_files: int = Field(default=10)
    context_max_chars: int = Field(default=20_000)
    context_max_file_chars: int = Field(default=10_000)

    # Session store
    sessions_max: int = Field(default=20)
    session_max_messages: int = Field(default=200)
    session_title_chars: int = Field(default=30)

    # API settings
    api_host: str = Field(default="127.0.0.1")
    api_port: int = Field(default=8000)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    @property
    def sessions_path(self) -> Path:
        """JSON file backing the persisted session collection."""
        return self.state_dir / "sessions.json"


settings = Settings()


def configure_workspace_root(root: Path) -> None:
    """Set the workspace root and rebase derived paths when not explicitly configured."""
    resolved_root = root.expanduser().resolve()
    settings.workspace_root = resolved_root

    if os.getenv("STATE_DIR") is None:
        settings.state_dir = resolved_root / ".deo"
