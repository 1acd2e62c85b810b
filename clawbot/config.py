"""Application configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    openrouter_api_key: str = Field(default="", alias="OPENROUTER_API_KEY")
    openrouter_model: str = Field(default="anthropic/claude-sonnet-4", alias="OPENROUTER_MODEL")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        alias="OPENROUTER_BASE_URL",
    )
    request_timeout_seconds: float = Field(default=120.0, alias="REQUEST_TIMEOUT_SECONDS")

    workspace: Path = Field(default=Path.home() / ".clawbot" / "workspace", alias="CLAWBOT_WORKSPACE")
    database_path: Path | None = Field(default=None, alias="DATABASE_PATH")

    max_tool_iterations: int = Field(default=40, ge=1, alias="MAX_TOOL_ITERATIONS")
    memory_window: int = Field(default=100, ge=1, alias="MEMORY_WINDOW")
    temperature: float = Field(default=0.1, alias="TEMPERATURE")
    max_tokens: int = Field(default=8192, ge=1, alias="MAX_TOKENS")

    send_progress: bool = Field(default=True, alias="SEND_PROGRESS")
    send_tool_hints: bool = Field(default=False, alias="SEND_TOOL_HINTS")

    brave_api_key: str = Field(default="", alias="BRAVE_API_KEY")
    web_search_max_results: int = Field(default=5, alias="WEB_SEARCH_MAX_RESULTS")
    exec_timeout_seconds: int = Field(default=60, alias="EXEC_TIMEOUT_SECONDS")
    exec_path_append: str = Field(default="", alias="EXEC_PATH_APPEND")
    restrict_to_workspace: bool = Field(default=False, alias="RESTRICT_TO_WORKSPACE")

    heartbeat_enabled: bool = Field(default=True, alias="HEARTBEAT_ENABLED")
    heartbeat_interval_seconds: int = Field(default=1800, alias="HEARTBEAT_INTERVAL_SECONDS")

    signal_enabled: bool = Field(default=False, alias="SIGNAL_ENABLED")
    signal_cli_path: str = Field(default="signal-cli", alias="SIGNAL_CLI_PATH")
    signal_account: str = Field(default="", alias="SIGNAL_ACCOUNT")
    signal_poll_interval_seconds: float = Field(default=2.0, alias="SIGNAL_POLL_INTERVAL_SECONDS")
    # Comma-separated sender ids allowed to talk to the assistant (empty = anyone).
    allowed_senders_raw: str = Field(default="", alias="CLAWBOT_ALLOWED_SENDERS")

    @property
    def resolved_workspace(self) -> Path:
        return self.workspace.expanduser().resolve()

    @property
    def resolved_database_path(self) -> Path:
        if self.database_path is not None:
            return self.database_path.expanduser()
        return self.resolved_workspace / "sessions" / "sessions.db"

    @property
    def cron_store_path(self) -> Path:
        return self.resolved_workspace / "cron" / "jobs.json"


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()


def allowed_senders(settings: Settings) -> frozenset[str]:
    """Return the set of sender ids permitted to reach the agent.

    An empty set means the channel accepts everyone.
    """
    return frozenset(n.strip() for n in settings.allowed_senders_raw.split(",") if n.strip())
