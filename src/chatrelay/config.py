"""
ChatRelay Configuration.

Centralized configuration management using Pydantic Settings.
Loads configuration from environment variables.
"""

import os
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_xdg_state_dir() -> str:
    """
    Get XDG-compliant state directory for ChatRelay logs.

    Follows XDG Base Directory Specification:
    - Uses $XDG_STATE_HOME/chatrelay if XDG_STATE_HOME is set
    - Falls back to $HOME/.local/state/chatrelay if not set
    - Returns relative path ./logs if HOME not available (dev/testing)

    Returns:
        str: Path to state/logs directory
    """
    xdg_state_home = os.getenv("XDG_STATE_HOME")
    if xdg_state_home:
        return str(Path(xdg_state_home) / "chatrelay" / "logs")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "state" / "chatrelay" / "logs")

    return "./logs"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    postgres_db: str = "chatrelay"
    postgres_user: str = "chatrelay"
    postgres_password: str = "chatrelay_dev_password"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    database_url_override: str = Field(default="", validation_alias="DATABASE_URL")

    db_pool_size: int = 5
    db_pool_max_overflow: int = 5
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800

    @property
    def database_url(self) -> str:
        """Construct database URL from components (DATABASE_URL wins if set)."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Reasoning engine
    engine_command: str = "claude"
    engine_timeout_seconds: float = 300.0  # 5 minutes, same as the CLI default
    engine_model: str = ""  # Empty = engine default

    # Sessions
    working_directory: str = "."  # Working context assigned to new root sessions
    session_list_limit: int = 10

    # Channel queue
    stale_processing_timeout_seconds: int = 600  # Must exceed engine_timeout_seconds
    reaper_interval_seconds: float = 60.0
    queue_order_retries: int = 3

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_reload: bool = False

    # Application
    environment: str = "development"

    # Logging
    log_level: str = "INFO"
    log_dir: str = ""  # XDG-compliant log directory (defaults to XDG state dir if empty)
    log_format: str = "standard"  # standard or json
    log_console_enabled: bool = True
    log_file_enabled: bool = True
    log_max_bytes: int = 10_485_760  # 10MB per log file
    log_backup_count: int = 5
    log_to_stdout: bool = True  # Log INFO/DEBUG to stdout
    log_to_stderr: bool = True  # Log WARNING/ERROR/CRITICAL to stderr

    @model_validator(mode="after")
    def validate_stale_timeout(self) -> "Settings":
        """Ensure a running exchange can never be reaped as stale."""
        if self.stale_processing_timeout_seconds <= self.engine_timeout_seconds:
            raise ValueError(
                "stale_processing_timeout_seconds "
                f"({self.stale_processing_timeout_seconds}) must be greater than "
                f"engine_timeout_seconds ({self.engine_timeout_seconds})"
            )
        return self

    @property
    def log_directory(self) -> Path:
        """Get the log directory path, using XDG default if not specified."""
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return Path(get_xdg_state_dir())


# Global settings instance
settings = Settings()
