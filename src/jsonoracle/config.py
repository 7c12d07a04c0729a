"""
JSON Oracle Configuration.

Centralized configuration management using Pydantic Settings.
Loads configuration from environment variables.
"""

import os
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def get_xdg_state_dir() -> str:
    """
    Get XDG-compliant state directory for JSON Oracle logs.

    Follows XDG Base Directory Specification:
    - Uses $XDG_STATE_HOME/jsonoracle if XDG_STATE_HOME is set
    - Falls back to $HOME/.local/state/jsonoracle if not set
    - Returns relative path ./logs if HOME not available (dev/testing)

    Returns:
        str: Path to state/logs directory
    """
    xdg_state_home = os.getenv("XDG_STATE_HOME")
    if xdg_state_home:
        return str(Path(xdg_state_home) / "jsonoracle" / "logs")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "state" / "jsonoracle" / "logs")

    # Fallback for development/testing environments without HOME
    return "./logs"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url_override: str = ""  # e.g. sqlite:///./jsonoracle.db
    postgres_db: str = "jsonoracle"
    postgres_user: str = "jsonoracle"
    postgres_password: str = "jsonoracle_dev_password"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    db_pool_size: int = 5
    db_pool_max_overflow: int = 5
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800

    @property
    def database_url(self) -> str:
        """Construct database URL from components."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Completion backends
    ollama_base_url: str = "http://localhost:11434"
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    model_max_tokens: int = 1500
    model_temperature: float = 0.3
    default_models: list[str] = ["llama2"]

    # Orchestration
    model_timeout_seconds: float = 60.0  # Per model call
    turn_max_retries: int = 2  # Retries after the first attempt, per turn
    turn_retry_base_delay: float = 1.0
    turn_retry_max_delay: float = 10.0
    max_rounds: int = 10
    max_models_per_request: int = 5
    max_concurrent_analyses: int = 8

    # Integrations
    api_key_namespace: str = "jo_live_"
    rate_limit_per_minute: int = 60  # Analysis submissions per integration (0 = off)

    # Webhook delivery
    delivery_workers: int = 2
    delivery_max_attempts: int = 5
    delivery_base_delay: float = 2.0
    delivery_max_delay: float = 300.0
    delivery_timeout_seconds: float = 10.0

    # Watch / live stream
    watch_root: str = "."  # File resources must live under this directory
    watch_use_polling: bool = False  # PollingObserver instead of native events
    watch_poll_interval: float = 1.0
    stream_max_snapshot_bytes: int = 262_144

    # Identity provider (user-scoped endpoints)
    identity_jwks_url: str = ""  # e.g. https://<domain>/.well-known/jwks.json
    identity_shared_secret: str = ""  # HS256 secret for development
    identity_audience: str = ""
    identity_issuer: str = ""

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
    log_console_enabled: bool = True  # Enable console (stdout/stderr) logging
    log_file_enabled: bool = True  # Enable file-based logging
    log_max_bytes: int = 10_485_760  # 10MB per log file
    log_backup_count: int = 5  # Keep 5 backup files

    # LLM Logging
    llm_logging_enabled: bool = False  # Enable detailed model interaction logging
    llm_log_prompts: bool = True
    llm_log_responses: bool = True

    @property
    def log_directory(self) -> Path:
        """Get the log directory path, using XDG default if not specified."""
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return Path(get_xdg_state_dir())


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings, loaded once from the environment."""
    return Settings()
