"""
Configuration management.

Loads settings from environment variables and .env file.
Prefix: MEMBLOCKS_
"""

from datetime import timedelta
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MEMBLOCKS_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Storage
    data_dir: Path = Field(default=Path("data"), description="Data storage directory")
    db_name: str = Field(default="memblocks.db", description="SQLite database name")
    storage_prefix: str = Field(default="memblocks", description="Key prefix in the backend")

    # Identity
    anonymous_subject: str = Field(
        default="anonymous", description="Subject used when no identity is supplied"
    )
    source_context: str = Field(default="unknown", description="Default origin tag for turns")

    # Blocks
    default_block_limit: int = Field(default=2000, gt=0, description="Char limit per block")

    # Recall and compaction
    summarize_threshold: int = Field(default=80, gt=1, description="Turns before compaction")
    summarize_keep_recent: int = Field(
        default=24, ge=0, description="Turns kept raw after compaction"
    )
    max_summaries: int = Field(default=20, gt=0, description="Summary archive capacity")
    chars_per_weight: int = Field(default=4, gt=0, description="Chars per derived weight unit")

    # Sessions
    inactivity_timeout_minutes: float = Field(
        default=30, gt=0, description="Idle minutes before a session expires"
    )

    # Context assembly
    context_summaries: int = Field(default=2, ge=0, description="Summaries in assembled context")
    context_recent_turns: int = Field(default=6, ge=0, description="Turns in assembled context")

    # Diagnostics
    thought_log_size: int = Field(default=50, gt=0, description="Inner thoughts kept")

    @model_validator(mode="after")
    def _check_keep_recent(self) -> "Settings":
        if self.summarize_keep_recent >= self.summarize_threshold:
            raise ValueError("summarize_keep_recent must be below summarize_threshold")
        return self

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name

    @property
    def inactivity_timeout(self) -> timedelta:
        return timedelta(minutes=self.inactivity_timeout_minutes)


def get_settings() -> Settings:
    """Get settings instance."""
    return Settings()
