"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreConfig(BaseModel):
    """Store location and limits."""
    data_dir: str = "~/.engram"
    db_name: str = "engram.db"
    lock_timeout: float = 5.0  # Seconds to wait for the write lock
    max_content_length: int = 2000

    @field_validator("lock_timeout")
    @classmethod
    def validate_lock_timeout(cls, v: float) -> float:
        """Validate the lock timeout is non-negative."""
        if v < 0:
            raise ValueError("lock_timeout must be non-negative")
        return v

    @field_validator("max_content_length")
    @classmethod
    def validate_max_content_length(cls, v: int) -> int:
        """Validate the content bound is positive."""
        if v < 1:
            raise ValueError("max_content_length must be at least 1")
        return v


class PolicyConfig(BaseModel):
    """Generation and garbage-collection policy."""
    promotion_threshold: int = 3  # Taps needed for generation 2
    grace_period_days: float = 7.0  # New memories are never expired before this age
    gc_max_expire: int | None = None  # Cap on expirations per GC run (None = no cap)

    @field_validator("promotion_threshold")
    @classmethod
    def validate_threshold(cls, v: int) -> int:
        """Validate the promotion threshold is at least 1."""
        if v < 1:
            raise ValueError("promotion_threshold must be at least 1")
        return v

    @field_validator("grace_period_days")
    @classmethod
    def validate_grace(cls, v: float) -> float:
        """Validate the grace period is non-negative."""
        if v < 0:
            raise ValueError("grace_period_days must be non-negative")
        return v


class CLIConfig(BaseModel):
    """Command line behaviour."""
    lock_retries: int = 3  # Retries with backoff when the store is locked
    hot_window_hours: int = 24


class Config(BaseSettings):
    """Root configuration for engram."""
    model_config = SettingsConfigDict(env_prefix="ENGRAM_", env_nested_delimiter="__")

    db_path: str | None = None  # Overrides store.data_dir / store.db_name
    store: StoreConfig = Field(default_factory=StoreConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    cli: CLIConfig = Field(default_factory=CLIConfig)
    log_level: str = "WARNING"

    @property
    def database_path(self) -> Path:
        """Get expanded database path."""
        if self.db_path:
            return Path(self.db_path).expanduser()
        return Path(self.store.data_dir).expanduser() / self.store.db_name
