"""
Shared configuration management for the loadcache engine.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.errors import ConfigurationError


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="LOADCACHE_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")


class EngineConfig(BaseConfig):
    """Cache and load-coordination settings. Durations are seconds."""

    service_name: str = Field(default="loadcache")

    # Freshness
    default_ttl: float = Field(default=300.0)
    stale_after: float = Field(default=600.0)

    # Retry
    max_retries: int = Field(default=3)
    base_delay: float = Field(default=1.0)
    max_delay: float = Field(default=60.0)
    retry_jitter: bool = Field(default=False)

    # Readiness
    debounce_delay: float = Field(default=0.1)
    gate_fail_open: bool = Field(default=False)

    # Diagnostics
    event_capacity: int = Field(default=100)
    anomaly_window: float = Field(default=10.0)
    readiness_burst_threshold: int = Field(default=5)
    load_burst_threshold: int = Field(default=3)

    @model_validator(mode="after")
    def _check_ranges(self) -> "EngineConfig":
        if self.default_ttl < 0 or self.base_delay < 0 or self.debounce_delay < 0:
            raise ConfigurationError(
                "Durations must be non-negative",
                {
                    "default_ttl": self.default_ttl,
                    "base_delay": self.base_delay,
                    "debounce_delay": self.debounce_delay,
                },
            )
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0", {"max_retries": self.max_retries})
        if self.event_capacity < 1:
            raise ConfigurationError("event_capacity must be >= 1", {"event_capacity": self.event_capacity})
        return self


def get_config(**overrides) -> EngineConfig:
    """Get engine configuration from the environment, with explicit overrides."""
    return EngineConfig(**overrides)
