"""Configuration and settings management using pydantic-settings."""
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOW_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Core settings
    env: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(default="json", description="Log format: json or text")

    # Scheduler limits
    max_parallelism: int = Field(
        default=10,
        description="Maximum number of nodes running concurrently within one run",
    )
    default_timeout_s: float = Field(
        default=3600,
        description="Run timeout in seconds used when a workflow declares none",
    )
    node_timeout_s: float | None = Field(
        default=None,
        description="Optional per-attempt node timeout in seconds",
    )
    poll_interval_s: float = Field(
        default=0.05,
        description="Scheduler wake-up interval while nodes are in flight",
    )
    prune_failed_branches: bool = Field(
        default=False,
        description="Continue a run when a failed node's branch can be pruned",
    )

    # Schema cache
    schema_cache_ttl_s: float = Field(
        default=300,
        description="Lifetime of cached static output schemas in seconds",
    )
    schema_cache_max_entries: int = Field(
        default=1000,
        description="Maximum number of cached static output schemas",
    )

    # Connector discovery
    connector_entry_point_group: str = Field(
        default="workflow_engine.connectors",
        description="Entry point group scanned for connector packs",
    )

    @field_validator("max_parallelism", "schema_cache_max_entries")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate that limits are positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return v

    def resolve_timeout(self, timeout: float) -> float:
        """Return the run timeout, falling back to the default for non-positive values."""
        return timeout if timeout > 0 else self.default_timeout_s


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings (useful for testing)."""
    global _settings
    _settings = None
