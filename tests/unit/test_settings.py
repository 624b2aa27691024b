"""Tests for configuration settings."""
import pytest
from pydantic import ValidationError

from workflow_engine.config import Settings, get_settings, reset_settings


class TestSettings:
    """Test Settings configuration."""

    def test_settings_default_values(self, monkeypatch):
        """Test default values are set correctly."""
        monkeypatch.delenv("WORKFLOW_ENGINE_LOG_FORMAT", raising=False)

        settings = Settings()

        # env is set to 'test' in conftest.py
        assert settings.env in ("development", "test")
        assert settings.log_level == "INFO"
        assert settings.log_format == "json"

        # Scheduler limits
        assert settings.max_parallelism == 10
        assert settings.default_timeout_s == 3600
        assert settings.node_timeout_s is None
        assert settings.prune_failed_branches is False

        # Schema cache
        assert settings.schema_cache_ttl_s == 300
        assert settings.schema_cache_max_entries == 1000
        assert settings.connector_entry_point_group == "workflow_engine.connectors"

    def test_settings_env_prefix(self, monkeypatch):
        """Test that WORKFLOW_ENGINE_ prefix works for environment variables."""
        monkeypatch.setenv("WORKFLOW_ENGINE_ENV", "production")
        monkeypatch.setenv("WORKFLOW_ENGINE_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("WORKFLOW_ENGINE_MAX_PARALLELISM", "3")
        monkeypatch.setenv("WORKFLOW_ENGINE_PRUNE_FAILED_BRANCHES", "true")

        settings = Settings()

        assert settings.env == "production"
        assert settings.log_level == "DEBUG"
        assert settings.max_parallelism == 3
        assert settings.prune_failed_branches is True

    @pytest.mark.parametrize("field", ["max_parallelism", "schema_cache_max_entries"])
    def test_limits_must_be_positive(self, field):
        """Test that zero limits are rejected."""
        with pytest.raises(ValidationError):
            Settings(**{field: 0})

    def test_log_format_validation(self):
        """Test that only json and text formats are accepted."""
        assert Settings(log_format="TEXT").log_format == "text"

        with pytest.raises(ValidationError):
            Settings(log_format="xml")

    def test_resolve_timeout(self):
        """Test that non-positive workflow timeouts fall back to the default."""
        settings = Settings(default_timeout_s=60)

        assert settings.resolve_timeout(5) == 5
        assert settings.resolve_timeout(0) == 60
        assert settings.resolve_timeout(-1) == 60

    def test_get_settings_singleton(self):
        """Test that get_settings returns the same instance until reset."""
        first = get_settings()

        assert get_settings() is first

        reset_settings()
        assert get_settings() is not first
