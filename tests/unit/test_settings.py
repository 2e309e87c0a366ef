# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for application settings."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from src.core.config.settings import (
    AnalysisSettings,
    JWTSettings,
    MasterySettings,
    RedisSettings,
    Settings,
    StorageSettings,
    clear_settings_cache,
    get_settings,
)


@pytest.mark.unit
class TestRedisSettings:
    """Tests for RedisSettings."""

    def test_url_without_password(self) -> None:
        """Test URL property without password."""
        settings = RedisSettings(host="cache", port=6380, database=2)

        assert settings.url == "redis://cache:6380/2"

    def test_url_with_password(self) -> None:
        """Test URL property with password."""
        settings = RedisSettings(password="secret")  # type: ignore[arg-type]

        assert settings.url == "redis://:secret@localhost:6379/0"


@pytest.mark.unit
class TestAnalysisSettings:
    """Tests for AnalysisSettings."""

    def test_default_values(self) -> None:
        """Test default configuration values."""
        with patch.dict(os.environ, {}, clear=True):
            settings = AnalysisSettings()

        assert settings.enabled is True
        assert settings.min_signal_confidence == 0.5
        assert settings.max_concepts == 15
        assert settings.propagate_mastery is False
        assert settings.max_concurrency == 4

    def test_loads_from_environment(self) -> None:
        """Test that settings load from environment variables."""
        env = {
            "ANALYSIS_ENABLED": "false",
            "ANALYSIS_MIN_SIGNAL_CONFIDENCE": "0.7",
            "ANALYSIS_PROPAGATE_MASTERY": "true",
        }

        with patch.dict(os.environ, env, clear=False):
            settings = AnalysisSettings()

        assert settings.enabled is False
        assert settings.min_signal_confidence == 0.7
        assert settings.propagate_mastery is True

    def test_confidence_bounds(self) -> None:
        """Test that thresholds outside [0, 1] are rejected."""
        with pytest.raises(ValidationError):
            AnalysisSettings(min_signal_confidence=1.5)


@pytest.mark.unit
class TestMasterySettings:
    """Tests for MasterySettings."""

    def test_default_values(self) -> None:
        """Test default configuration values."""
        with patch.dict(os.environ, {}, clear=True):
            settings = MasterySettings()

        assert settings.decay_rate == 0.1
        assert settings.pattern_history_limit == 20
        assert settings.min_ease_factor == 1.3
        assert settings.max_interval_days == 365

    def test_negative_decay_rejected(self) -> None:
        """Test that a negative forgetting rate is invalid."""
        with pytest.raises(ValidationError):
            MasterySettings(decay_rate=-0.1)


@pytest.mark.unit
class TestJWTSettings:
    """Tests for JWTSettings."""

    def test_secret_from_environment(self) -> None:
        """Test that the key is read and kept secret."""
        with patch.dict(os.environ, {"JWT_SECRET_KEY": "s3cret"}, clear=False):
            settings = JWTSettings()

        assert settings.secret_key.get_secret_value() == "s3cret"
        assert "s3cret" not in repr(settings)


@pytest.mark.unit
class TestSettings:
    """Tests for main Settings class."""

    def test_production_rejects_memory_store(self) -> None:
        """Test that production needs a durable store."""
        with pytest.raises(ValidationError, match="STORAGE_BACKEND=redis"):
            Settings(environment="production", storage=StorageSettings(backend="memory"))

    def test_production_with_redis(self) -> None:
        """Test a valid production configuration."""
        settings = Settings(environment="production", storage=StorageSettings(backend="redis"))

        assert settings.is_production is True
        assert settings.is_development is False

    def test_get_settings_cached(self) -> None:
        """Test that get_settings returns a cached instance."""
        clear_settings_cache()

        first = get_settings()
        second = get_settings()

        assert first is second

    def test_clear_settings_cache(self) -> None:
        """Test that clearing the cache reloads settings."""
        first = get_settings()
        clear_settings_cache()

        assert get_settings() is not first
