# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

This module provides centralized configuration management for the mastery
engine. Settings are loaded from environment variables with sensible
defaults.

The Settings class is the main entry point and aggregates all subsettings.
A singleton instance is provided via get_settings() for dependency injection.

Example:
    >>> from src.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> print(settings.analysis.min_signal_confidence)
    0.5
"""

from functools import lru_cache
from typing import Literal, Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseSettings):
    """Redis configuration for mastery/graph persistence and the task broker.

    User isolation is achieved via key prefix: {key_prefix}:user:{user_id}:*

    Attributes:
        host: Redis server host.
        port: Redis server port.
        password: Redis password.
        database: Redis database number.
        max_connections: Maximum connection pool size.
    """

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = "localhost"
    port: int = 6379
    password: SecretStr | None = None
    database: int = 0
    max_connections: int = 50

    @property
    def url(self) -> str:
        """Build the Redis connection URL."""
        if self.password is None:
            return f"redis://{self.host}:{self.port}/{self.database}"
        pwd = self.password.get_secret_value()
        return f"redis://:{pwd}@{self.host}:{self.port}/{self.database}"


class LLMSettings(BaseSettings):
    """LLM configuration for the graph extraction collaborator (LiteLLM).

    Attributes:
        model: Model identifier in LiteLLM format.
        api_base: Optional API base URL (e.g. a remote Ollama instance).
        api_key: Optional API key passed straight to LiteLLM.
        temperature: Sampling temperature for extraction calls.
        request_timeout: Request timeout in seconds.
        max_retries: Maximum retry attempts.
    """

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        extra="ignore",
    )

    model: str = "gemini/gemini-2.0-flash"
    api_base: str | None = None
    api_key: SecretStr | None = None
    temperature: float = 0.2
    request_timeout: float = 60.0
    max_retries: int = 3


class AnalysisSettings(BaseSettings):
    """Passive analysis pipeline configuration.

    Attributes:
        enabled: Global feature flag for the analysis pipeline.
        min_signal_confidence: Signals below this confidence are dropped.
        max_concepts: Maximum concepts extracted per interaction.
        update_mastery: Whether detected signals are persisted.
        propagate_mastery: Whether positive changes flow along graph edges.
        max_concurrency: Maximum pipelines running at once in-process.
    """

    model_config = SettingsConfigDict(
        env_prefix="ANALYSIS_",
        extra="ignore",
    )

    enabled: bool = True
    min_signal_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    max_concepts: int = Field(default=15, ge=1)
    update_mastery: bool = True
    propagate_mastery: bool = False
    max_concurrency: int = Field(default=4, ge=1)


class MasterySettings(BaseSettings):
    """Mastery update and decay parameters.

    Attributes:
        decay_rate: Lambda in the forgetting curve e^(-lambda * days).
        confidence_gain: Fraction of the remaining confidence gap closed per signal.
        pattern_history_limit: Cap for common_mistakes / confused_with lists.
        min_ease_factor: SM-2 ease factor floor.
        max_interval_days: Upper bound for the SM-2 review interval.
    """

    model_config = SettingsConfigDict(
        env_prefix="MASTERY_",
        extra="ignore",
    )

    decay_rate: float = Field(default=0.1, ge=0.0)
    confidence_gain: float = Field(default=0.2, ge=0.0, le=1.0)
    pattern_history_limit: int = Field(default=20, ge=1)
    min_ease_factor: float = 1.3
    max_interval_days: int = Field(default=365, ge=1)


class GraphSettings(BaseSettings):
    """Knowledge graph ingestion configuration.

    Attributes:
        chunk_delay_seconds: Pause between sequential chunk extractions.
        max_nodes_per_chunk: Upper bound asked of the extraction model.
    """

    model_config = SettingsConfigDict(
        env_prefix="GRAPH_",
        extra="ignore",
    )

    chunk_delay_seconds: float = Field(default=0.2, ge=0.0)
    max_nodes_per_chunk: int = 20


class StorageSettings(BaseSettings):
    """Persistence backend selection.

    Attributes:
        backend: "memory" for the in-process store, "redis" for Redis.
        key_prefix: Namespace prepended to every Redis key.
    """

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        extra="ignore",
    )

    backend: Literal["memory", "redis"] = "memory"
    key_prefix: str = "echo"


class JWTSettings(BaseSettings):
    """JWT verification for learner identity.

    Attributes:
        secret_key: Key used to verify token signatures. Unset disables JWT identity.
        algorithm: JWT signing algorithm.
        user_claim: Claim holding the learner id.
    """

    model_config = SettingsConfigDict(
        env_prefix="JWT_",
        extra="ignore",
    )

    secret_key: SecretStr | None = None
    algorithm: str = "HS256"
    user_claim: str = "sub"


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached singleton instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        redis: Redis settings.
        llm: LLM settings for graph extraction.
        analysis: Analysis pipeline settings.
        mastery: Mastery engine settings.
        graph: Graph ingestion settings.
        storage: Storage backend settings.
        jwt: JWT identity settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    redis: RedisSettings = Field(default_factory=RedisSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    mastery: MasterySettings = Field(default_factory=MasterySettings)
    graph: GraphSettings = Field(default_factory=GraphSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    jwt: JWTSettings = Field(default_factory=JWTSettings)

    @model_validator(mode="after")
    def validate_production_settings(self) -> Self:
        """Validate that production settings are properly configured.

        Raises:
            ValueError: If running in production with the in-process store.
        """
        if self.environment == "production" and self.storage.backend == "memory":
            raise ValueError(
                "The in-memory learning store is not durable and cannot be used "
                "in production. Set STORAGE_BACKEND=redis."
            )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful in tests that patch environment variables.
    """
    get_settings.cache_clear()
