# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Configuration package for the mastery engine.

Settings are Pydantic models loaded from environment variables.

Example:
    >>> from src.core.config import get_settings
    >>> settings = get_settings()
    >>> print(settings.environment)
    'development'
"""

from src.core.config.settings import (
    AnalysisSettings,
    GraphSettings,
    JWTSettings,
    LLMSettings,
    MasterySettings,
    RedisSettings,
    Settings,
    StorageSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "clear_settings_cache",
    # Subsettings
    "RedisSettings",
    "LLMSettings",
    "AnalysisSettings",
    "MasterySettings",
    "GraphSettings",
    "JWTSettings",
    "StorageSettings",
]
