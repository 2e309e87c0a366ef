# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

This module provides fixtures used across all test types:
- Unit tests
- Integration tests (require a running Redis)
"""

import os
from collections.abc import Generator
from datetime import datetime, timezone

import pytest
import structlog

# Actor modules set up the broker on import; never reach for Redis in tests
os.environ.setdefault("DRAMATIQ_TEST_MODE", "true")

from src.core.config.settings import (  # noqa: E402
    AnalysisSettings,
    GraphSettings,
    Settings,
    StorageSettings,
    clear_settings_cache,
)
from src.core.knowledge.models import KnowledgeGraph  # noqa: E402
from src.infrastructure.storage.memory import MemoryLearningStore  # noqa: E402
from src.utils.logging import clear_context, setup_logging  # noqa: E402


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (requires services)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# =============================================================================
# Environment Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Make every test read settings from its own environment."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def test_settings() -> Settings:
    """Provide settings with an in-memory store and no chunk delay."""
    return Settings(
        environment="development",
        storage=StorageSettings(backend="memory", key_prefix="test"),
        graph=GraphSettings(chunk_delay_seconds=0),
        analysis=AnalysisSettings(propagate_mastery=False),
    )


@pytest.fixture
def structured_logging(test_settings: Settings) -> Generator[None, None, None]:
    """Configure structlog as an application would, restoring defaults afterwards."""
    setup_logging(test_settings)
    yield
    clear_context()
    structlog.reset_defaults()


# =============================================================================
# Helper Fixtures
# =============================================================================


@pytest.fixture
def sample_user_id() -> str:
    """Provide a sample learner ID for testing."""
    return "550e8400-e29b-41d4-a716-446655440001"


@pytest.fixture
def fixed_now() -> datetime:
    """Provide a fixed UTC timestamp."""
    return datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def memory_store() -> MemoryLearningStore:
    """Provide an empty in-memory learning store."""
    return MemoryLearningStore()


@pytest.fixture
def biology_graph() -> KnowledgeGraph:
    """Provide a small photosynthesis knowledge graph."""
    return KnowledgeGraph.from_raw(
        {
            "nodes": [
                {
                    "id": "photosynthesis",
                    "label": "Photosynthesis",
                    "type": "process",
                    "description": "How plants turn light into chemical energy",
                },
                {"id": "chlorophyll", "label": "Chlorophyll", "type": "term"},
                {"id": "light_energy", "label": "Light energy", "type": "concept"},
                {"id": "glucose", "label": "Glucose", "type": "fact"},
            ],
            "edges": [
                {
                    "source": "light_energy",
                    "target": "photosynthesis",
                    "relation": "prerequisite for",
                    "learning_relation": "prerequisite",
                },
                {"source": "chlorophyll", "target": "photosynthesis", "relation": "part of"},
                {"source": "photosynthesis", "target": "glucose", "relation": "produces"},
            ],
        },
        file_id="biology-101",
    )
