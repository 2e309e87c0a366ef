# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Persistence of learner mastery records and knowledge graphs.

Example:
    from src.infrastructure.storage import create_learning_store

    store = create_learning_store(get_settings())
    mastery = await store.get_concept_mastery("u-1", "photosynthesis")
"""

from src.infrastructure.storage.base import (
    GraphMutator,
    LearningStore,
    MasteryMutator,
    StorageError,
)
from src.infrastructure.storage.factory import create_learning_store
from src.infrastructure.storage.memory import MemoryLearningStore
from src.infrastructure.storage.redis_store import RedisLearningStore

__all__ = [
    "GraphMutator",
    "LearningStore",
    "MasteryMutator",
    "MemoryLearningStore",
    "RedisLearningStore",
    "StorageError",
    "create_learning_store",
]
