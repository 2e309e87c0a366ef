# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""LearningStore selection by configuration."""

import logging
from typing import TYPE_CHECKING

from src.infrastructure.cache import get_redis
from src.infrastructure.storage.base import LearningStore
from src.infrastructure.storage.memory import MemoryLearningStore
from src.infrastructure.storage.redis_store import RedisLearningStore

if TYPE_CHECKING:
    from src.core.config.settings import Settings

logger = logging.getLogger(__name__)


def create_learning_store(settings: "Settings") -> LearningStore:
    """Create the store named by STORAGE_BACKEND.

    The redis backend uses the global client, so init_redis() must have run.

    Raises:
        RedisError: If the redis backend is selected before init_redis().
    """
    if settings.storage.backend == "redis":
        logger.info("Using Redis learning store (prefix=%s)", settings.storage.key_prefix)
        return RedisLearningStore(get_redis())

    logger.info("Using in-memory learning store")
    return MemoryLearningStore()
