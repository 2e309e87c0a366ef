# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Base utilities for Dramatiq tasks.

Thread-Local Event Loop Management:
    Dramatiq workers use multiple threads (--threads N) to process tasks
    concurrently. redis.asyncio connection pools are bound to the event loop
    they were created on and cannot be used from another loop.

    This module keeps one persistent event loop per worker thread and one
    learner store per loop:
    1. The first task in a thread creates the loop
    2. Later tasks in that thread reuse it
    3. The store (and its Redis connections) is rebuilt whenever the loop is
       replaced
"""

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Any, Coroutine, TypeVar

if TYPE_CHECKING:
    from src.infrastructure.storage.base import LearningStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

_thread_local = threading.local()


def _get_thread_event_loop() -> asyncio.AbstractEventLoop:
    """Get or create a persistent event loop for the current thread.

    When a new loop is created, the thread's cached store is dropped since
    its connections belong to the previous loop.
    """
    loop = getattr(_thread_local, "event_loop", None)

    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        _thread_local.event_loop = loop
        _thread_local.learning_store = None

        logger.debug(
            "Created new event loop for thread %s",
            threading.current_thread().name,
        )

    return loop


async def get_worker_store() -> "LearningStore":
    """Get the learner store of the current worker thread, creating it on first use."""
    store = getattr(_thread_local, "learning_store", None)
    if store is not None:
        return store

    # Import here to avoid circular imports
    from src.core.config import get_settings
    from src.infrastructure.cache.redis_client import RedisClient
    from src.infrastructure.storage.memory import MemoryLearningStore
    from src.infrastructure.storage.redis_store import RedisLearningStore

    settings = get_settings()
    if settings.storage.backend == "redis":
        client = RedisClient(settings)
        await client.connect()
        store = RedisLearningStore(client)
    else:
        store = MemoryLearningStore()

    _thread_local.learning_store = store
    logger.debug(
        "Created %s for thread %s",
        type(store).__name__,
        threading.current_thread().name,
    )
    return store


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run async coroutine in sync Dramatiq worker context.

    Args:
        coro: Coroutine to run.

    Returns:
        Result of coroutine.

    Example:
        @dramatiq.actor
        def my_task(user_id: str):
            async def _process():
                store = await get_worker_store()
                return await store.list_concept_mastery(user_id)
            return run_async(_process())
    """
    loop = _get_thread_event_loop()
    return loop.run_until_complete(coro)
