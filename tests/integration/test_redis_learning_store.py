# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for the Redis learning store.

These tests require a running Redis instance.
Run with: pytest tests/integration/test_redis_learning_store.py -v

Prerequisites:
    - Redis running at localhost:6379
"""

import asyncio
from uuid import uuid4

import pytest

from src.core.config.settings import MasterySettings, Settings, StorageSettings
from src.core.knowledge.models import KnowledgeGraph
from src.core.learning.mastery import MasteryEngine
from src.core.learning.models import ConceptMastery, LearningSignal, LearningSignalType
from src.infrastructure.cache.redis_client import (
    RedisClient,
    RedisError,
    close_redis,
    get_redis,
    init_redis,
)
from src.infrastructure.storage.redis_store import RedisLearningStore


@pytest.fixture
def settings() -> Settings:
    """Provide settings using an isolated key prefix."""
    return Settings(storage=StorageSettings(backend="redis", key_prefix="itest"))


@pytest.fixture
async def redis_store(settings: Settings) -> RedisLearningStore:
    """Provide a connected store."""
    client = RedisClient(settings)
    await client.connect()
    yield RedisLearningStore(client)
    await client.close()


@pytest.fixture
def user_id() -> str:
    """Provide a learner id unique to the test."""
    return f"itest-{uuid4().hex[:8]}"


@pytest.mark.integration
class TestRedisInitialization:
    """Tests for Redis initialization."""

    async def test_init_and_close(self, settings: Settings) -> None:
        """Test the global client lifecycle."""
        await init_redis(settings)
        assert await get_redis().ping() is True
        await close_redis()

        with pytest.raises(RedisError) as exc_info:
            get_redis()

        assert "not initialized" in str(exc_info.value)

    async def test_get_without_connect_raises_error(self, settings: Settings) -> None:
        """Test that operations without connect raise error."""
        with pytest.raises(RedisError) as exc_info:
            await RedisClient(settings).get("itest:key")

        assert "not connected" in str(exc_info.value)


@pytest.mark.integration
class TestRedisLearningStore:
    """Tests for RedisLearningStore against a real server."""

    async def test_round_trip(self, redis_store: RedisLearningStore, user_id: str) -> None:
        """Test writing and reading a record and its review index."""
        mastery = ConceptMastery(concept_id="atp", mastery_score=0.6)

        await redis_store.put_concept_mastery(user_id, mastery)

        try:
            stored = await redis_store.get_concept_mastery(user_id, "atp")
            assert stored == mastery
            assert [m.concept_id for m in await redis_store.list_concept_mastery(user_id)] == ["atp"]
            due = await redis_store.list_due_concepts(user_id, mastery.next_review_date)
            assert [m.concept_id for m in due] == ["atp"]
        finally:
            await redis_store.delete_user_data(user_id)

    async def test_concurrent_updates(self, redis_store: RedisLearningStore, user_id: str) -> None:
        """Test that optimistic locking keeps every concurrent update."""
        engine = MasteryEngine(redis_store, MasterySettings())
        signal = LearningSignal(
            type=LearningSignalType.QUIZ_PARTIAL,
            concept_id="atp",
            concept_label="ATP",
            confidence=1.0,
            mastery_delta=0.01,
        )

        try:
            await asyncio.gather(*(engine.update_from_signal(user_id, signal) for _ in range(8)))
            stored = await redis_store.get_concept_mastery(user_id, "atp")
            assert stored.total_attempts == 8
        finally:
            await redis_store.delete_user_data(user_id)

    async def test_graph_and_erasure(
        self,
        redis_store: RedisLearningStore,
        biology_graph: KnowledgeGraph,
        user_id: str,
    ) -> None:
        """Test graph persistence and that erasure removes every key."""
        await redis_store.update_knowledge_graph(user_id, lambda _: biology_graph)
        await redis_store.put_concept_mastery(user_id, ConceptMastery(concept_id="glucose"))

        assert len((await redis_store.get_knowledge_graph(user_id)).nodes) == 4
        assert await redis_store.delete_user_data(user_id) >= 3
        assert await redis_store.get_concept_mastery(user_id, "glucose") is None
        assert (await redis_store.get_knowledge_graph(user_id)).nodes == []
