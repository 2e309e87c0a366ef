# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the in-process learning store."""

import asyncio
from datetime import datetime, timedelta

import pytest

from src.core.config.settings import MasterySettings
from src.core.knowledge.models import KnowledgeGraph
from src.core.learning.mastery import MasteryEngine
from src.core.learning.models import ConceptMastery, LearningSignal, LearningSignalType
from src.infrastructure.storage.memory import MemoryLearningStore


@pytest.mark.unit
class TestMemoryLearningStore:
    """Tests for MemoryLearningStore."""

    @pytest.mark.asyncio
    async def test_missing_records(self, memory_store: MemoryLearningStore, sample_user_id: str) -> None:
        """Test reads of a learner that has nothing stored."""
        assert await memory_store.get_concept_mastery(sample_user_id, "atp") is None
        assert await memory_store.list_concept_mastery(sample_user_id) == []
        assert (await memory_store.get_knowledge_graph(sample_user_id)).nodes == []

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(
        self,
        memory_store: MemoryLearningStore,
        sample_user_id: str,
    ) -> None:
        """Test that callers cannot mutate stored state through a read."""
        await memory_store.put_concept_mastery(sample_user_id, ConceptMastery(concept_id="atp"))

        record = await memory_store.get_concept_mastery(sample_user_id, "atp")
        record.common_mistakes.append("leaked")

        stored = await memory_store.get_concept_mastery(sample_user_id, "atp")
        assert stored.common_mistakes == []

    @pytest.mark.asyncio
    async def test_concurrent_updates_not_lost(
        self,
        memory_store: MemoryLearningStore,
        sample_user_id: str,
    ) -> None:
        """Test that concurrent signals on one concept are all applied."""
        engine = MasteryEngine(memory_store, MasterySettings())
        signal = LearningSignal(
            type=LearningSignalType.QUIZ_PARTIAL,
            concept_id="atp",
            concept_label="ATP",
            confidence=1.0,
            mastery_delta=0.01,
        )

        await asyncio.gather(*(engine.update_from_signal(sample_user_id, signal) for _ in range(20)))

        stored = await memory_store.get_concept_mastery(sample_user_id, "atp")
        assert stored.total_attempts == 20
        assert stored.streak_correct == 20
        assert stored.mastery_score == pytest.approx(0.4)

    @pytest.mark.asyncio
    async def test_learners_isolated(self, memory_store: MemoryLearningStore) -> None:
        """Test that records of one learner are invisible to another."""
        await memory_store.put_concept_mastery("learner-a", ConceptMastery(concept_id="atp"))

        assert await memory_store.get_concept_mastery("learner-b", "atp") is None

    @pytest.mark.asyncio
    async def test_due_concepts(
        self,
        memory_store: MemoryLearningStore,
        sample_user_id: str,
        fixed_now: datetime,
    ) -> None:
        """Test the default due-date scan."""
        await memory_store.put_concept_mastery(
            sample_user_id,
            ConceptMastery(concept_id="atp", last_interaction=fixed_now - timedelta(days=2)),
        )
        await memory_store.put_concept_mastery(
            sample_user_id, ConceptMastery(concept_id="adp", last_interaction=fixed_now)
        )

        due = await memory_store.list_due_concepts(sample_user_id, fixed_now)

        assert [m.concept_id for m in due] == ["atp"]

    @pytest.mark.asyncio
    async def test_graph_update_and_erasure(
        self,
        memory_store: MemoryLearningStore,
        biology_graph: KnowledgeGraph,
        sample_user_id: str,
    ) -> None:
        """Test graph read-modify-write and full learner erasure."""
        await memory_store.update_knowledge_graph(sample_user_id, lambda _: biology_graph)
        await memory_store.put_concept_mastery(sample_user_id, ConceptMastery(concept_id="glucose"))

        assert len((await memory_store.get_knowledge_graph(sample_user_id)).nodes) == 4
        assert await memory_store.delete_concept_mastery(sample_user_id, "missing") is False
        assert await memory_store.delete_user_data(sample_user_id) == 2
        assert (await memory_store.get_knowledge_graph(sample_user_id)).nodes == []

    @pytest.mark.asyncio
    async def test_reads_leave_no_state(self, memory_store: MemoryLearningStore) -> None:
        """Test that lookups for unknown learners allocate nothing."""
        for i in range(50):
            user_id = f"visitor-{i}"
            assert await memory_store.get_concept_mastery(user_id, "atp") is None
            assert await memory_store.list_concept_mastery(user_id) == []
            assert await memory_store.delete_concept_mastery(user_id, "atp") is False
            assert (await memory_store.get_knowledge_graph(user_id)).nodes == []

        assert dict(memory_store._mastery) == {}
        assert memory_store._graphs == {}
        assert dict(memory_store._locks) == {}

    @pytest.mark.asyncio
    async def test_erasure_releases_locks(
        self,
        memory_store: MemoryLearningStore,
        biology_graph: KnowledgeGraph,
        sample_user_id: str,
    ) -> None:
        """Test that erasing a learner also drops their write locks."""
        engine = MasteryEngine(memory_store, MasterySettings())
        signal = LearningSignal(
            type=LearningSignalType.QUIZ_PARTIAL,
            concept_id="atp",
            concept_label="ATP",
            confidence=1.0,
            mastery_delta=0.01,
        )
        await engine.update_from_signal(sample_user_id, signal)
        await engine.update_from_signal("other-learner", signal)
        await memory_store.update_knowledge_graph(sample_user_id, lambda _: biology_graph)

        await memory_store.delete_user_data(sample_user_id)

        assert list(memory_store._locks) == [("other-learner", "mastery:atp")]
