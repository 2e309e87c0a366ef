# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-process LearningStore.

Records are kept as JSON-compatible dicts, exactly as a remote store would
hold them, so callers never share mutable model instances with the store.
Per-key asyncio locks make update_concept_mastery() atomic within one event
loop. Suitable for development, tests and single-process deployments.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Optional

from src.core.knowledge.models import KnowledgeGraph
from src.core.learning.models import ConceptMastery
from src.infrastructure.storage.base import GraphMutator, LearningStore, MasteryMutator

logger = logging.getLogger(__name__)


class MemoryLearningStore(LearningStore):
    """LearningStore backed by dictionaries."""

    def __init__(self) -> None:
        self._mastery: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._graphs: dict[str, dict[str, Any]] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get_concept_mastery(
        self, user_id: str, concept_id: str
    ) -> Optional[ConceptMastery]:
        data = self._mastery.get(user_id, {}).get(concept_id)
        return ConceptMastery.model_validate(data) if data is not None else None

    async def put_concept_mastery(self, user_id: str, mastery: ConceptMastery) -> None:
        self._mastery[user_id][mastery.concept_id] = mastery.model_dump(mode="json")

    async def update_concept_mastery(
        self,
        user_id: str,
        concept_id: str,
        mutator: MasteryMutator,
    ) -> ConceptMastery:
        async with self._locks[(user_id, f"mastery:{concept_id}")]:
            current = await self.get_concept_mastery(user_id, concept_id)
            updated = mutator(current)
            await self.put_concept_mastery(user_id, updated)
            return updated

    async def list_concept_mastery(self, user_id: str) -> list[ConceptMastery]:
        records = self._mastery.get(user_id, {})
        return [ConceptMastery.model_validate(data) for data in records.values()]

    async def delete_concept_mastery(self, user_id: str, concept_id: str) -> bool:
        self._drop_unused_lock((user_id, f"mastery:{concept_id}"))
        return self._mastery.get(user_id, {}).pop(concept_id, None) is not None

    async def get_knowledge_graph(self, user_id: str) -> KnowledgeGraph:
        data = self._graphs.get(user_id)
        return KnowledgeGraph.model_validate(data) if data is not None else KnowledgeGraph()

    async def put_knowledge_graph(self, user_id: str, graph: KnowledgeGraph) -> None:
        self._graphs[user_id] = graph.model_dump(mode="json")

    async def update_knowledge_graph(
        self,
        user_id: str,
        mutator: GraphMutator,
    ) -> KnowledgeGraph:
        async with self._locks[(user_id, "graph")]:
            updated = mutator(await self.get_knowledge_graph(user_id))
            await self.put_knowledge_graph(user_id, updated)
            return updated

    async def delete_user_data(self, user_id: str) -> int:
        removed = len(self._mastery.pop(user_id, {}))
        if self._graphs.pop(user_id, None) is not None:
            removed += 1
        for key in [key for key in self._locks if key[0] == user_id]:
            self._drop_unused_lock(key)
        logger.info("Deleted %d records for user %s", removed, user_id)
        return removed

    def _drop_unused_lock(self, key: tuple[str, str]) -> None:
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]
