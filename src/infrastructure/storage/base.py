# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Base class for learner state persistence.

A LearningStore keeps two kinds of per-learner records: one ConceptMastery
per concept and one KnowledgeGraph. Implementations must provide atomic
read-modify-write on a single key (update_concept_mastery,
update_knowledge_graph); multi-key transactions are not required.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Optional

from src.core.knowledge.models import KnowledgeGraph
from src.core.learning.exceptions import LearningEngineError
from src.core.learning.models import ConceptMastery

MasteryMutator = Callable[[Optional[ConceptMastery]], ConceptMastery]
GraphMutator = Callable[[KnowledgeGraph], KnowledgeGraph]


class StorageError(LearningEngineError):
    """Raised when the persistence backend fails."""


class LearningStore(ABC):
    """Persistence collaborator for mastery records and knowledge graphs."""

    @abstractmethod
    async def get_concept_mastery(
        self, user_id: str, concept_id: str
    ) -> Optional[ConceptMastery]:
        """Return the stored record, or None if the learner never met the concept."""

    @abstractmethod
    async def put_concept_mastery(self, user_id: str, mastery: ConceptMastery) -> None:
        """Store a record, replacing any previous one."""

    @abstractmethod
    async def update_concept_mastery(
        self,
        user_id: str,
        concept_id: str,
        mutator: MasteryMutator,
    ) -> ConceptMastery:
        """Atomically read, transform and write one concept's record.

        The mutator receives the latest persisted record (or None) and
        returns the record to store. It may be called more than once if a
        concurrent writer wins a race, so it must be free of side effects
        beyond its return value.

        Returns:
            The record that was written.

        Raises:
            StorageError: If the backend fails.
        """

    @abstractmethod
    async def list_concept_mastery(self, user_id: str) -> list[ConceptMastery]:
        """Return all of a learner's records."""

    @abstractmethod
    async def delete_concept_mastery(self, user_id: str, concept_id: str) -> bool:
        """Delete a record. Returns True if it existed."""

    @abstractmethod
    async def get_knowledge_graph(self, user_id: str) -> KnowledgeGraph:
        """Return the learner's graph (empty if none stored)."""

    @abstractmethod
    async def put_knowledge_graph(self, user_id: str, graph: KnowledgeGraph) -> None:
        """Store the learner's graph, replacing any previous one."""

    @abstractmethod
    async def update_knowledge_graph(
        self,
        user_id: str,
        mutator: GraphMutator,
    ) -> KnowledgeGraph:
        """Atomically read, transform and write the learner's graph."""

    @abstractmethod
    async def delete_user_data(self, user_id: str) -> int:
        """Erase every record of a learner. Returns the number of records removed."""

    async def list_due_concepts(self, user_id: str, now: datetime) -> list[ConceptMastery]:
        """Return records whose next review date is at or before now."""
        return [
            mastery
            for mastery in await self.list_concept_mastery(user_id)
            if mastery.next_review_date is not None and mastery.next_review_date <= now
        ]

    async def close(self) -> None:
        """Release backend resources."""
