# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Per-learner knowledge graph service.

Ties graph generation and the pure merge functions to the learner store.
Every write goes through LearningStore.update_knowledge_graph so that two
documents ingested at the same time for the same learner cannot lose each
other's nodes.
"""

import logging
from typing import Optional, Sequence

from src.core.knowledge.generator import GraphGenerator, TextChunk
from src.core.knowledge.merger import (
    find_related_nodes,
    graph_stats,
    merge_graph,
    remove_file_from_graph,
    search_nodes,
    validate_graph,
)
from src.core.knowledge.models import (
    GraphMergeResult,
    GraphNode,
    GraphStats,
    GraphValidation,
    KnowledgeGraph,
)
from src.infrastructure.storage.base import LearningStore

logger = logging.getLogger(__name__)


class KnowledgeGraphService:
    """Builds, prunes and queries learner knowledge graphs.

    Example:
        >>> service = KnowledgeGraphService(store, GraphGenerator(LLMGraphExtractor()))
        >>> result = await service.ingest_document("u-1", "doc-1", chunks)
        >>> result.nodes_added
        12
    """

    def __init__(
        self,
        store: LearningStore,
        generator: Optional[GraphGenerator] = None,
    ):
        self._store = store
        self._generator = generator

    async def get_graph(self, user_id: str) -> KnowledgeGraph:
        return await self._store.get_knowledge_graph(user_id)

    async def merge_into_user_graph(
        self,
        user_id: str,
        incoming: KnowledgeGraph,
        file_id: str,
    ) -> GraphMergeResult:
        """Merge a document graph into the learner's graph atomically.

        Returns:
            Counts of added and updated nodes and edges.
        """
        outcome: GraphMergeResult = GraphMergeResult()

        def mutate(current: KnowledgeGraph) -> KnowledgeGraph:
            nonlocal outcome
            merged, outcome = merge_graph(current, incoming, file_id)
            return merged

        merged = await self._store.update_knowledge_graph(user_id, mutate)
        logger.info(
            "Merged file %s into graph of user %s: +%d nodes, +%d edges (total %d/%d)",
            file_id,
            user_id,
            outcome.nodes_added,
            outcome.edges_added,
            len(merged.nodes),
            len(merged.edges),
        )
        return outcome

    async def ingest_document(
        self,
        user_id: str,
        file_id: str,
        chunks: Sequence[TextChunk],
    ) -> GraphMergeResult:
        """Generate a document's graph from its chunks and merge it in.

        Raises:
            RuntimeError: If the service was built without a generator.
        """
        if self._generator is None:
            raise RuntimeError("KnowledgeGraphService has no graph generator configured")
        document_graph = await self._generator.generate_from_chunks(chunks, file_id)
        return await self.merge_into_user_graph(user_id, document_graph, file_id)

    async def remove_file(self, user_id: str, file_id: str) -> KnowledgeGraph:
        """Remove a deleted document's contribution from the learner's graph."""
        return await self._store.update_knowledge_graph(
            user_id, lambda graph: remove_file_from_graph(graph, file_id)
        )

    async def validate(self, user_id: str) -> GraphValidation:
        return validate_graph(await self.get_graph(user_id))

    async def stats(self, user_id: str) -> GraphStats:
        return graph_stats(await self.get_graph(user_id))

    async def related(self, user_id: str, node_id: str, max_depth: int = 2) -> list[GraphNode]:
        return find_related_nodes(await self.get_graph(user_id), node_id, max_depth)

    async def search(self, user_id: str, query: str, limit: int = 10) -> list[GraphNode]:
        return search_nodes(await self.get_graph(user_id), query, limit)
