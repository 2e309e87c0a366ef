# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Knowledge graph generation from document chunks.

A GraphExtractor turns one chunk of study material into a candidate graph.
GraphGenerator runs the extractor over all chunks of a document one at a
time, with a short pause between chunks to stay under provider rate limits,
and folds the results together with merge_graph(). A chunk that fails is
logged and skipped; the rest of the document still contributes.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

from src.core.config.settings import GraphSettings, get_settings
from src.core.intelligence.llm import LLMClient, LLMError
from src.core.knowledge.merger import merge_graph
from src.core.knowledge.models import GraphNodeType, KnowledgeGraph
from src.core.learning.exceptions import GraphExtractionError

logger = logging.getLogger(__name__)

_NODE_TYPES = ", ".join(f'"{t.value}"' for t in GraphNodeType)

GRAPH_SYSTEM_PROMPT = f"""You analyze study material and extract a knowledge graph.
Respond with a single JSON object of the form
{{"nodes": [{{"id": str, "label": str, "type": str, "description": str}}],
 "edges": [{{"source": str, "target": str, "relation": str}}]}}.

Rules:
1. Node ids are lowercase with underscores (e.g. "cell_division").
2. Keep nodes focused on key concepts, terms and important details.
3. Node type is one of {_NODE_TYPES}.
4. Limit the graph to {{max_nodes}} nodes.
5. Every edge connects two nodes you listed.
6. Use descriptive relations such as "is a", "includes", "causes",
   "requires", "leads to", "part of", "example of".
"""


@dataclass
class TextChunk:
    """A chunk of a source document.

    Attributes:
        id: Chunk identifier.
        content: Chunk text.
    """

    id: str
    content: str


class GraphExtractor(ABC):
    """Turns a chunk of text into a candidate knowledge graph."""

    @abstractmethod
    async def extract_graph(self, text: str, file_id: str) -> KnowledgeGraph:
        """Extract a graph from text.

        Args:
            text: Chunk content.
            file_id: Document the chunk belongs to.

        Returns:
            Candidate graph whose nodes and edges are tagged with file_id.

        Raises:
            GraphExtractionError: If extraction fails.
        """


class LLMGraphExtractor(GraphExtractor):
    """GraphExtractor backed by a JSON-mode LLM completion."""

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        max_nodes: Optional[int] = None,
    ):
        self._llm = llm_client or LLMClient()
        self._max_nodes = max_nodes or get_settings().graph.max_nodes_per_chunk

    async def extract_graph(self, text: str, file_id: str) -> KnowledgeGraph:
        logger.info(
            "Generating knowledge graph from text: file_id=%s, text_length=%d",
            file_id,
            len(text),
        )
        try:
            payload = await self._llm.complete_json(
                prompt=f"TEXT:\n{text}",
                system_prompt=GRAPH_SYSTEM_PROMPT.replace("{max_nodes}", str(self._max_nodes)),
            )
        except LLMError as e:
            raise GraphExtractionError(f"Graph extraction failed for file {file_id}", e) from e

        graph = KnowledgeGraph.from_raw(payload, file_id=file_id)
        node_ids = graph.node_ids
        edges = [e for e in graph.edges if e.source in node_ids and e.target in node_ids]
        if len(edges) != len(graph.edges):
            logger.warning(
                "Filtered %d edges with unknown endpoints from file %s",
                len(graph.edges) - len(edges),
                file_id,
            )

        logger.info(
            "Knowledge graph generated: file_id=%s, nodes=%d, edges=%d",
            file_id,
            len(graph.nodes),
            len(edges),
        )
        return KnowledgeGraph(nodes=graph.nodes, edges=edges)


class GraphGenerator:
    """Builds a document graph by extracting and merging chunk graphs.

    Example:
        >>> generator = GraphGenerator(LLMGraphExtractor())
        >>> graph = await generator.generate_from_chunks(chunks, file_id="doc-1")
    """

    def __init__(
        self,
        extractor: GraphExtractor,
        settings: Optional[GraphSettings] = None,
    ):
        self._extractor = extractor
        self._settings = settings or get_settings().graph

    async def generate_from_text(self, text: str, file_id: str) -> KnowledgeGraph:
        """Extract the graph of a single text, normalized through a merge."""
        chunk_graph = await self._extractor.extract_graph(text, file_id)
        graph, _ = merge_graph(KnowledgeGraph(), chunk_graph, file_id)
        return graph

    async def generate_from_chunks(
        self,
        chunks: Sequence[TextChunk],
        file_id: str,
    ) -> KnowledgeGraph:
        """Generate one deduplicated graph from a document's chunks.

        Chunks are processed sequentially with chunk_delay_seconds between
        them. Failed chunks are skipped.

        Args:
            chunks: Document chunks in order.
            file_id: Document id attached to all nodes and edges.

        Returns:
            Merged graph for the whole document.
        """
        logger.info(
            "Generating knowledge graph from chunks: file_id=%s, chunks=%d",
            file_id,
            len(chunks),
        )
        graph = KnowledgeGraph()
        failed = 0

        for index, chunk in enumerate(chunks):
            logger.info("Processing chunk %d/%d (%s)", index + 1, len(chunks), chunk.id)
            try:
                chunk_graph = await self._extractor.extract_graph(chunk.content, file_id)
                graph, _ = merge_graph(graph, chunk_graph, file_id)
            except Exception as e:
                failed += 1
                logger.error("Failed to process chunk %d of file %s: %s", index + 1, file_id, e)

            if index < len(chunks) - 1 and self._settings.chunk_delay_seconds > 0:
                await asyncio.sleep(self._settings.chunk_delay_seconds)

        logger.info(
            "Combined knowledge graph: file_id=%s, nodes=%d, edges=%d, failed_chunks=%d",
            file_id,
            len(graph.nodes),
            len(graph.edges),
            failed,
        )
        return graph
