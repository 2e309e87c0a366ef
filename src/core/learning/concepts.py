# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Concept extraction from conversational turns.

The default extractor is deterministic: it matches the labels of the
learner's knowledge graph against the text on word boundaries, longest
labels first so specific concepts survive the max_concepts cut. Each
match is scored from the node type, label length and nearby learning
vocabulary.
"""

import logging
import re
import time
from abc import ABC, abstractmethod

from src.core.knowledge.models import GraphNodeType, KnowledgeGraph
from src.core.learning.exceptions import ConceptExtractionError
from src.core.learning.models import ExtractedConcept
from src.infrastructure.storage.base import LearningStore

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.5
DEFAULT_MAX_CONCEPTS = 20
MIN_LABEL_LENGTH = 3
MIN_TEXT_LENGTH = 20
CONTEXT_WINDOW = 50

BASE_CONFIDENCE = 0.5
EXACT_MATCH_BONUS = 0.3
LONG_LABEL_BONUS = 0.05
LONG_LABEL_LENGTH = 10
CONTEXT_BONUS = 0.05

# Concepts matter more than examples
NODE_TYPE_WEIGHTS: dict[GraphNodeType, float] = {
    GraphNodeType.CONCEPT: 0.15,
    GraphNodeType.PROCESS: 0.1,
    GraphNodeType.TERM: 0.1,
    GraphNodeType.DEFINITION: 0.05,
    GraphNodeType.FACT: 0.05,
    GraphNodeType.DETAIL: 0.03,
    GraphNodeType.EXAMPLE: 0.02,
}

LEARNING_CONTEXT_WORDS = frozenset({"learn", "understand", "explain", "how", "what", "why"})

_PUNCTUATION_RE = re.compile(r"[^\w\s-]")
_WHITESPACE_RE = re.compile(r"\s+")
_SMALL_TALK_PATTERNS = (
    re.compile(r"^(hi|hello|hey|thanks|thank you|ok|okay|yes|no|sure|great)[\s!.]*$", re.IGNORECASE),
    re.compile(r"^(how are you|what's up|good morning|good night)[\s!.?]*$", re.IGNORECASE),
)
_BOUNDARY_CHARS = (" ", "-")


def normalize_text(text: str) -> str:
    """Lowercase, replace punctuation with spaces and collapse whitespace."""
    text = _PUNCTUATION_RE.sub(" ", text.lower())
    return _WHITESPACE_RE.sub(" ", text).strip()


def _context_words(text: str, position: int) -> list[str]:
    window = text[max(0, position - CONTEXT_WINDOW) : position + CONTEXT_WINDOW]
    return [word for word in window.split() if len(word) > 2]


def score_match(
    normalized_label: str,
    label: str,
    node_type: GraphNodeType,
    context_words: list[str],
) -> float:
    """Score a label match found in text.

    Args:
        normalized_label: The label as it was matched in normalized text.
        label: The node's original label.
        node_type: The node's type.
        context_words: Words around the match.

    Returns:
        Confidence in [0, 1].
    """
    confidence = BASE_CONFIDENCE
    if normalized_label == label.lower():
        confidence += EXACT_MATCH_BONUS
    confidence += NODE_TYPE_WEIGHTS.get(node_type, 0.0)
    if len(label) > LONG_LABEL_LENGTH:
        confidence += LONG_LABEL_BONUS
    if any(word in LEARNING_CONTEXT_WORDS for word in context_words):
        confidence += CONTEXT_BONUS
    return min(1.0, confidence)


def match_concepts(
    text: str,
    graph: KnowledgeGraph,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    max_concepts: int = DEFAULT_MAX_CONCEPTS,
) -> list[ExtractedConcept]:
    """Find graph concepts mentioned in text.

    Each node is reported at most once, at its first qualifying occurrence.

    Returns:
        Matches sorted by confidence, highest first, at most max_concepts.
    """
    normalized = normalize_text(text)
    if not normalized or not graph.nodes:
        return []

    concepts: list[ExtractedConcept] = []
    seen: set[str] = set()

    for node in sorted(graph.nodes, key=lambda n: len(n.label), reverse=True):
        if node.id in seen or len(node.label) < MIN_LABEL_LENGTH:
            continue
        label = normalize_text(node.label)
        if not label:
            continue

        position = normalized.find(label)
        while position != -1:
            end = position + len(label)
            before = normalized[position - 1] if position > 0 else " "
            after = normalized[end] if end < len(normalized) else " "
            if before in _BOUNDARY_CHARS and after in _BOUNDARY_CHARS:
                confidence = score_match(
                    label, node.label, node.type, _context_words(normalized, position)
                )
                if confidence >= min_confidence:
                    concepts.append(
                        ExtractedConcept(
                            concept_id=node.id,
                            label=node.label,
                            confidence=confidence,
                            node_type=node.type,
                            matched_text=label,
                            position=position,
                        )
                    )
                    seen.add(node.id)
                    break
            position = normalized.find(label, position + 1)

        if len(concepts) >= max_concepts:
            break

    concepts.sort(key=lambda c: c.confidence, reverse=True)
    return concepts[:max_concepts]


def merge_extracted(*groups: list[ExtractedConcept]) -> list[ExtractedConcept]:
    """Deduplicate concepts across groups, keeping the most confident match."""
    best: dict[str, ExtractedConcept] = {}
    for group in groups:
        for concept in group:
            current = best.get(concept.concept_id)
            if current is None or concept.confidence > current.confidence:
                best[concept.concept_id] = concept
    return sorted(best.values(), key=lambda c: c.confidence, reverse=True)


def is_small_talk(text: str) -> bool:
    """True for short messages and greetings that cannot carry a concept."""
    if len(text) < MIN_TEXT_LENGTH:
        return True
    stripped = text.strip()
    return any(pattern.match(stripped) for pattern in _SMALL_TALK_PATTERNS)


class ConceptExtractor(ABC):
    """Finds the concepts a conversational turn is about."""

    @abstractmethod
    async def extract_concepts(
        self,
        user_id: str,
        user_message: str,
        assistant_response: str,
        max_concepts: int = DEFAULT_MAX_CONCEPTS,
    ) -> list[ExtractedConcept]:
        """Extract concepts from both sides of a turn.

        Returns:
            Concepts sorted by confidence, highest first.

        Raises:
            ConceptExtractionError: If extraction fails.
        """

    @abstractmethod
    async def might_contain_concepts(self, user_id: str, text: str) -> bool:
        """Cheap pre-filter run before extract_concepts()."""


class GraphConceptExtractor(ConceptExtractor):
    """ConceptExtractor matching text against the learner's knowledge graph.

    Example:
        >>> extractor = GraphConceptExtractor(store)
        >>> await extractor.extract_concepts("u-1", "What is mitosis?", "Mitosis is...")
    """

    def __init__(
        self,
        store: LearningStore,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    ):
        self._store = store
        self._min_confidence = min_confidence

    async def _load_graph(self, user_id: str) -> KnowledgeGraph:
        try:
            return await self._store.get_knowledge_graph(user_id)
        except Exception as e:
            raise ConceptExtractionError(f"Failed to load knowledge graph for {user_id}", e) from e

    async def extract_concepts(
        self,
        user_id: str,
        user_message: str,
        assistant_response: str,
        max_concepts: int = DEFAULT_MAX_CONCEPTS,
    ) -> list[ExtractedConcept]:
        start = time.perf_counter()
        graph = await self._load_graph(user_id)
        if not graph.nodes:
            logger.info("No knowledge graph found for concept extraction: user_id=%s", user_id)
            return []

        concepts = merge_extracted(
            match_concepts(user_message, graph, self._min_confidence, max_concepts),
            match_concepts(assistant_response, graph, self._min_confidence, max_concepts),
        )[:max_concepts]

        logger.info(
            "Concept extraction completed: user_id=%s, concepts=%d, time=%.1fms",
            user_id,
            len(concepts),
            (time.perf_counter() - start) * 1000,
        )
        return concepts

    async def might_contain_concepts(self, user_id: str, text: str) -> bool:
        if is_small_talk(text):
            return False
        try:
            graph = await self._load_graph(user_id)
        except ConceptExtractionError as e:
            logger.warning("Concept pre-filter could not load graph: %s", e)
            return False
        return bool(graph.nodes)

