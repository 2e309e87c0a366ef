# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Knowledge graph data model.

A learner's knowledge graph is a set of concept nodes connected by typed
edges. Node and edge constructors enforce the per-item invariants (normalized
ids, no self loops, bounded weights); graph-level invariants (unique ids,
edges between existing nodes) are guaranteed by merge_graph() and reported
by validate_graph().

Raw payloads coming from the extraction model are untrusted; they enter the
domain through KnowledgeGraph.from_raw(), which drops malformed items with a
warning instead of failing the whole chunk.
"""

import logging
import re
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_INVALID_CHARS_RE = re.compile(r"[^a-z0-9_]")
_REPEATED_UNDERSCORE_RE = re.compile(r"_+")


def normalize_id(value: str) -> str:
    """Normalize a node id to lowercase snake case.

    Lowercases, converts whitespace runs to underscores, strips everything
    outside ``[a-z0-9_]``, collapses repeated underscores and trims leading
    and trailing ones. The function is idempotent.

    Args:
        value: Raw id or label.

    Returns:
        Normalized id (may be empty if nothing usable remains).

    Example:
        >>> normalize_id("  Cell Division! ")
        'cell_division'
    """
    normalized = value.lower().strip()
    normalized = _WHITESPACE_RE.sub("_", normalized)
    normalized = _INVALID_CHARS_RE.sub("", normalized)
    normalized = _REPEATED_UNDERSCORE_RE.sub("_", normalized)
    return normalized.strip("_")


def unique_ordered(values: Iterable[str]) -> list[str]:
    """Deduplicate values keeping first-seen order."""
    return list(dict.fromkeys(values))


class GraphNodeType(str, Enum):
    """Kinds of knowledge a node can represent."""

    CONCEPT = "concept"
    PROCESS = "process"
    DETAIL = "detail"
    EXAMPLE = "example"
    TERM = "term"
    DEFINITION = "definition"
    FACT = "fact"


class LearningRelationType(str, Enum):
    """Learning relationship carried by an edge, used for mastery propagation."""

    PREREQUISITE = "prerequisite"  # Must know source before target
    COREQUISITE = "corequisite"  # Often learned together
    APPLICATION = "application"  # Target applies source concept
    EXAMPLE = "example"  # Target is example of source
    OPPOSITE = "opposite"  # Contrasting concepts
    RELATED = "related"  # General relation


class GraphNode(BaseModel):
    """A learnable unit in the knowledge graph.

    Attributes:
        id: Normalized identifier, unique within a graph.
        label: Human-readable name.
        type: Kind of knowledge.
        description: Optional short description.
        importance: Optional relative importance 0-1.
        file_ids: Source documents that mention this node (set semantics).
    """

    id: str
    label: str
    type: GraphNodeType = GraphNodeType.CONCEPT
    description: str | None = None
    importance: float | None = Field(default=None, ge=0.0, le=1.0)
    file_ids: list[str] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("node id must be a string")
        normalized = normalize_id(value)
        if not normalized:
            raise ValueError(f"node id {value!r} is empty after normalization")
        return normalized

    @field_validator("file_ids")
    @classmethod
    def _dedupe_file_ids(cls, value: list[str]) -> list[str]:
        return unique_ordered(value)


class GraphEdge(BaseModel):
    """A directed, typed relation between two nodes.

    The (source, target, relation) triple identifies the edge; relation is
    compared case-insensitively.

    Attributes:
        source: Normalized id of the source node.
        target: Normalized id of the target node.
        relation: Free-text relation label ("is a", "requires", ...).
        sources: Documents contributing this edge (set semantics).
        weight: Optional edge weight.
        learning_relation: Optional learning relationship type.
        propagation_weight: Optional fraction of mastery change that flows
            across this edge.
    """

    source: str
    target: str
    relation: str = "relates to"
    sources: list[str] = Field(default_factory=list)
    weight: float | None = None
    learning_relation: LearningRelationType | None = None
    propagation_weight: float | None = Field(default=None, ge=0.0, le=1.0)

    @field_validator("source", "target", mode="before")
    @classmethod
    def _normalize_endpoint(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("edge endpoint must be a string")
        normalized = normalize_id(value)
        if not normalized:
            raise ValueError(f"edge endpoint {value!r} is empty after normalization")
        return normalized

    @field_validator("relation")
    @classmethod
    def _strip_relation(cls, value: str) -> str:
        relation = value.strip()
        if not relation:
            raise ValueError("edge relation must not be empty")
        return relation

    @field_validator("sources")
    @classmethod
    def _dedupe_sources(cls, value: list[str]) -> list[str]:
        return unique_ordered(value)

    @model_validator(mode="after")
    def _reject_self_loop(self) -> "GraphEdge":
        if self.source == self.target:
            raise ValueError(f"self-referencing edge on {self.source!r}")
        return self

    @property
    def key(self) -> tuple[str, str, str]:
        """Identity triple used for deduplication."""
        return (self.source, self.target, self.relation.lower())


class KnowledgeGraph(BaseModel):
    """A learner's (or a document chunk's) knowledge graph."""

    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)

    @property
    def node_ids(self) -> set[str]:
        """Ids of all nodes in the graph."""
        return {node.id for node in self.nodes}

    @property
    def is_empty(self) -> bool:
        """True when the graph has neither nodes nor edges."""
        return not self.nodes and not self.edges

    def get_node(self, node_id: str) -> GraphNode | None:
        """Look up a node by (raw or normalized) id."""
        normalized = normalize_id(node_id)
        for node in self.nodes:
            if node.id == normalized:
                return node
        return None

    @classmethod
    def from_raw(
        cls,
        payload: Mapping[str, Any],
        file_id: str | None = None,
    ) -> "KnowledgeGraph":
        """Build a graph from an untrusted payload.

        Malformed nodes and edges (missing fields, empty ids, self loops,
        out-of-range weights) are dropped and logged. Duplicate nodes and
        dangling edges are kept here; merge_graph() resolves them.

        Args:
            payload: Mapping with "nodes" and "edges" lists.
            file_id: Optional document id stamped onto every node and edge.

        Returns:
            A KnowledgeGraph containing only well-formed items.
        """
        nodes: list[GraphNode] = []
        for raw_node in payload.get("nodes") or []:
            if not isinstance(raw_node, Mapping):
                logger.warning("Dropping non-object node: %r", raw_node)
                continue
            data = dict(raw_node)
            data.setdefault("label", data.get("id"))
            if file_id is not None:
                data["file_ids"] = [*(data.get("file_ids") or []), file_id]
            try:
                nodes.append(GraphNode.model_validate(data))
            except ValidationError as e:
                logger.warning("Dropping malformed node %r: %s", raw_node.get("id"), e)

        edges: list[GraphEdge] = []
        for raw_edge in payload.get("edges") or []:
            if not isinstance(raw_edge, Mapping):
                logger.warning("Dropping non-object edge: %r", raw_edge)
                continue
            data = dict(raw_edge)
            if file_id is not None:
                data["sources"] = [*(data.get("sources") or []), file_id]
            try:
                edges.append(GraphEdge.model_validate(data))
            except ValidationError as e:
                logger.warning(
                    "Dropping malformed edge %r -> %r: %s",
                    raw_edge.get("source"),
                    raw_edge.get("target"),
                    e,
                )

        return cls(nodes=nodes, edges=edges)


class GraphMergeResult(BaseModel):
    """Counters describing what a merge changed."""

    nodes_added: int = 0
    nodes_updated: int = 0
    edges_added: int = 0
    edges_updated: int = 0
    edges_skipped: int = 0


class GraphValidation(BaseModel):
    """Outcome of validate_graph()."""

    valid: bool
    errors: list[str] = Field(default_factory=list)


class ConnectedNode(BaseModel):
    """A node with its connection count, used in graph statistics."""

    id: str
    label: str
    connections: int


class GraphStats(BaseModel):
    """Summary statistics for a knowledge graph."""

    total_nodes: int
    total_edges: int
    nodes_by_type: dict[str, int] = Field(default_factory=dict)
    average_connections: float = 0.0
    most_connected_nodes: list[ConnectedNode] = Field(default_factory=list)
