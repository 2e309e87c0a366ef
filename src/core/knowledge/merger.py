# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Knowledge graph merge, validation and query algorithms.

All functions here are pure: they never mutate their inputs and return new
KnowledgeGraph instances. Node ids are normalized at model construction, so
"Cell Division" and "cell_division" collapse to the same node.

Example:
    >>> graph, result = merge_graph(existing, chunk_graph, file_id="doc-1")
    >>> result.nodes_added
    3
"""

import logging
from collections import Counter, deque
from collections.abc import Mapping
from typing import Any

from src.core.knowledge.models import (
    ConnectedNode,
    GraphEdge,
    GraphMergeResult,
    GraphNode,
    GraphStats,
    GraphValidation,
    KnowledgeGraph,
    normalize_id,
    unique_ordered,
)

logger = logging.getLogger(__name__)

MOST_CONNECTED_LIMIT = 10


def _longer(current: str | None, candidate: str | None) -> str | None:
    if candidate and len(candidate) > len(current or ""):
        return candidate
    return current


def merge_graph(
    existing: KnowledgeGraph,
    incoming: KnowledgeGraph | Mapping[str, Any],
    file_id: str,
) -> tuple[KnowledgeGraph, GraphMergeResult]:
    """Merge an incoming graph into an existing one.

    Nodes are matched by normalized id. A matching node gains the incoming
    file ids (and file_id) and keeps the longer description; a new node is
    inserted tagged with file_id. Edges are matched by
    (source, target, relation.lower()); a matching edge gains the incoming
    sources. A new edge is inserted only when both endpoints exist in the
    merged node set, otherwise it is dropped and logged.

    Args:
        existing: The learner's current graph.
        incoming: Graph extracted from a document, or its raw payload.
        file_id: Document the incoming graph was extracted from.

    Returns:
        Tuple of (merged graph, merge counters).
    """
    if not isinstance(incoming, KnowledgeGraph):
        incoming = KnowledgeGraph.from_raw(incoming)

    result = GraphMergeResult()

    nodes: dict[str, GraphNode] = {}
    for node in existing.nodes:
        if node.id in nodes:
            nodes[node.id] = _merge_node(nodes[node.id], node, None)
        else:
            nodes[node.id] = node.model_copy(deep=True)

    for node in incoming.nodes:
        if node.id in nodes:
            nodes[node.id] = _merge_node(nodes[node.id], node, file_id)
            result.nodes_updated += 1
        else:
            nodes[node.id] = node.model_copy(
                update={"file_ids": unique_ordered([*node.file_ids, file_id])},
                deep=True,
            )
            result.nodes_added += 1

    edges: dict[tuple[str, str, str], GraphEdge] = {}
    for edge in existing.edges:
        if edge.source not in nodes or edge.target not in nodes:
            logger.warning(
                "Dropping existing edge with missing endpoint: %s -> %s",
                edge.source,
                edge.target,
            )
            continue
        if edge.key in edges:
            edges[edge.key] = _merge_edge(edges[edge.key], edge, None)
        else:
            edges[edge.key] = edge.model_copy(deep=True)

    for edge in incoming.edges:
        if edge.key in edges:
            edges[edge.key] = _merge_edge(edges[edge.key], edge, file_id)
            result.edges_updated += 1
        elif edge.source in nodes and edge.target in nodes:
            edges[edge.key] = edge.model_copy(
                update={"sources": unique_ordered([*edge.sources, file_id])},
                deep=True,
            )
            result.edges_added += 1
        else:
            logger.warning(
                "Skipping edge with missing endpoint: %s -> %s (%s)",
                edge.source,
                edge.target,
                edge.relation,
            )
            result.edges_skipped += 1

    merged = KnowledgeGraph(nodes=list(nodes.values()), edges=list(edges.values()))
    logger.debug(
        "Merged graph for file %s: +%d nodes, ~%d nodes, +%d edges, %d skipped",
        file_id,
        result.nodes_added,
        result.nodes_updated,
        result.edges_added,
        result.edges_skipped,
    )
    return merged, result


def _merge_node(current: GraphNode, other: GraphNode, file_id: str | None) -> GraphNode:
    file_ids = [*current.file_ids, *other.file_ids]
    if file_id is not None:
        file_ids.append(file_id)
    return current.model_copy(
        update={
            "file_ids": unique_ordered(file_ids),
            "description": _longer(current.description, other.description),
            "importance": current.importance if current.importance is not None else other.importance,
        }
    )


def _merge_edge(current: GraphEdge, other: GraphEdge, file_id: str | None) -> GraphEdge:
    sources = [*current.sources, *other.sources]
    if file_id is not None:
        sources.append(file_id)
    return current.model_copy(
        update={
            "sources": unique_ordered(sources),
            "learning_relation": current.learning_relation or other.learning_relation,
            "propagation_weight": (
                current.propagation_weight
                if current.propagation_weight is not None
                else other.propagation_weight
            ),
        }
    )


def validate_graph(graph: KnowledgeGraph) -> GraphValidation:
    """Check a graph's structural invariants.

    Reports duplicate node ids, edges whose endpoints are missing and
    self-referencing edges. Nothing is repaired.

    Args:
        graph: Graph to check.

    Returns:
        GraphValidation with valid flag and a list of error messages.
    """
    errors: list[str] = []
    seen: set[str] = set()

    for node in graph.nodes:
        if node.id in seen:
            errors.append(f"Duplicate node ID: {node.id}")
        seen.add(node.id)

    for edge in graph.edges:
        if edge.source not in seen:
            errors.append(f"Edge source not found: {edge.source}")
        if edge.target not in seen:
            errors.append(f"Edge target not found: {edge.target}")
        if edge.source == edge.target:
            errors.append(f"Self-referencing edge: {edge.source}")

    return GraphValidation(valid=not errors, errors=errors)


def remove_file_from_graph(graph: KnowledgeGraph, file_id: str) -> KnowledgeGraph:
    """Remove a document's contribution from a graph.

    The file is removed from every edge's sources and every node's
    file_ids. Edges left without sources are dropped. A node survives if it
    is still backed by another file or still has a connection.

    Args:
        graph: Graph to prune.
        file_id: Document being deleted.

    Returns:
        The pruned graph.
    """
    edges: list[GraphEdge] = []
    for edge in graph.edges:
        sources = [source for source in edge.sources if source != file_id]
        if sources:
            edges.append(edge.model_copy(update={"sources": sources}))

    connected: set[str] = set()
    for edge in edges:
        connected.add(edge.source)
        connected.add(edge.target)

    nodes: list[GraphNode] = []
    for node in graph.nodes:
        file_ids = [fid for fid in node.file_ids if fid != file_id]
        if file_ids or node.id in connected:
            nodes.append(node.model_copy(update={"file_ids": file_ids}))

    node_ids = {node.id for node in nodes}
    edges = [e for e in edges if e.source in node_ids and e.target in node_ids]

    logger.info(
        "Removed file %s from graph: %d -> %d nodes, %d -> %d edges",
        file_id,
        len(graph.nodes),
        len(nodes),
        len(graph.edges),
        len(edges),
    )
    return KnowledgeGraph(nodes=nodes, edges=edges)


def graph_stats(graph: KnowledgeGraph) -> GraphStats:
    """Compute node type counts and the most connected nodes."""
    nodes_by_type = Counter(node.type.value for node in graph.nodes)

    connections: Counter[str] = Counter()
    for edge in graph.edges:
        connections[edge.source] += 1
        connections[edge.target] += 1

    labels = {node.id: node.label for node in graph.nodes}
    most_connected = [
        ConnectedNode(id=node_id, label=labels[node_id], connections=count)
        for node_id, count in connections.most_common()
        if node_id in labels
    ][:MOST_CONNECTED_LIMIT]

    total_nodes = len(graph.nodes)
    return GraphStats(
        total_nodes=total_nodes,
        total_edges=len(graph.edges),
        nodes_by_type=dict(nodes_by_type),
        average_connections=(2 * len(graph.edges) / total_nodes) if total_nodes else 0.0,
        most_connected_nodes=most_connected,
    )


def find_related_nodes(
    graph: KnowledgeGraph,
    node_id: str,
    max_depth: int = 2,
) -> list[GraphNode]:
    """Breadth-first search for nodes within max_depth hops (either direction).

    The start node itself is not included.
    """
    start = normalize_id(node_id)
    adjacency: dict[str, set[str]] = {}
    for edge in graph.edges:
        adjacency.setdefault(edge.source, set()).add(edge.target)
        adjacency.setdefault(edge.target, set()).add(edge.source)

    visited = {start}
    queue = deque([(start, 0)])
    order: list[str] = []
    while queue:
        current, depth = queue.popleft()
        if depth >= max_depth:
            continue
        for neighbor in sorted(adjacency.get(current, ())):
            if neighbor not in visited:
                visited.add(neighbor)
                order.append(neighbor)
                queue.append((neighbor, depth + 1))

    by_id = {node.id: node for node in graph.nodes}
    return [by_id[nid] for nid in order if nid in by_id]


def search_nodes(graph: KnowledgeGraph, query: str, limit: int = 10) -> list[GraphNode]:
    """Rank nodes by how well their label, id or description match a query.

    Scoring: label contains query +10, exact label +20, id contains the
    underscored query +5, description contains query +3.
    """
    needle = query.strip().lower()
    if not needle:
        return []
    id_needle = "_".join(needle.split())

    scored: list[tuple[int, int, GraphNode]] = []
    for index, node in enumerate(graph.nodes):
        label = node.label.lower()
        score = 0
        if needle in label:
            score += 10
        if label == needle:
            score += 20
        if id_needle in node.id:
            score += 5
        if node.description and needle in node.description.lower():
            score += 3
        if score > 0:
            scored.append((score, index, node))

    scored.sort(key=lambda item: (-item[0], item[1]))
    return [node for _, _, node in scored[:limit]]
