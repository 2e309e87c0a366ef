# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Knowledge graph model and merge algorithm.

Graph generation and the per-learner service live in
src.core.knowledge.generator and src.core.knowledge.service.
"""

from src.core.knowledge.merger import (
    find_related_nodes,
    graph_stats,
    merge_graph,
    remove_file_from_graph,
    search_nodes,
    validate_graph,
)
from src.core.knowledge.models import (
    GraphEdge,
    GraphMergeResult,
    GraphNode,
    GraphNodeType,
    GraphStats,
    GraphValidation,
    KnowledgeGraph,
    LearningRelationType,
    normalize_id,
)

__all__ = [
    # Models
    "GraphEdge",
    "GraphMergeResult",
    "GraphNode",
    "GraphNodeType",
    "GraphStats",
    "GraphValidation",
    "KnowledgeGraph",
    "LearningRelationType",
    "normalize_id",
    # Operations
    "find_related_nodes",
    "graph_stats",
    "merge_graph",
    "remove_file_from_graph",
    "search_nodes",
    "validate_graph",
]
