# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Mastery propagation along knowledge graph edges.

When a learner improves on a concept, neighbouring concepts get a small
share of the gain:

- a concept's prerequisites (incoming edges) get the full relation weight,
  since understanding the target shows the basis is there;
- concepts that build on it (outgoing edges) get half the weight unless the
  edge sets its own propagation weight.

Only gains propagate, and only one hop. The same graph relations drive
prerequisite checks and learning path suggestions.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from src.core.knowledge.models import GraphEdge, KnowledgeGraph, LearningRelationType
from src.core.learning.decay import with_effective_mastery
from src.core.learning.models import ConceptMastery
from src.infrastructure.storage.base import LearningStore, StorageError
from src.utils.datetime import ensure_utc, utc_now

logger = logging.getLogger(__name__)

PROPAGATION_WEIGHTS: dict[LearningRelationType, float] = {
    LearningRelationType.PREREQUISITE: 0.1,
    LearningRelationType.COREQUISITE: 0.05,
    LearningRelationType.APPLICATION: 0.02,
    LearningRelationType.EXAMPLE: 0.01,
    LearningRelationType.OPPOSITE: 0.0,
    LearningRelationType.RELATED: 0.03,
}
OUTGOING_WEIGHT_FACTOR = 0.5
MIN_PROPAGATED_CHANGE = 0.001
DEFAULT_WEAKNESS_THRESHOLD = 0.5

_RELATION_KEYWORDS: tuple[tuple[LearningRelationType, tuple[str, ...]], ...] = (
    (LearningRelationType.PREREQUISITE, ("prerequisite", "requires", "depends")),
    (LearningRelationType.EXAMPLE, ("example", "instance")),
    (LearningRelationType.APPLICATION, ("applies", "uses", "application")),
    (LearningRelationType.OPPOSITE, ("opposite", "contrast")),
    (LearningRelationType.COREQUISITE, ("similar", "related")),
)


@dataclass
class PropagatedChange:
    """Mastery change applied to a neighbouring concept."""

    concept_id: str
    previous_mastery: float
    new_mastery: float
    source_concept_id: str
    relation: LearningRelationType


@dataclass
class PropagationResult:
    """Outcome of propagate_mastery()."""

    source_concept_id: str
    source_change: float
    propagated: list[PropagatedChange] = field(default_factory=list)

    @property
    def total_affected(self) -> int:
        return len(self.propagated)


@dataclass
class PrerequisiteStatus:
    """Mastery of one prerequisite of a concept."""

    concept_id: str
    label: str
    mastery: float
    effective_mastery: float
    is_weak: bool
    recommendation: Optional[str] = None


@dataclass
class PrerequisiteCheck:
    """Outcome of check_prerequisites()."""

    concept_id: str
    label: str
    prerequisites: list[PrerequisiteStatus] = field(default_factory=list)

    @property
    def weak_prerequisites(self) -> list[str]:
        return [p.concept_id for p in self.prerequisites if p.is_weak]

    @property
    def all_prerequisites_met(self) -> bool:
        return not self.weak_prerequisites


@dataclass
class LearningPathStep:
    """A suggested next concept to study."""

    concept_id: str
    label: str
    current_mastery: float
    reason: str
    priority: float


def infer_learning_relation(edge: GraphEdge) -> LearningRelationType:
    """Return the edge's learning relation, inferring it from the relation text if unset."""
    if edge.learning_relation is not None:
        return edge.learning_relation
    relation = edge.relation.lower()
    for relation_type, keywords in _RELATION_KEYWORDS:
        if any(keyword in relation for keyword in keywords):
            return relation_type
    return LearningRelationType.RELATED


def _edge_weight(edge: GraphEdge, incoming: bool) -> float:
    if edge.propagation_weight is not None:
        return edge.propagation_weight
    weight = PROPAGATION_WEIGHTS[infer_learning_relation(edge)]
    return weight if incoming else weight * OUTGOING_WEIGHT_FACTOR


async def propagate_mastery(
    store: LearningStore,
    user_id: str,
    concept_id: str,
    mastery_change: float,
    graph: Optional[KnowledgeGraph] = None,
    now: Optional[datetime] = None,
) -> PropagationResult:
    """Spread a concept's mastery gain to its direct neighbours.

    Neighbours without a record get one created if they exist in the graph.
    Changes below 0.001 are not written. A failed neighbour update is logged
    and skipped.

    Args:
        store: Learner state store.
        user_id: Learner id.
        concept_id: Concept whose mastery changed.
        mastery_change: Change applied to the source concept.
        graph: Learner graph (loaded from the store if omitted).
        now: Update time (defaults to the current UTC time).

    Returns:
        PropagationResult listing the neighbours that changed.
    """
    result = PropagationResult(source_concept_id=concept_id, source_change=mastery_change)
    if mastery_change <= 0:
        return result

    graph = graph if graph is not None else await store.get_knowledge_graph(user_id)
    node_ids = graph.node_ids
    now = ensure_utc(now) if now else utc_now()
    visited = {concept_id}

    targets: list[tuple[str, float, LearningRelationType]] = []
    for edge in graph.edges:
        if edge.target == concept_id:
            neighbour, incoming = edge.source, True
        elif edge.source == concept_id:
            neighbour, incoming = edge.target, False
        else:
            continue
        if neighbour in visited or neighbour not in node_ids:
            continue
        visited.add(neighbour)
        weight = _edge_weight(edge, incoming)
        if weight > 0:
            targets.append((neighbour, mastery_change * weight, infer_learning_relation(edge)))

    for neighbour, change, relation in targets:
        if abs(change) < MIN_PROPAGATED_CHANGE:
            continue
        applied: Optional[PropagatedChange] = None

        def mutate(current: Optional[ConceptMastery]) -> ConceptMastery:
            nonlocal applied
            mastery = current or ConceptMastery.new(neighbour, now)
            new_score = round(max(0.0, min(1.0, mastery.mastery_score + change)), 3)
            if abs(new_score - mastery.mastery_score) < MIN_PROPAGATED_CHANGE:
                applied = None
                return mastery
            applied = PropagatedChange(
                concept_id=neighbour,
                previous_mastery=mastery.mastery_score,
                new_mastery=new_score,
                source_concept_id=concept_id,
                relation=relation,
            )
            return mastery.model_copy(update={"mastery_score": new_score})

        try:
            await store.update_concept_mastery(user_id, neighbour, mutate)
        except StorageError as e:
            logger.warning("Failed to propagate mastery to %s: %s", neighbour, e)
            continue
        if applied is not None:
            result.propagated.append(applied)

    logger.info(
        "Mastery propagation completed: user_id=%s, source=%s, change=%.3f, affected=%d",
        user_id,
        concept_id,
        mastery_change,
        result.total_affected,
    )
    return result


async def check_prerequisites(
    store: LearningStore,
    user_id: str,
    concept_id: str,
    weakness_threshold: float = DEFAULT_WEAKNESS_THRESHOLD,
    now: Optional[datetime] = None,
) -> PrerequisiteCheck:
    """Report the prerequisites of a concept and which of them are weak.

    A prerequisite is the source of an incoming edge whose learning relation
    is "prerequisite". It is weak when its effective mastery is below
    weakness_threshold (a prerequisite never studied counts as 0).
    """
    graph = await store.get_knowledge_graph(user_id)
    node = graph.get_node(concept_id)
    if node is None:
        return PrerequisiteCheck(concept_id=concept_id, label=concept_id)

    now = ensure_utc(now) if now else utc_now()
    check = PrerequisiteCheck(concept_id=node.id, label=node.label)
    for edge in graph.edges:
        if edge.target != node.id:
            continue
        if infer_learning_relation(edge) is not LearningRelationType.PREREQUISITE:
            continue
        prereq = graph.get_node(edge.source)
        if prereq is None:
            continue

        mastery = await store.get_concept_mastery(user_id, prereq.id)
        raw = mastery.mastery_score if mastery else 0.0
        effective = with_effective_mastery(mastery, now).effective_mastery if mastery else 0.0
        is_weak = effective < weakness_threshold
        check.prerequisites.append(
            PrerequisiteStatus(
                concept_id=prereq.id,
                label=prereq.label,
                mastery=raw,
                effective_mastery=effective,
                is_weak=is_weak,
                recommendation=(
                    f'Review "{prereq.label}" before learning "{node.label}"' if is_weak else None
                ),
            )
        )
    return check


async def suggest_learning_path(
    store: LearningStore,
    user_id: str,
    target_concept_id: Optional[str] = None,
    max_suggestions: int = 5,
    now: Optional[datetime] = None,
) -> list[LearningPathStep]:
    """Suggest what to study next.

    With a target concept: its weak prerequisites, then the target itself.
    Without: concepts under 0.5 effective mastery and concepts due for
    review. Suggestions are ordered by priority, highest first.
    """
    now = ensure_utc(now) if now else utc_now()
    graph = await store.get_knowledge_graph(user_id)
    if not graph.nodes:
        return []

    steps: list[LearningPathStep] = []
    if target_concept_id is not None:
        check = await check_prerequisites(store, user_id, target_concept_id, now=now)
        for prereq in check.prerequisites:
            if prereq.is_weak:
                steps.append(
                    LearningPathStep(
                        concept_id=prereq.concept_id,
                        label=prereq.label,
                        current_mastery=prereq.effective_mastery,
                        reason=f'Prerequisite for "{check.label}"',
                        priority=1.0 - prereq.effective_mastery,
                    )
                )
        target = graph.get_node(target_concept_id)
        if target is not None:
            mastery = await store.get_concept_mastery(user_id, target.id)
            steps.append(
                LearningPathStep(
                    concept_id=target.id,
                    label=target.label,
                    current_mastery=(
                        with_effective_mastery(mastery, now).effective_mastery if mastery else 0.0
                    ),
                    reason="Target concept",
                    priority=0.9,
                )
            )
    else:
        for node in graph.nodes:
            mastery = await store.get_concept_mastery(user_id, node.id)
            projected = with_effective_mastery(mastery, now) if mastery else None
            effective = projected.effective_mastery if projected else 0.0
            if effective < DEFAULT_WEAKNESS_THRESHOLD:
                steps.append(
                    LearningPathStep(
                        concept_id=node.id,
                        label=node.label,
                        current_mastery=effective,
                        reason="Needs learning" if effective < 0.2 else "Needs strengthening",
                        priority=1.0 - effective,
                    )
                )
            elif projected is not None and projected.is_due_for_review:
                steps.append(
                    LearningPathStep(
                        concept_id=node.id,
                        label=node.label,
                        current_mastery=effective,
                        reason="Due for review",
                        priority=0.8,
                    )
                )

    steps.sort(key=lambda step: step.priority, reverse=True)
    return steps[:max_suggestions]
