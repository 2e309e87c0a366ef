# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background analysis of a completed conversational turn.

AnalysisPipeline.run() is invoked once per turn after the response has been
streamed to the learner. It never raises: every outcome, including failure,
is reported in the returned AnalysisPipelineResult and in the logs, so the
conversation itself is never affected.

Stages:
    mode / feature-flag check -> cheap pre-filter -> concept extraction ->
    signal detection -> confidence filter -> aggregation ->
    per-concept mastery update -> optional propagation

Each concept's update is independent: one failure is logged, listed in
failed_concepts, and the remaining concepts are still updated.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Sequence

from src.core.config.settings import AnalysisSettings, Settings, get_settings
from src.core.learning.concepts import ConceptExtractor, GraphConceptExtractor
from src.core.learning.mastery import MasteryEngine
from src.core.learning.models import ChatMode, ConversationMessage, MasteryUpdate
from src.core.learning.propagation import propagate_mastery
from src.core.learning.signals import (
    ConversationContext,
    aggregate_signals,
    detect_signals,
    filter_signals_by_confidence,
)
from src.infrastructure.storage.base import LearningStore

if TYPE_CHECKING:
    import asyncio

    from src.core.auth.identity import UserIdentity
    from src.infrastructure.background.dispatcher import AnalysisDispatcher

logger = logging.getLogger(__name__)


@dataclass
class AnalysisOptions:
    """Tuning of a pipeline run.

    Attributes:
        enabled: Master switch (ANALYSIS_ENABLED).
        min_signal_confidence: Signals below this are dropped.
        max_concepts: Upper bound on extracted concepts.
        update_mastery: Whether to persist mastery changes.
        propagate_mastery: Whether gains spread to graph neighbours.
    """

    enabled: bool = True
    min_signal_confidence: float = 0.5
    max_concepts: int = 15
    update_mastery: bool = True
    propagate_mastery: bool = False

    @classmethod
    def from_settings(cls, settings: Optional[AnalysisSettings] = None) -> "AnalysisOptions":
        settings = settings or get_settings().analysis
        return cls(
            enabled=settings.enabled,
            min_signal_confidence=settings.min_signal_confidence,
            max_concepts=settings.max_concepts,
            update_mastery=settings.update_mastery,
            propagate_mastery=settings.propagate_mastery,
        )


@dataclass
class AnalysisPipelineResult:
    """Summary of one pipeline run.

    Attributes:
        success: False only for unexpected pipeline-level errors.
        user_id: Learner the turn belongs to.
        concepts_extracted: Number of concepts found.
        signals_detected: Number of signals left after filtering and aggregation.
        mastery_updates: Committed per-concept updates.
        failed_concepts: Concepts whose update failed.
        skipped_reason: Why the run stopped early, if it did.
        extraction_time_ms: Time spent extracting concepts.
        detection_time_ms: Time spent detecting signals.
        update_time_ms: Time spent updating mastery.
        total_processing_time_ms: Wall time of the run.
        error: Error message when success is False.
    """

    success: bool
    user_id: str
    concepts_extracted: int = 0
    signals_detected: int = 0
    mastery_updates: list[MasteryUpdate] = field(default_factory=list)
    failed_concepts: list[str] = field(default_factory=list)
    skipped_reason: Optional[str] = None
    extraction_time_ms: float = 0.0
    detection_time_ms: float = 0.0
    update_time_ms: float = 0.0
    total_processing_time_ms: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to a JSON-compatible dictionary (for task results and logs)."""
        return {
            "success": self.success,
            "user_id": self.user_id,
            "concepts_extracted": self.concepts_extracted,
            "signals_detected": self.signals_detected,
            "mastery_updates": [u.model_dump(mode="json") for u in self.mastery_updates],
            "failed_concepts": list(self.failed_concepts),
            "skipped_reason": self.skipped_reason,
            "extraction_time_ms": round(self.extraction_time_ms, 2),
            "detection_time_ms": round(self.detection_time_ms, 2),
            "update_time_ms": round(self.update_time_ms, 2),
            "total_processing_time_ms": round(self.total_processing_time_ms, 2),
            "error": self.error,
        }


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def _parse_mode(mode: ChatMode | str) -> Optional[ChatMode]:
    """Return the chat mode, or None for a value that is not a known mode."""
    try:
        return ChatMode(mode)
    except ValueError:
        return None


class AnalysisPipeline:
    """Turns a conversational turn into mastery updates.

    Example:
        >>> pipeline = AnalysisPipeline(GraphConceptExtractor(store), MasteryEngine(store), store)
        >>> result = await pipeline.run("u-1", "What is mitosis?", "Mitosis is ...")
        >>> result.success
        True
    """

    def __init__(
        self,
        extractor: ConceptExtractor,
        engine: MasteryEngine,
        store: Optional[LearningStore] = None,
        options: Optional[AnalysisOptions] = None,
    ):
        self._extractor = extractor
        self._engine = engine
        self._store = store
        self._options = options or AnalysisOptions.from_settings()

    @property
    def options(self) -> AnalysisOptions:
        return self._options

    async def run(
        self,
        user_id: str,
        user_message: str,
        assistant_response: str,
        history: Sequence[ConversationMessage] = (),
        mode: ChatMode = ChatMode.LEARN,
        options: Optional[AnalysisOptions] = None,
    ) -> AnalysisPipelineResult:
        """Analyze one turn and update the learner's mastery.

        Args:
            user_id: Learner id.
            user_message: The learner's message.
            assistant_response: The assistant's reply.
            history: Earlier messages, oldest first.
            mode: Chat mode of the turn; only learn mode is analyzed.
            options: Per-run override of the pipeline options.

        Returns:
            AnalysisPipelineResult; never raises.
        """
        start = time.perf_counter()
        opts = options or self._options
        result = AnalysisPipelineResult(success=True, user_id=user_id)

        if _parse_mode(mode) is not ChatMode.LEARN:
            result.skipped_reason = f"mode:{getattr(mode, 'value', mode)}"
            return result
        if not opts.enabled:
            result.skipped_reason = "disabled"
            return result

        try:
            await self._analyze(result, user_id, user_message, assistant_response, history, opts)
        except Exception as e:
            logger.error(
                "Background analysis failed: user_id=%s, error=%s",
                user_id,
                str(e),
                exc_info=True,
            )
            result.success = False
            result.error = str(e)

        result.total_processing_time_ms = _elapsed_ms(start)
        logger.info(
            "Background analysis completed: user_id=%s, success=%s, concepts=%d, "
            "signals=%d, updates=%d, failed=%d, time=%.1fms",
            user_id,
            result.success,
            result.concepts_extracted,
            result.signals_detected,
            len(result.mastery_updates),
            len(result.failed_concepts),
            result.total_processing_time_ms,
        )
        return result

    async def _analyze(
        self,
        result: AnalysisPipelineResult,
        user_id: str,
        user_message: str,
        assistant_response: str,
        history: Sequence[ConversationMessage],
        opts: AnalysisOptions,
    ) -> None:
        stage = time.perf_counter()
        combined = f"{user_message} {assistant_response}"
        try:
            if not await self._extractor.might_contain_concepts(user_id, combined):
                result.skipped_reason = "no_concepts"
                return
            concepts = await self._extractor.extract_concepts(
                user_id, user_message, assistant_response, opts.max_concepts
            )
        except Exception as e:
            # Extraction failures leave mastery untouched
            logger.warning("Concept extraction failed for user %s: %s", user_id, e)
            result.skipped_reason = "extraction_failed"
            return
        finally:
            result.extraction_time_ms = _elapsed_ms(stage)

        result.concepts_extracted = len(concepts)
        if not concepts:
            result.skipped_reason = "no_concepts"
            return

        stage = time.perf_counter()
        detection = detect_signals(
            ConversationContext(
                user_message=user_message,
                assistant_response=assistant_response,
                extracted_concepts=concepts,
                history=history,
            )
        )
        filtered = filter_signals_by_confidence(detection.signals, opts.min_signal_confidence)
        aggregated = aggregate_signals(filtered)
        result.signals_detected = len(aggregated)
        result.detection_time_ms = _elapsed_ms(stage)

        if not opts.update_mastery or not aggregated:
            return

        stage = time.perf_counter()
        for concept_id, signal in aggregated.items():
            try:
                update = await self._engine.update_from_signal(user_id, signal)
            except Exception as e:
                logger.warning("Failed to update mastery for %s: %s", concept_id, e)
                result.failed_concepts.append(concept_id)
                continue
            result.mastery_updates.append(update)

            if opts.propagate_mastery and self._store is not None and update.change > 0:
                try:
                    await propagate_mastery(self._store, user_id, concept_id, update.change)
                except Exception as e:
                    logger.warning("Mastery propagation from %s failed: %s", concept_id, e)
        result.update_time_ms = _elapsed_ms(stage)


def create_analysis_pipeline(
    store: LearningStore,
    settings: Optional[Settings] = None,
) -> AnalysisPipeline:
    """Wire the default pipeline: graph concept matching and the SM-2 engine."""
    settings = settings or get_settings()
    return AnalysisPipeline(
        extractor=GraphConceptExtractor(store),
        engine=MasteryEngine(store, settings.mastery),
        store=store,
        options=AnalysisOptions.from_settings(settings.analysis),
    )


def analyze_interaction_async(
    dispatcher: "AnalysisDispatcher",
    identity: "UserIdentity",
    user_message: str,
    assistant_response: str,
    history: Sequence[ConversationMessage] = (),
    mode: ChatMode = ChatMode.LEARN,
) -> Optional["asyncio.Task[AnalysisPipelineResult]"]:
    """Fire-and-forget entry point for chat handlers.

    Schedules analysis of a completed turn and returns immediately. Callers
    must not rely on the outcome; the returned task (None when nothing was
    scheduled) exists for observers and tests.

    Args:
        dispatcher: Background dispatcher that runs the pipeline.
        identity: Resolved identity of the learner.
        user_message: The learner's message.
        assistant_response: The assistant's reply.
        history: Earlier messages, oldest first.
        mode: Chat mode of the turn.
    """
    if _parse_mode(mode) is not ChatMode.LEARN:
        return None
    return dispatcher.submit(
        user_id=identity.user_id,
        user_message=user_message,
        assistant_response=assistant_response,
        history=list(history),
        mode=ChatMode.LEARN,
    )
