# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the background analysis pipeline."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.core.auth.identity import UserIdentity
from src.core.config.settings import MasterySettings
from src.core.knowledge.models import KnowledgeGraph
from src.core.learning.analyzer import (
    AnalysisOptions,
    AnalysisPipeline,
    analyze_interaction_async,
    create_analysis_pipeline,
)
from src.core.learning.concepts import GraphConceptExtractor
from src.core.learning.exceptions import ConceptExtractionError, MasteryUpdateError
from src.core.learning.mastery import MasteryEngine
from src.core.learning.models import (
    ChatMode,
    ExtractedConcept,
    LearningSignal,
    LearningSignalType,
    MasteryUpdate,
)
from src.infrastructure.storage.memory import MemoryLearningStore

CONFUSED_MESSAGE = "I'm confused about how photosynthesis works"
CONFUSED_RESPONSE = "Photosynthesis turns light energy into glucose."


@pytest.fixture
async def biology_store(
    memory_store: MemoryLearningStore,
    biology_graph: KnowledgeGraph,
    sample_user_id: str,
) -> MemoryLearningStore:
    """Memory store holding the photosynthesis graph."""
    await memory_store.put_knowledge_graph(sample_user_id, biology_graph)
    return memory_store


def _pipeline(store: MemoryLearningStore, **options) -> AnalysisPipeline:
    return AnalysisPipeline(
        GraphConceptExtractor(store),
        MasteryEngine(store, MasterySettings()),
        store,
        AnalysisOptions(**options),
    )


def _mock_extractor(concepts: list[ExtractedConcept]) -> MagicMock:
    extractor = MagicMock()
    extractor.might_contain_concepts = AsyncMock(return_value=True)
    extractor.extract_concepts = AsyncMock(return_value=concepts)
    return extractor


@pytest.mark.unit
class TestAnalysisPipeline:
    """Tests for AnalysisPipeline.run()."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", [ChatMode.CHAT, ChatMode.TEST, "chat"])
    async def test_non_learn_modes_do_nothing(
        self,
        biology_store: MemoryLearningStore,
        sample_user_id: str,
        mode: ChatMode,
    ) -> None:
        """Test that only learn mode turns are analyzed."""
        result = await _pipeline(biology_store).run(
            sample_user_id, CONFUSED_MESSAGE, CONFUSED_RESPONSE, mode=mode
        )

        assert result.success is True
        assert result.skipped_reason.startswith("mode:")
        assert await biology_store.list_concept_mastery(sample_user_id) == []

    @pytest.mark.asyncio
    async def test_disabled(self, biology_store: MemoryLearningStore, sample_user_id: str) -> None:
        """Test the master switch."""
        result = await _pipeline(biology_store, enabled=False).run(
            sample_user_id, CONFUSED_MESSAGE, CONFUSED_RESPONSE
        )

        assert result.skipped_reason == "disabled"

    @pytest.mark.asyncio
    async def test_small_talk_skipped(self, biology_store: MemoryLearningStore, sample_user_id: str) -> None:
        """Test that the pre-filter stops trivial turns."""
        result = await _pipeline(biology_store).run(sample_user_id, "thanks", "You're welcome!")

        assert result.skipped_reason == "no_concepts"
        assert result.concepts_extracted == 0

    @pytest.mark.asyncio
    async def test_confusion_lowers_mastery(
        self,
        biology_store: MemoryLearningStore,
        sample_user_id: str,
    ) -> None:
        """Test a full learn mode run from text to stored mastery."""
        result = await _pipeline(biology_store).run(
            sample_user_id, CONFUSED_MESSAGE, CONFUSED_RESPONSE
        )

        assert result.success is True
        assert result.concepts_extracted == 3
        assert result.signals_detected == 3
        assert {u.concept_id for u in result.mastery_updates} == {
            "photosynthesis",
            "light_energy",
            "glucose",
        }
        stored = await biology_store.get_concept_mastery(sample_user_id, "photosynthesis")
        assert stored.mastery_score == pytest.approx(0.1)
        assert stored.streak_wrong == 1
        assert result.to_dict()["mastery_updates"][0]["signal_type"] == "expresses_confusion"

    @pytest.mark.asyncio
    async def test_low_confidence_signals_dropped(
        self,
        biology_store: MemoryLearningStore,
        sample_user_id: str,
    ) -> None:
        """Test that signals under the threshold never reach the engine."""
        result = await _pipeline(biology_store, min_signal_confidence=0.9).run(
            sample_user_id, CONFUSED_MESSAGE, CONFUSED_RESPONSE
        )

        assert result.signals_detected == 0
        assert result.mastery_updates == []

    @pytest.mark.asyncio
    async def test_update_disabled(self, biology_store: MemoryLearningStore, sample_user_id: str) -> None:
        """Test that detection can run without writing mastery."""
        result = await _pipeline(biology_store, update_mastery=False).run(
            sample_user_id, CONFUSED_MESSAGE, CONFUSED_RESPONSE
        )

        assert result.signals_detected == 3
        assert await biology_store.list_concept_mastery(sample_user_id) == []

    @pytest.mark.asyncio
    async def test_propagation(self, biology_store: MemoryLearningStore, sample_user_id: str) -> None:
        """Test that a validated explanation spreads gains to prerequisites."""
        result = await _pipeline(biology_store, propagate_mastery=True).run(
            sample_user_id,
            "So basically photosynthesis makes glucose",
            "Exactly, you've got it.",
        )

        assert {u.concept_id for u in result.mastery_updates} == {"photosynthesis", "glucose"}
        prerequisite = await biology_store.get_concept_mastery(sample_user_id, "light_energy")
        assert prerequisite.mastery_score == pytest.approx(0.215)

    @pytest.mark.asyncio
    async def test_failed_concept_does_not_block_others(self, sample_user_id: str) -> None:
        """Test per-concept isolation of mastery updates."""
        concepts = [
            ExtractedConcept(concept_id="mitosis", label="Mitosis", confidence=1.0),
            ExtractedConcept(concept_id="meiosis", label="Meiosis", confidence=1.0),
        ]

        async def update(user_id: str, signal: LearningSignal) -> MasteryUpdate:
            if signal.concept_id == "mitosis":
                raise MasteryUpdateError("write failed", concept_id="mitosis")
            return MasteryUpdate(
                concept_id=signal.concept_id,
                previous_mastery=0.2,
                new_mastery=0.1,
                signal_type=signal.type,
                confidence=signal.confidence,
            )

        engine = MagicMock()
        engine.update_from_signal = AsyncMock(side_effect=update)
        pipeline = AnalysisPipeline(_mock_extractor(concepts), engine, None, AnalysisOptions())

        result = await pipeline.run(sample_user_id, "I'm lost with mitosis and meiosis", "...")

        assert result.success is True
        assert result.failed_concepts == ["mitosis"]
        assert [u.concept_id for u in result.mastery_updates] == ["meiosis"]
        assert result.mastery_updates[0].signal_type == LearningSignalType.EXPRESSES_CONFUSION

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("prefilter_error", "extract_error"),
        [
            (None, ConceptExtractionError("graph unavailable")),
            (None, ConnectionError("llm down")),
            (TimeoutError("classifier timeout"), None),
        ],
    )
    async def test_extraction_failure_skips(
        self,
        sample_user_id: str,
        prefilter_error: Exception | None,
        extract_error: Exception | None,
    ) -> None:
        """Test that any extractor error ends the run quietly without touching mastery."""
        extractor = _mock_extractor([])
        extractor.might_contain_concepts.side_effect = prefilter_error
        extractor.extract_concepts.side_effect = extract_error
        engine = MagicMock()
        engine.update_from_signal = AsyncMock()
        pipeline = AnalysisPipeline(extractor, engine, None, AnalysisOptions())

        result = await pipeline.run(sample_user_id, CONFUSED_MESSAGE, CONFUSED_RESPONSE)

        assert result.success is True
        assert result.error is None
        assert result.skipped_reason == "extraction_failed"
        engine.update_from_signal.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_error_reported(self, sample_user_id: str) -> None:
        """Test that a failure after extraction is reported, never raised."""
        extractor = _mock_extractor(
            [ExtractedConcept(concept_id="mitosis", label="Mitosis", confidence=1.0)]
        )
        pipeline = AnalysisPipeline(extractor, MagicMock(), None, AnalysisOptions())

        with patch(
            "src.core.learning.analyzer.detect_signals",
            side_effect=RuntimeError("boom"),
        ):
            result = await pipeline.run(sample_user_id, CONFUSED_MESSAGE, CONFUSED_RESPONSE)

        assert result.success is False
        assert result.error == "boom"
        assert result.concepts_extracted == 1
        assert result.total_processing_time_ms >= 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", ["voice", "", "LEARN"])
    async def test_unknown_mode_skipped(
        self,
        biology_store: MemoryLearningStore,
        sample_user_id: str,
        mode: str,
    ) -> None:
        """Test that a mode outside learn/chat/test is a no-op, not an error."""
        result = await _pipeline(biology_store).run(
            sample_user_id, CONFUSED_MESSAGE, CONFUSED_RESPONSE, mode=mode
        )

        assert result.success is True
        assert result.skipped_reason == f"mode:{mode}"
        assert await biology_store.list_concept_mastery(sample_user_id) == []

    def test_create_analysis_pipeline(self, memory_store: MemoryLearningStore, test_settings) -> None:
        """Test wiring from settings."""
        pipeline = create_analysis_pipeline(memory_store, test_settings)

        assert pipeline.options.propagate_mastery is False
        assert pipeline.options.min_signal_confidence == test_settings.analysis.min_signal_confidence


@pytest.mark.unit
class TestAnalyzeInteractionAsync:
    """Tests for the fire-and-forget entry point."""

    def test_learn_mode_submits(self) -> None:
        """Test that a learn turn is handed to the dispatcher."""
        dispatcher = MagicMock()
        identity = UserIdentity(user_id="learner-1")

        task = analyze_interaction_async(dispatcher, identity, "What is ATP?", "ATP is ...")

        assert task is dispatcher.submit.return_value
        dispatcher.submit.assert_called_once_with(
            user_id="learner-1",
            user_message="What is ATP?",
            assistant_response="ATP is ...",
            history=[],
            mode=ChatMode.LEARN,
        )

    def test_chat_mode_not_submitted(self) -> None:
        """Test that chat turns are not scheduled."""
        dispatcher = MagicMock()

        task = analyze_interaction_async(
            dispatcher, UserIdentity(user_id="learner-1"), "hi", "hello", mode=ChatMode.CHAT
        )

        assert task is None
        dispatcher.submit.assert_not_called()

    def test_unknown_mode_not_submitted(self) -> None:
        """Test that an unrecognised mode is ignored rather than raised to the caller."""
        dispatcher = MagicMock()

        task = analyze_interaction_async(
            dispatcher, UserIdentity(user_id="learner-1"), "hi", "hello", mode="voice"
        )

        assert task is None
        dispatcher.submit.assert_not_called()
