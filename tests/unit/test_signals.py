# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for learning signal detection, filtering and aggregation."""

import pytest

from src.core.learning.models import (
    ConversationMessage,
    ExtractedConcept,
    LearningSignal,
    LearningSignalType,
)
from src.core.learning.signals import (
    ConversationContext,
    ExplanationVerdict,
    aggregate_signals,
    detect_signals,
    filter_signals_by_confidence,
    is_repeated_question,
    validate_explanation,
)


def _concept(concept_id: str = "photosynthesis", confidence: float = 0.9) -> ExtractedConcept:
    return ExtractedConcept(
        concept_id=concept_id,
        label=concept_id.replace("_", " ").title(),
        confidence=confidence,
    )


def _detect(
    user_message: str,
    assistant_response: str = "Sure.",
    concepts: list[ExtractedConcept] | None = None,
    history: list[ConversationMessage] | None = None,
) -> list[LearningSignal]:
    context = ConversationContext(
        user_message=user_message,
        assistant_response=assistant_response,
        extracted_concepts=[_concept()] if concepts is None else concepts,
        history=history or [],
    )
    return detect_signals(context).signals


def _signal(
    confidence: float,
    delta: float = 0.1,
    concept_id: str = "photosynthesis",
    signal_type: LearningSignalType = LearningSignalType.ASKS_FOLLOWUP,
) -> LearningSignal:
    return LearningSignal(
        type=signal_type,
        concept_id=concept_id,
        concept_label=concept_id,
        confidence=confidence,
        mastery_delta=delta,
    )


@pytest.mark.unit
class TestDetectSignals:
    """Tests for pattern-based signal detection."""

    def test_no_concepts_no_signals(self) -> None:
        """Test that a turn without concepts produces nothing."""
        assert _detect("I'm so confused", concepts=[]) == []

    def test_asking_about(self) -> None:
        """Test a direct question about a concept."""
        signals = _detect("What is photosynthesis?")

        assert len(signals) == 1
        assert signals[0].type == LearningSignalType.ASKING_ABOUT
        assert signals[0].mastery_delta == 0.0
        assert signals[0].confidence == pytest.approx(0.7 * 0.9)

    def test_expresses_confusion(self) -> None:
        """Test confusion lowers mastery."""
        signals = _detect("I'm confused about photosynthesis", concepts=[_concept(confidence=1.0)])

        assert signals[0].type == LearningSignalType.EXPRESSES_CONFUSION
        assert signals[0].mastery_delta == -0.1
        assert signals[0].confidence == pytest.approx(0.8)

    def test_followup_question(self) -> None:
        """Test a follow-up question is a small positive signal."""
        signals = _detect("And what about photosynthesis in algae", concepts=[_concept(confidence=1.0)])

        assert signals[0].type == LearningSignalType.ASKS_FOLLOWUP
        assert signals[0].mastery_delta == 0.05

    def test_makes_connection(self) -> None:
        """Test relating a concept to another one."""
        signals = _detect("This reminds me of how solar panels work", concepts=[_concept(confidence=1.0)])

        assert signals[0].type == LearningSignalType.MAKES_CONNECTION
        assert signals[0].mastery_delta == 0.1

    def test_explanation_validated_correct(self) -> None:
        """Test an explanation the assistant confirms."""
        signals = _detect(
            "I think it means plants make sugar from light",
            assistant_response="Exactly, that's right!",
        )

        assert signals[0].type == LearningSignalType.EXPLAINS_CORRECTLY
        assert signals[0].mastery_delta == 0.15
        assert signals[0].confidence == 0.8

    def test_explanation_validated_incorrect(self) -> None:
        """Test an explanation the assistant corrects keeps the learner's words."""
        message = "I think it means plants eat soil"
        signals = _detect(
            message,
            assistant_response="That's not correct. Plants make sugar from light, water and CO2.",
        )

        assert signals[0].type == LearningSignalType.EXPLAINS_INCORRECTLY
        assert signals[0].mastery_delta == -0.1
        assert signals[0].confidence == 0.75
        assert signals[0].context == message

    def test_explanation_unvalidated(self) -> None:
        """Test an explanation without a verdict is a weak positive signal."""
        signals = _detect(
            "My understanding is that light is captured by leaves",
            assistant_response="Let's look at the light reactions next.",
        )

        assert signals[0].type == LearningSignalType.EXPLAINS_CORRECTLY
        assert signals[0].mastery_delta == 0.05
        assert signals[0].confidence == 0.4

    def test_repeated_question_takes_precedence(self) -> None:
        """Test that asking about a concept again is detected from history."""
        history = [
            ConversationMessage(role="user", content="What is photosynthesis?"),
            ConversationMessage(role="assistant", content="It is how plants make food."),
        ]

        signals = _detect("Can you explain photosynthesis again?", history=history)

        assert signals[0].type == LearningSignalType.ASKS_AGAIN
        assert signals[0].mastery_delta == -0.1
        assert signals[0].confidence == 0.8

    def test_engagement_fallback(self) -> None:
        """Test confidently mentioned concepts get a weak engagement signal."""
        signals = _detect(
            "Plants are green because of chlorophyll",
            concepts=[_concept("chlorophyll", 0.9), _concept("glucose", 0.5)],
        )

        assert [s.concept_id for s in signals] == ["chlorophyll"]
        assert signals[0].type == LearningSignalType.ASKING_ABOUT
        assert signals[0].mastery_delta == 0.02
        assert signals[0].confidence == pytest.approx(0.63)

    def test_duplicate_concepts_signalled_once(self) -> None:
        """Test a concept listed twice yields one signal."""
        signals = _detect("What is photosynthesis?", concepts=[_concept(), _concept()])

        assert len(signals) == 1

    def test_reports_processing_time(self) -> None:
        """Test that detection reports its own duration."""
        result = detect_signals(
            ConversationContext(
                user_message="What is photosynthesis?",
                assistant_response="...",
                extracted_concepts=[_concept()],
            )
        )

        assert result.processing_time_ms >= 0


@pytest.mark.unit
class TestValidateExplanation:
    """Tests for explanation grading."""

    @pytest.mark.parametrize(
        ("response", "verdict"),
        [
            ("Yes, exactly!", ExplanationVerdict.CORRECT),
            ("You've got it.", ExplanationVerdict.CORRECT),
            ("Not quite. Plants also need water.", ExplanationVerdict.INCORRECT),
            ("That is incorrect.", ExplanationVerdict.INCORRECT),
            ("Right idea, but to clarify: it happens in chloroplasts.", ExplanationVerdict.INCORRECT),
            ("Let's keep going.", ExplanationVerdict.UNKNOWN),
        ],
    )
    def test_verdicts(self, response: str, verdict: ExplanationVerdict) -> None:
        """Test positive, negative and neutral reactions."""
        assert validate_explanation(response) == verdict

    def test_incorrect_is_not_praise(self) -> None:
        """Test that the word 'incorrect' never counts as 'correct'."""
        assert validate_explanation("Your answer is incorrect") != ExplanationVerdict.CORRECT


@pytest.mark.unit
class TestRepeatedQuestion:
    """Tests for repeated question detection."""

    def test_current_message_in_history_is_skipped(self) -> None:
        """Test that the turn's own message does not count as a repeat."""
        history = [ConversationMessage(role="user", content="What is photosynthesis?")]

        assert not is_repeated_question("What is photosynthesis?", history, "Photosynthesis")

    def test_lookback_limited_to_five_messages(self) -> None:
        """Test that only the last five earlier user messages are searched."""
        history = [ConversationMessage(role="user", content="What is photosynthesis?")]
        history += [ConversationMessage(role="user", content=f"Next step {i}") for i in range(5)]

        assert not is_repeated_question("Explain photosynthesis", history, "Photosynthesis")
        assert is_repeated_question("Explain photosynthesis", history[1:] + history[:1], "Photosynthesis")

    def test_ignores_assistant_messages(self) -> None:
        """Test that only user messages count."""
        history = [ConversationMessage(role="assistant", content="What is photosynthesis? Let me explain.")]

        assert not is_repeated_question("Explain photosynthesis", history, "Photosynthesis")


@pytest.mark.unit
class TestFilterAndAggregate:
    """Tests for confidence filtering and per-concept aggregation."""

    def test_filter_is_inclusive(self) -> None:
        """Test that the threshold itself passes."""
        kept = filter_signals_by_confidence([_signal(0.5), _signal(0.49)], 0.5)

        assert [s.confidence for s in kept] == [0.5]

    def test_highest_confidence_wins(self) -> None:
        """Test the 0.9 signal is selected over the 0.4 one."""
        selected = aggregate_signals([_signal(0.4, delta=-0.1), _signal(0.9, delta=0.05)])

        assert selected["photosynthesis"].confidence == 0.9

    def test_tie_broken_by_larger_delta(self) -> None:
        """Test equal confidences fall back to the larger absolute delta."""
        selected = aggregate_signals([_signal(0.7, delta=0.05), _signal(0.7, delta=-0.2)])

        assert selected["photosynthesis"].mastery_delta == -0.2

    def test_full_tie_keeps_first(self) -> None:
        """Test a complete tie keeps the first signal seen."""
        first = _signal(0.7, delta=0.1, signal_type=LearningSignalType.MAKES_CONNECTION)
        second = _signal(0.7, delta=-0.1)

        assert aggregate_signals([first, second])["photosynthesis"] is first

    def test_one_signal_per_concept(self) -> None:
        """Test concepts are aggregated independently."""
        selected = aggregate_signals(
            [_signal(0.6, concept_id="a"), _signal(0.8, concept_id="b"), _signal(0.9, concept_id="a")]
        )

        assert list(selected) == ["a", "b"]
        assert selected["a"].confidence == 0.9
