# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Learning signal detection and aggregation.

Signals are inferred from the wording of a conversational turn:

- the user message is matched against phrase patterns per signal type
  (asking, confusion, asking again, follow-up, explaining, connecting);
- an explanation attempt is graded by how the assistant responded to it;
- a concept asked about in one of the last five user messages is treated
  as a repeated question.

Detection is pure and keeps every signal it finds. Filtering by confidence
and reducing to one signal per concept are separate steps so callers can
observe the raw output.

Example:
    >>> result = detect_signals(ConversationContext(
    ...     user_message="I'm confused about mitosis",
    ...     assistant_response="Let's go step by step.",
    ...     extracted_concepts=[ExtractedConcept(concept_id="mitosis", label="mitosis", confidence=0.9)],
    ... ))
    >>> result.signals[0].type
    <LearningSignalType.EXPRESSES_CONFUSION: 'expresses_confusion'>
"""

import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Sequence

from src.core.learning.models import (
    ConversationMessage,
    ExtractedConcept,
    LearningSignal,
    LearningSignalType,
)
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)

# Number of earlier user messages searched for a repeated question
REPEAT_LOOKBACK = 5
# Minimum extracted-concept confidence for the engagement fallback signal
ENGAGEMENT_MIN_CONCEPT_CONFIDENCE = 0.6
ENGAGEMENT_CONFIDENCE_FACTOR = 0.7
ENGAGEMENT_MASTERY_DELTA = 0.02
MISTAKE_CONTEXT_LENGTH = 200

_QUESTION_WORDS = ("what", "how", "explain")


@dataclass(frozen=True)
class SignalPattern:
    """Phrase patterns that indicate one signal type.

    Attributes:
        type: Signal type produced on a match.
        patterns: Compiled case-insensitive expressions.
        mastery_delta: Suggested mastery change.
        confidence: Pattern reliability, scaled by the concept's confidence.
        description: Context text attached to the signal.
    """

    type: LearningSignalType
    patterns: tuple[re.Pattern[str], ...]
    mastery_delta: float
    confidence: float
    description: str


def _compile(*expressions: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(expression, re.IGNORECASE) for expression in expressions)


# Checked in order; the first matching type wins for a concept
SIGNAL_PATTERNS: tuple[SignalPattern, ...] = (
    SignalPattern(
        type=LearningSignalType.ASKING_ABOUT,
        patterns=_compile(
            r"what (?:is|are|does) (?:a |an |the )?(.+?)\??$",
            r"can you explain (.+?)\??$",
            r"tell me about (.+?)$",
            r"how does (.+?) work\??$",
            r"what's (.+?)\??$",
            r"define (.+?)$",
        ),
        mastery_delta=0.0,
        confidence=0.7,
        description="User is asking about a concept",
    ),
    SignalPattern(
        type=LearningSignalType.EXPRESSES_CONFUSION,
        patterns=_compile(
            r"i (?:don't|do not|dont) understand",
            r"(?:i'm|im|i am) confused",
            r"this (?:is|seems) confusing",
            r"what do you mean",
            r"(?:i'm|im|i am) lost",
            r"(?:i'm|im|i am) not sure (?:what|how|why)",
            r"can you clarify",
            r"that (?:doesn't|does not|doesnt) make sense",
        ),
        mastery_delta=-0.1,
        confidence=0.8,
        description="User expresses confusion",
    ),
    SignalPattern(
        type=LearningSignalType.ASKS_AGAIN,
        patterns=_compile(
            r"(?:again|remind me),? what (?:is|are)",
            r"(?:sorry|wait),? (?:what|how) (?:is|was|does)",
            r"can you (?:repeat|say that again)",
            r"i forgot,? (?:what|how)",
            r"one more time,? (?:what|how)",
        ),
        mastery_delta=-0.1,
        confidence=0.75,
        description="User asks the same question again",
    ),
    SignalPattern(
        type=LearningSignalType.ASKS_FOLLOWUP,
        patterns=_compile(
            r"(?:and |but )?what about",
            r"(?:and |but )?how about",
            r"what if",
            r"why (?:is that|does|do)",
            r"can you (?:also|tell me more)",
            r"what(?:'s| is) the (?:difference|relationship)",
            r"how (?:does this|do these) (?:relate|connect|compare)",
        ),
        mastery_delta=0.05,
        confidence=0.6,
        description="User asks a follow-up question",
    ),
    SignalPattern(
        type=LearningSignalType.EXPLAINS_CORRECTLY,
        patterns=_compile(
            r"so,? (?:basically|essentially|in other words)",
            r"(?:i think|i believe) (?:it|this|that) (?:is|means|works)",
            r"my understanding is",
            r"if i understand correctly",
            r"so what you(?:'re| are) saying is",
        ),
        mastery_delta=0.15,
        confidence=0.5,
        description="User attempts to explain a concept",
    ),
    SignalPattern(
        type=LearningSignalType.MAKES_CONNECTION,
        patterns=_compile(
            r"(?:is this|this is) (?:similar|related) to",
            r"this reminds me of",
            r"(?:so|ah),? (?:it's|this is) like",
            r"(?:the|a) connection (?:between|to)",
            r"(?:this|it) (?:applies|relates) to",
        ),
        mastery_delta=0.1,
        confidence=0.65,
        description="User makes a connection between concepts",
    ),
)

# Negative patterns are checked first so "that's not correct" is not read as praise
_NEGATIVE_VALIDATION = _compile(
    r"\b(?:not quite|not exactly|not really)\b",
    r"\b(?:actually|however),? (?:it|that)(?:'s| is)\b",
    r"\b(?:that's|that is) (?:not|incorrect|wrong)\b",
    r"\b(?:let me clarify|to clarify)\b",
    r"\b(?:common misconception|misunderstanding)\b",
)
_POSITIVE_VALIDATION = _compile(
    r"\b(?:yes|exactly|correct|right|precisely|that's right)\b",
    r"\b(?:good|great|excellent) understanding\b",
    r"\byou(?:'ve| have)? got it\b",
    r"\bthat(?:'s| is) (?:correct|right|accurate)\b",
)


class ExplanationVerdict(str, Enum):
    """How the assistant judged a learner's explanation."""

    CORRECT = "correct"
    INCORRECT = "incorrect"
    UNKNOWN = "unknown"


@dataclass
class ConversationContext:
    """Input of detect_signals().

    Attributes:
        user_message: The learner's message of this turn.
        assistant_response: The assistant's reply.
        extracted_concepts: Concepts found in the turn.
        history: Earlier messages, oldest first (may include the current one).
    """

    user_message: str
    assistant_response: str
    extracted_concepts: Sequence[ExtractedConcept]
    history: Sequence[ConversationMessage] = field(default_factory=list)


@dataclass
class SignalDetectionResult:
    """Output of detect_signals()."""

    signals: list[LearningSignal]
    processing_time_ms: float = 0.0


def validate_explanation(assistant_response: str) -> ExplanationVerdict:
    """Grade a learner's explanation from the assistant's reaction to it."""
    if any(pattern.search(assistant_response) for pattern in _NEGATIVE_VALIDATION):
        return ExplanationVerdict.INCORRECT
    if any(pattern.search(assistant_response) for pattern in _POSITIVE_VALIDATION):
        return ExplanationVerdict.CORRECT
    return ExplanationVerdict.UNKNOWN


def is_repeated_question(
    user_message: str,
    history: Sequence[ConversationMessage],
    concept_label: str,
) -> bool:
    """Check whether the concept was asked about in a recent earlier user message.

    Looks at up to REPEAT_LOOKBACK user messages before the current one. If
    the last history entry is the current message it is skipped.
    """
    label = concept_label.lower()
    user_messages = [message.content for message in history if message.role == "user"]
    if user_messages and user_messages[-1] == user_message:
        user_messages = user_messages[:-1]

    for content in user_messages[-REPEAT_LOOKBACK:]:
        lowered = content.lower()
        if label in lowered and any(word in lowered for word in _QUESTION_WORDS):
            return True
    return False


def _match_pattern(user_message: str) -> Optional[SignalPattern]:
    for signal_pattern in SIGNAL_PATTERNS:
        if any(regex.search(user_message) for regex in signal_pattern.patterns):
            return signal_pattern
    return None


def _signal_for_concept(
    concept: ExtractedConcept,
    context: ConversationContext,
) -> Optional[LearningSignal]:
    now = utc_now()

    if is_repeated_question(context.user_message, context.history, concept.label):
        return LearningSignal(
            type=LearningSignalType.ASKS_AGAIN,
            concept_id=concept.concept_id,
            concept_label=concept.label,
            confidence=0.8,
            mastery_delta=-0.1,
            timestamp=now,
            context="Repeated question detected",
        )

    matched = _match_pattern(context.user_message)
    if matched is None:
        return None

    signal_type = matched.type
    mastery_delta = matched.mastery_delta
    confidence = matched.confidence * concept.confidence
    signal_context = matched.description

    if matched.type is LearningSignalType.EXPLAINS_CORRECTLY:
        verdict = validate_explanation(context.assistant_response)
        if verdict is ExplanationVerdict.CORRECT:
            mastery_delta, confidence = 0.15, 0.8
            signal_context = "User explanation validated as correct"
        elif verdict is ExplanationVerdict.INCORRECT:
            signal_type = LearningSignalType.EXPLAINS_INCORRECTLY
            mastery_delta, confidence = -0.1, 0.75
            signal_context = context.user_message.strip()[:MISTAKE_CONTEXT_LENGTH]
        else:
            mastery_delta, confidence = 0.05, 0.4
            signal_context = "User attempted explanation (unvalidated)"

    return LearningSignal(
        type=signal_type,
        concept_id=concept.concept_id,
        concept_label=concept.label,
        confidence=confidence,
        mastery_delta=mastery_delta,
        timestamp=now,
        context=signal_context,
    )


def detect_signals(context: ConversationContext) -> SignalDetectionResult:
    """Detect learning signals for every extracted concept of a turn.

    At most one pattern signal is produced per concept: a repeated question
    takes precedence, then the first matching pattern type. Concepts with no
    pattern signal but an extraction confidence of at least 0.6 get a weak
    asking_about engagement signal.

    Args:
        context: The turn and its extracted concepts.

    Returns:
        SignalDetectionResult with all detected signals (unfiltered).
    """
    start = time.perf_counter()
    signals: list[LearningSignal] = []
    seen: set[str] = set()

    for concept in context.extracted_concepts:
        if concept.concept_id in seen:
            continue
        seen.add(concept.concept_id)
        signal = _signal_for_concept(concept, context)
        if signal is not None:
            signals.append(signal)

    signalled = {signal.concept_id for signal in signals}
    fallback_seen: set[str] = set()
    for concept in context.extracted_concepts:
        if concept.concept_id in signalled or concept.concept_id in fallback_seen:
            continue
        if concept.confidence >= ENGAGEMENT_MIN_CONCEPT_CONFIDENCE:
            fallback_seen.add(concept.concept_id)
            signals.append(
                LearningSignal(
                    type=LearningSignalType.ASKING_ABOUT,
                    concept_id=concept.concept_id,
                    concept_label=concept.label,
                    confidence=concept.confidence * ENGAGEMENT_CONFIDENCE_FACTOR,
                    mastery_delta=ENGAGEMENT_MASTERY_DELTA,
                    context="Concept discussed in conversation",
                )
            )

    processing_time_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "Signal detection completed: signals=%d, concepts=%d, time=%.1fms",
        len(signals),
        len(context.extracted_concepts),
        processing_time_ms,
    )
    return SignalDetectionResult(signals=signals, processing_time_ms=processing_time_ms)


def filter_signals_by_confidence(
    signals: Iterable[LearningSignal],
    min_confidence: float = 0.5,
) -> list[LearningSignal]:
    """Keep signals whose confidence is at least min_confidence."""
    return [signal for signal in signals if signal.confidence >= min_confidence]


def aggregate_signals(signals: Iterable[LearningSignal]) -> dict[str, LearningSignal]:
    """Reduce signals to one per concept.

    The most confident signal wins. On an exact confidence tie the larger
    absolute mastery delta wins; a further tie keeps the first one seen.

    Returns:
        Mapping of concept id to its selected signal, in first-seen order.
    """
    selected: dict[str, LearningSignal] = {}
    for signal in signals:
        current = selected.get(signal.concept_id)
        if current is None:
            selected[signal.concept_id] = signal
        elif signal.confidence > current.confidence or (
            signal.confidence == current.confidence
            and abs(signal.mastery_delta) > abs(current.mastery_delta)
        ):
            selected[signal.concept_id] = signal
    return selected
