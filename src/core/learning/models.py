# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Learning data models.

ConceptMastery is the durable per-learner, per-concept record. Signals,
extracted concepts and updates are ephemeral values passed between the
pipeline stages.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from src.core.knowledge.models import GraphNodeType
from src.utils.datetime import days_from, ensure_utc, utc_now

DEFAULT_MASTERY_SCORE = 0.2
DEFAULT_CONFIDENCE = 0.3
DEFAULT_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3
DEFAULT_INTERVAL_DAYS = 1


class ChatMode(str, Enum):
    """Conversation mode of the invoking chat turn."""

    LEARN = "learn"
    CHAT = "chat"
    TEST = "test"


class LearningSignalType(str, Enum):
    """Kinds of learning signal inferred from a conversational turn."""

    ASKING_ABOUT = "asking_about"
    EXPLAINS_CORRECTLY = "explains_correctly"
    EXPLAINS_INCORRECTLY = "explains_incorrectly"
    EXPRESSES_CONFUSION = "expresses_confusion"
    ASKS_FOLLOWUP = "asks_followup"
    ASKS_AGAIN = "asks_again"
    QUIZ_CORRECT = "quiz_correct"
    QUIZ_INCORRECT = "quiz_incorrect"
    QUIZ_PARTIAL = "quiz_partial"
    MAKES_CONNECTION = "makes_connection"


# Signal types that count as an attempt at demonstrating knowledge
ATTEMPT_SIGNAL_TYPES = frozenset(
    {
        LearningSignalType.QUIZ_CORRECT,
        LearningSignalType.QUIZ_INCORRECT,
        LearningSignalType.QUIZ_PARTIAL,
        LearningSignalType.EXPLAINS_CORRECTLY,
        LearningSignalType.EXPLAINS_INCORRECTLY,
    }
)


class LearningSignal(BaseModel):
    """An inferred observation that should move a concept's mastery.

    Attributes:
        type: Kind of signal.
        concept_id: Knowledge graph node id the signal refers to.
        concept_label: Human-readable concept name.
        confidence: How sure the detector is (0-1).
        mastery_delta: Suggested mastery change (-1 to 1).
        timestamp: When the signal was observed.
        context: Optional excerpt that produced the signal.
        confused_with: Optional concept the learner mixed this one up with.
    """

    type: LearningSignalType
    concept_id: str
    concept_label: str
    confidence: float = Field(ge=0.0, le=1.0)
    mastery_delta: float = Field(ge=-1.0, le=1.0)
    timestamp: datetime = Field(default_factory=utc_now)
    context: str | None = None
    confused_with: str | None = None

    @property
    def is_attempt(self) -> bool:
        """Whether this signal counts towards attempt statistics."""
        return self.type in ATTEMPT_SIGNAL_TYPES

    @property
    def is_evaluative(self) -> bool:
        """Whether this signal grades an answer and so moves the SM-2 schedule."""
        return self.is_attempt and self.mastery_delta != 0


class ConceptMastery(BaseModel):
    """Durable mastery state of one concept for one learner.

    Attributes:
        concept_id: Knowledge graph node id.
        mastery_score: Estimated understanding (0-1).
        confidence: Certainty of the estimate (0-1).
        total_attempts: Attempt-bearing signals seen.
        correct_attempts: Attempt-bearing signals with positive delta.
        streak_correct: Consecutive positive signals.
        streak_wrong: Consecutive negative signals.
        last_interaction: Time of the last applied signal.
        last_correct_answer: Time of the last positive signal.
        created_at: Creation time.
        next_review_date: When the concept is next due for review.
        ease_factor: SM-2 ease factor (>= 1.3).
        interval_days: SM-2 interval in days (>= 1).
        common_mistakes: Recent mistake excerpts, oldest first.
        confused_with: Concepts recently confused with this one, oldest first.
    """

    concept_id: str
    mastery_score: float = Field(default=DEFAULT_MASTERY_SCORE, ge=0.0, le=1.0)
    confidence: float = Field(default=DEFAULT_CONFIDENCE, ge=0.0, le=1.0)
    total_attempts: int = Field(default=0, ge=0)
    correct_attempts: int = Field(default=0, ge=0)
    streak_correct: int = Field(default=0, ge=0)
    streak_wrong: int = Field(default=0, ge=0)
    last_interaction: datetime = Field(default_factory=utc_now)
    last_correct_answer: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    next_review_date: datetime | None = None
    ease_factor: float = Field(default=DEFAULT_EASE_FACTOR, ge=MIN_EASE_FACTOR)
    interval_days: int = Field(default=DEFAULT_INTERVAL_DAYS, ge=1)
    common_mistakes: list[str] = Field(default_factory=list)
    confused_with: list[str] = Field(default_factory=list)

    @field_validator("last_interaction", "created_at", "last_correct_answer", "next_review_date")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_invariants(self) -> "ConceptMastery":
        if self.streak_correct and self.streak_wrong:
            raise ValueError("streak_correct and streak_wrong cannot both be non-zero")
        if self.correct_attempts > self.total_attempts:
            raise ValueError("correct_attempts cannot exceed total_attempts")
        if self.next_review_date is None:
            self.next_review_date = days_from(self.last_interaction, self.interval_days)
        return self

    @classmethod
    def new(cls, concept_id: str, now: datetime | None = None) -> "ConceptMastery":
        """Create a record with default values for a first interaction.

        Args:
            concept_id: Knowledge graph node id.
            now: Creation time (defaults to the current UTC time).

        Returns:
            A fresh ConceptMastery due for review one day after now.
        """
        now = ensure_utc(now) if now else utc_now()
        return cls(
            concept_id=concept_id,
            last_interaction=now,
            created_at=now,
            next_review_date=days_from(now, DEFAULT_INTERVAL_DAYS),
        )

    @property
    def accuracy(self) -> float:
        """Fraction of attempts that were correct (0 when no attempts)."""
        if self.total_attempts == 0:
            return 0.0
        return self.correct_attempts / self.total_attempts


class MasteryUpdate(BaseModel):
    """Result of applying a single signal to a concept."""

    concept_id: str
    previous_mastery: float
    new_mastery: float
    signal_type: LearningSignalType
    confidence: float
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def change(self) -> float:
        return self.new_mastery - self.previous_mastery


class ConceptWithEffectiveMastery(BaseModel):
    """A stored mastery record with its read-time decayed projection."""

    mastery: ConceptMastery
    effective_mastery: float
    days_since_interaction: float
    is_due_for_review: bool


class MasterySummary(BaseModel):
    """Aggregate view of a learner's mastery across all concepts."""

    total_concepts: int = 0
    mastered: int = 0
    learning: int = 0
    weak: int = 0
    average_mastery: float = 0.0
    due_for_review: int = 0


class ExtractedConcept(BaseModel):
    """A knowledge graph concept found in a conversational turn."""

    concept_id: str
    label: str
    confidence: float = Field(ge=0.0, le=1.0)
    node_type: GraphNodeType | None = None
    matched_text: str | None = None
    position: int | None = None


class ConversationMessage(BaseModel):
    """One message of the conversation history."""

    role: str
    content: str
