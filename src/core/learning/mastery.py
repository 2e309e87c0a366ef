# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Mastery update engine and mastery queries.

MasteryEngine applies one learning signal to one concept's record:

1. mastery moves by the signal's delta, clamped to [0, 1];
2. confidence moves toward 1 in proportion to the signal's confidence;
3. streaks follow the sign of the delta, attempts count only for quiz and
   explanation signals;
4. quiz and explanation signals reschedule the next review with SM-2;
5. mistakes and confusions are remembered in bounded lists.

The transition itself (apply_signal) is a pure function. update_from_signal
runs it inside the store's atomic per-key update, so concurrent turns never
lose an attempt.

Based on:
- Wozniak, P. A. (1990). SuperMemo SM-2 algorithm
- Ebbinghaus, H. (1885). Memory: A Contribution to Experimental Psychology
"""

import logging
import math
from datetime import datetime
from typing import Optional

from src.core.config.settings import MasterySettings, get_settings
from src.core.learning.decay import effective_mastery, is_due_for_review, with_effective_mastery
from src.core.learning.exceptions import MasteryUpdateError
from src.core.learning.models import (
    ConceptMastery,
    ConceptWithEffectiveMastery,
    LearningSignal,
    LearningSignalType,
    MasterySummary,
    MasteryUpdate,
)
from src.infrastructure.storage.base import LearningStore, StorageError
from src.utils.datetime import days_from, ensure_utc, utc_now

logger = logging.getLogger(__name__)

MASTERED_THRESHOLD = 0.8
WEAK_THRESHOLD = 0.3

# Quiz evaluation in test mode: (mastery delta, signal type)
TEST_MODE_EVALUATIONS: dict[str, tuple[float, LearningSignalType]] = {
    "correct": (0.3, LearningSignalType.QUIZ_CORRECT),
    "partial": (0.1, LearningSignalType.QUIZ_PARTIAL),
    "incorrect": (-0.2, LearningSignalType.QUIZ_INCORRECT),
}


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return math.floor(value + 0.5)


def signal_quality(signal: LearningSignal) -> int:
    """Map an evaluative signal to the SM-2 quality scale (0-5).

    Correct answers map to 3-5 and incorrect ones to 0-2; within each band a
    more confident signal moves further from the pass/fail boundary.
    """
    if signal.mastery_delta > 0:
        return int(clamp(3 + round_half_up(2 * signal.confidence), 3, 5))
    return int(clamp(2 - round_half_up(2 * signal.confidence), 0, 2))


def next_ease_factor(ease_factor: float, quality: int, min_ease_factor: float = 1.3) -> float:
    """SM-2 ease factor update, floored at min_ease_factor."""
    distance = 5 - quality
    return max(min_ease_factor, ease_factor + 0.1 - distance * (0.08 + distance * 0.02))


def append_bounded(items: list[str], value: Optional[str], limit: int) -> list[str]:
    """Append value unless already present, keeping only the newest limit items."""
    if not value or value in items:
        return list(items[-limit:])
    return [*items, value][-limit:]


def create_test_mode_signal(
    concept_id: str,
    concept_label: str,
    evaluation: str,
    context: Optional[str] = None,
) -> LearningSignal:
    """Build the signal for a graded quiz answer.

    Args:
        concept_id: Concept the question tested.
        concept_label: Human-readable concept name.
        evaluation: "correct", "partial" or "incorrect".
        context: Optional question or answer excerpt.

    Returns:
        A fully confident quiz signal.

    Raises:
        ValueError: If evaluation is not recognized.
    """
    try:
        delta, signal_type = TEST_MODE_EVALUATIONS[evaluation]
    except KeyError:
        raise ValueError(f"Unknown quiz evaluation: {evaluation!r}") from None

    return LearningSignal(
        type=signal_type,
        concept_id=concept_id,
        concept_label=concept_label,
        confidence=1.0,
        mastery_delta=delta,
        context=context or f"Quiz answer: {evaluation}",
    )


class MasteryEngine:
    """Applies learning signals to persisted mastery records.

    Attributes:
        settings: Mastery tuning parameters.

    Example:
        >>> engine = MasteryEngine(store)
        >>> update = await engine.update_from_signal("u-1", signal)
        >>> update.new_mastery
        0.5
    """

    def __init__(
        self,
        store: LearningStore,
        settings: Optional[MasterySettings] = None,
    ):
        self._store = store
        self.settings = settings or get_settings().mastery

    def apply_signal(
        self,
        current: Optional[ConceptMastery],
        signal: LearningSignal,
        now: Optional[datetime] = None,
    ) -> tuple[ConceptMastery, MasteryUpdate]:
        """Compute the record that results from applying a signal.

        Pure: current is not modified.

        Args:
            current: Stored record, or None for a first interaction.
            signal: The signal to apply.
            now: Interaction time (defaults to the current UTC time).

        Returns:
            Tuple of (new record, update summary).
        """
        now = ensure_utc(now) if now else utc_now()
        mastery = current or ConceptMastery.new(signal.concept_id, now)
        delta = signal.mastery_delta

        previous_score = mastery.mastery_score
        score = round(clamp(previous_score + delta), 3)
        confidence = round(
            clamp(
                mastery.confidence
                + self.settings.confidence_gain * signal.confidence * (1 - mastery.confidence)
            ),
            3,
        )

        streak_correct, streak_wrong = mastery.streak_correct, mastery.streak_wrong
        last_correct_answer = mastery.last_correct_answer
        if delta > 0:
            streak_correct, streak_wrong = streak_correct + 1, 0
            last_correct_answer = now
        elif delta < 0:
            streak_correct, streak_wrong = 0, streak_wrong + 1

        total_attempts, correct_attempts = mastery.total_attempts, mastery.correct_attempts
        if signal.is_attempt:
            total_attempts += 1
            if delta > 0:
                correct_attempts += 1

        ease_factor, interval_days = mastery.ease_factor, mastery.interval_days
        if signal.is_evaluative:
            quality = signal_quality(signal)
            ease_factor = round(
                next_ease_factor(ease_factor, quality, self.settings.min_ease_factor), 3
            )
            if delta > 0:
                interval_days = min(
                    self.settings.max_interval_days,
                    max(1, round_half_up(interval_days * ease_factor)),
                )
            else:
                interval_days = 1

        limit = self.settings.pattern_history_limit
        common_mistakes = mastery.common_mistakes
        if signal.is_evaluative and delta < 0:
            common_mistakes = append_bounded(common_mistakes, signal.context, limit)
        confused_with = append_bounded(mastery.confused_with, signal.confused_with, limit)

        updated = ConceptMastery.model_validate(
            {
                **mastery.model_dump(),
                "mastery_score": score,
                "confidence": confidence,
                "total_attempts": total_attempts,
                "correct_attempts": correct_attempts,
                "streak_correct": streak_correct,
                "streak_wrong": streak_wrong,
                "last_interaction": now,
                "last_correct_answer": last_correct_answer,
                "ease_factor": ease_factor,
                "interval_days": interval_days,
                "next_review_date": days_from(now, interval_days),
                "common_mistakes": common_mistakes,
                "confused_with": confused_with,
            }
        )
        update = MasteryUpdate(
            concept_id=signal.concept_id,
            previous_mastery=previous_score,
            new_mastery=score,
            signal_type=signal.type,
            confidence=signal.confidence,
            timestamp=now,
        )
        return updated, update

    async def update_from_signal(
        self,
        user_id: str,
        signal: LearningSignal,
        now: Optional[datetime] = None,
    ) -> MasteryUpdate:
        """Apply a signal to the learner's stored record atomically.

        Args:
            user_id: Learner id.
            signal: Signal to apply.
            now: Interaction time (defaults to the current UTC time).

        Returns:
            Summary of the committed change.

        Raises:
            MasteryUpdateError: If the record cannot be read or written.
        """
        result: Optional[MasteryUpdate] = None

        def mutate(current: Optional[ConceptMastery]) -> ConceptMastery:
            nonlocal result
            updated, result = self.apply_signal(current, signal, now)
            return updated

        try:
            await self._store.update_concept_mastery(user_id, signal.concept_id, mutate)
        except StorageError as e:
            raise MasteryUpdateError(
                f"Failed to update mastery for {signal.concept_id}",
                concept_id=signal.concept_id,
                original_error=e,
            ) from e

        logger.debug(
            "Mastery updated: user_id=%s, concept=%s, %.3f -> %.3f (%s)",
            user_id,
            signal.concept_id,
            result.previous_mastery,
            result.new_mastery,
            signal.type.value,
        )
        return result


class MasteryService:
    """Read-side queries over a learner's mastery records.

    All scores reported here are effective (decayed) mastery.
    """

    def __init__(
        self,
        store: LearningStore,
        settings: Optional[MasterySettings] = None,
    ):
        self._store = store
        self._decay_rate = (settings or get_settings().mastery).decay_rate

    def _project(self, mastery: ConceptMastery, now: datetime) -> ConceptWithEffectiveMastery:
        return with_effective_mastery(mastery, now, self._decay_rate)

    async def get_effective_mastery(
        self,
        user_id: str,
        concept_id: str,
        now: Optional[datetime] = None,
    ) -> Optional[ConceptWithEffectiveMastery]:
        """Return one concept's record with decay applied, or None."""
        mastery = await self._store.get_concept_mastery(user_id, concept_id)
        if mastery is None:
            return None
        return self._project(mastery, ensure_utc(now) if now else utc_now())

    async def get_mastery_batch(
        self,
        user_id: str,
        concept_ids: list[str],
        now: Optional[datetime] = None,
    ) -> dict[str, ConceptWithEffectiveMastery]:
        """Return decayed records for the given concepts that exist."""
        results: dict[str, ConceptWithEffectiveMastery] = {}
        for concept_id in concept_ids:
            projected = await self.get_effective_mastery(user_id, concept_id, now)
            if projected is not None:
                results[concept_id] = projected
        return results

    async def get_all_mastery(
        self,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> list[ConceptWithEffectiveMastery]:
        """Return every record of the learner with decay applied."""
        now = ensure_utc(now) if now else utc_now()
        return [self._project(m, now) for m in await self._store.list_concept_mastery(user_id)]

    async def get_weakest_concepts(
        self,
        user_id: str,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> list[ConceptWithEffectiveMastery]:
        """Concepts with the lowest effective mastery first."""
        projected = await self.get_all_mastery(user_id, now)
        projected.sort(key=lambda p: p.effective_mastery)
        return projected[:limit]

    async def get_strongest_concepts(
        self,
        user_id: str,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> list[ConceptWithEffectiveMastery]:
        """Concepts with the highest effective mastery first."""
        projected = await self.get_all_mastery(user_id, now)
        projected.sort(key=lambda p: p.effective_mastery, reverse=True)
        return projected[:limit]

    async def get_concepts_due_for_review(
        self,
        user_id: str,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> list[ConceptWithEffectiveMastery]:
        """Concepts whose review date has passed, most overdue first."""
        now = ensure_utc(now) if now else utc_now()
        due = await self._store.list_due_concepts(user_id, now)
        due.sort(key=lambda m: m.next_review_date)
        return [self._project(m, now) for m in due[:limit]]

    async def get_mastery_summary(
        self,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> MasterySummary:
        """Count mastered (> 0.8), learning and weak (<= 0.3) concepts."""
        now = ensure_utc(now) if now else utc_now()
        records = await self._store.list_concept_mastery(user_id)
        scores = [effective_mastery(m, now, self._decay_rate) for m in records]
        if not scores:
            return MasterySummary()

        return MasterySummary(
            total_concepts=len(scores),
            mastered=sum(1 for s in scores if s > MASTERED_THRESHOLD),
            learning=sum(1 for s in scores if WEAK_THRESHOLD < s <= MASTERED_THRESHOLD),
            weak=sum(1 for s in scores if s <= WEAK_THRESHOLD),
            average_mastery=round(sum(scores) / len(scores), 3),
            due_for_review=sum(1 for m in records if is_due_for_review(m, now)),
        )

    async def delete_mastery(self, user_id: str, concept_id: Optional[str] = None) -> int:
        """Erase one concept's record, or all of the learner's data.

        Returns:
            Number of records removed.
        """
        if concept_id is not None:
            return int(await self._store.delete_concept_mastery(user_id, concept_id))
        return await self._store.delete_user_data(user_id)
