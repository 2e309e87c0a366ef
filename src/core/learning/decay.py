# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Read-time mastery decay.

Effective mastery follows an exponential forgetting curve:

    effective = mastery_score * e^(-decay_rate * days_since_interaction)

The stored score is never changed; decay is a projection computed when the
record is read.
"""

import math
from datetime import datetime
from typing import Optional

from src.core.learning.models import ConceptMastery, ConceptWithEffectiveMastery
from src.utils.datetime import days_between, ensure_utc, utc_now

DEFAULT_DECAY_RATE = 0.1


def days_since_interaction(mastery: ConceptMastery, now: Optional[datetime] = None) -> float:
    """Days since the last interaction, never negative."""
    now = ensure_utc(now) if now else utc_now()
    return max(0.0, days_between(mastery.last_interaction, now))


def effective_mastery(
    mastery: ConceptMastery,
    now: Optional[datetime] = None,
    decay_rate: float = DEFAULT_DECAY_RATE,
) -> float:
    """Project a stored mastery score to the given time.

    Args:
        mastery: Stored record.
        now: Evaluation time (defaults to the current UTC time).
        decay_rate: Forgetting rate per day.

    Returns:
        Decayed score in [0, mastery.mastery_score], rounded to 3 decimals.
    """
    days = days_since_interaction(mastery, now)
    decayed = mastery.mastery_score * math.exp(-decay_rate * days)
    return max(0.0, round(decayed, 3))


def is_due_for_review(mastery: ConceptMastery, now: Optional[datetime] = None) -> bool:
    """True once the scheduled review date has been reached."""
    now = ensure_utc(now) if now else utc_now()
    return mastery.next_review_date is not None and now >= mastery.next_review_date


def with_effective_mastery(
    mastery: ConceptMastery,
    now: Optional[datetime] = None,
    decay_rate: float = DEFAULT_DECAY_RATE,
) -> ConceptWithEffectiveMastery:
    """Bundle a record with its decayed score and review status."""
    now = ensure_utc(now) if now else utc_now()
    return ConceptWithEffectiveMastery(
        mastery=mastery,
        effective_mastery=effective_mastery(mastery, now, decay_rate),
        days_since_interaction=round(days_since_interaction(mastery, now), 2),
        is_due_for_review=is_due_for_review(mastery, now),
    )
