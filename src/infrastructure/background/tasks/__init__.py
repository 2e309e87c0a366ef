# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background task actors.

Running Workers:
    dramatiq src.infrastructure.background.tasks --processes 2 --threads 4
"""

from src.infrastructure.background.tasks.base import get_worker_store, run_async
from src.infrastructure.background.tasks.learning_analysis import (
    analyze_interaction,
    get_learning_analysis_actors,
)

__all__ = [
    "analyze_interaction",
    "get_worker_store",
    "run_async",
    "get_all_actors",
]


def get_all_actors() -> list:
    """Get list of all defined actors."""
    return list(get_learning_analysis_actors())
