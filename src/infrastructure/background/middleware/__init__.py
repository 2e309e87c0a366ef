# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Dramatiq middleware for background analysis."""

from src.infrastructure.background.middleware.learner_context import (
    LearnerContextMiddleware,
    get_current_learner,
    set_current_learner,
)

__all__ = [
    "LearnerContextMiddleware",
    "get_current_learner",
    "set_current_learner",
]
