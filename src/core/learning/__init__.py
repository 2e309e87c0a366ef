# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Learning signals, mastery tracking and the analysis pipeline.

Only models and exceptions are re-exported here; the storage layer imports
them, so the modules that depend on storage (concepts, mastery,
propagation, analyzer) are imported from their own modules.
"""

from src.core.learning.exceptions import (
    ConceptExtractionError,
    GraphExtractionError,
    GraphValidationError,
    IdentityError,
    LearningEngineError,
    MasteryUpdateError,
)
from src.core.learning.models import (
    ChatMode,
    ConceptMastery,
    ConceptWithEffectiveMastery,
    ConversationMessage,
    ExtractedConcept,
    LearningSignal,
    LearningSignalType,
    MasterySummary,
    MasteryUpdate,
)

__all__ = [
    # Exceptions
    "ConceptExtractionError",
    "GraphExtractionError",
    "GraphValidationError",
    "IdentityError",
    "LearningEngineError",
    "MasteryUpdateError",
    # Models
    "ChatMode",
    "ConceptMastery",
    "ConceptWithEffectiveMastery",
    "ConversationMessage",
    "ExtractedConcept",
    "LearningSignal",
    "LearningSignalType",
    "MasterySummary",
    "MasteryUpdate",
]
