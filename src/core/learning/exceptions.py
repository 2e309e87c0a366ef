# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Exception hierarchy for the mastery engine.

Every error raised by the knowledge graph and learning modules derives from
LearningEngineError and keeps the underlying exception (if any) so log
records show both the domain message and the root cause.
"""

from typing import Optional


class LearningEngineError(Exception):
    """Base exception for knowledge graph and mastery operations.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying exception, if any.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        """Initialize the error.

        Args:
            message: Human-readable error description.
            original_error: The underlying exception that caused this error.
        """
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class GraphValidationError(LearningEngineError):
    """Raised when a knowledge graph violates its structural invariants."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__(f"Invalid knowledge graph ({len(errors)} errors)")
        self.errors = errors

    def __str__(self) -> str:
        return f"{self.message}: {'; '.join(self.errors)}"


class GraphExtractionError(LearningEngineError):
    """Raised when the graph extraction collaborator fails for a chunk."""


class ConceptExtractionError(LearningEngineError):
    """Raised when the concept extraction collaborator fails."""


class MasteryUpdateError(LearningEngineError):
    """Raised when a single concept's mastery update cannot be committed.

    Attributes:
        concept_id: Concept whose update failed.
    """

    def __init__(
        self,
        message: str,
        concept_id: str,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message, original_error)
        self.concept_id = concept_id


class IdentityError(LearningEngineError):
    """Raised when no learner identity can be resolved for a call."""
