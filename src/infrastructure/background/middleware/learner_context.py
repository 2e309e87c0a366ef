# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Learner context middleware for background processing.

Binds the learner id of a message into the worker thread's context before
the actor runs, so every log line of the job carries user_id, and clears it
afterwards. Worker processes configure structured logging on boot.
"""

import contextvars
import logging
from typing import Any

import dramatiq
from dramatiq import Message, Middleware

from src.core.config import get_settings
from src.utils.logging import bind_context, clear_context, setup_logging

logger = logging.getLogger(__name__)


_learner_context: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "learner_id", default=None
)


def get_current_learner() -> str | None:
    """Get the learner id of the message being processed, if any."""
    return _learner_context.get()


def set_current_learner(user_id: str | None) -> contextvars.Token[str | None]:
    """Set the current learner id in context.

    Returns:
        Context token for resetting.
    """
    return _learner_context.set(user_id)


class LearnerContextMiddleware(Middleware):
    """Restores learner context from a message's user_id keyword argument.

    Usage:
        @dramatiq.actor
        def my_task(user_id: str, ...):
            get_current_learner()  # Returns user_id

        my_task.send(user_id="u-1", ...)
    """

    USER_KEY = "user_id"

    def after_process_boot(self, broker: dramatiq.Broker) -> None:
        setup_logging(get_settings())

    def before_process_message(
        self,
        broker: dramatiq.Broker,
        message: Message,
    ) -> None:
        user_id = message.kwargs.get(self.USER_KEY)
        if user_id:
            set_current_learner(user_id)
            bind_context(user_id=user_id, message_id=message.message_id)
            logger.debug("Restored learner context: %s (message: %s)", user_id, message.message_id)

    def after_process_message(
        self,
        broker: dramatiq.Broker,
        message: Message,
        *,
        result: Any = None,
        exception: BaseException | None = None,
    ) -> None:
        set_current_learner(None)
        clear_context()

    def after_skip_message(
        self,
        broker: dramatiq.Broker,
        message: Message,
    ) -> None:
        set_current_learner(None)
        clear_context()
