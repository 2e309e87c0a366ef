# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Learning analysis background tasks.

Tasks:
    - analyze_interaction: Run the analysis pipeline for one completed
      conversational turn in a worker process.

Triggered by the chat service after each learn-mode turn when analysis runs
out of process:

    analyze_interaction.send(
        user_id="u-1",
        user_message="What is photosynthesis?",
        assistant_response="Photosynthesis is ...",
        history=[{"role": "user", "content": "..."}],
        mode="learn",
    )
"""

import logging
from typing import Any, Optional

import dramatiq

from src.infrastructure.background.broker import Priority, Queues, setup_dramatiq
from src.infrastructure.background.tasks.base import get_worker_store, run_async

# Setup broker before defining actors
setup_dramatiq()

logger = logging.getLogger(__name__)


@dramatiq.actor(
    queue_name=Queues.LEARNING_ANALYSIS,
    max_retries=2,
    time_limit=120000,  # 2 minutes
    priority=Priority.ANALYSIS,
)
def analyze_interaction(
    user_id: str,
    user_message: str,
    assistant_response: str,
    history: Optional[list[dict[str, Any]]] = None,
    mode: str = "learn",
) -> dict[str, Any]:
    """Analyze a completed turn and update the learner's mastery.

    Args:
        user_id: Learner identifier.
        user_message: The learner's message.
        assistant_response: The assistant's reply.
        history: Earlier messages as {"role", "content"} dicts, oldest first.
        mode: Chat mode of the turn ("learn", "chat" or "test").

    Returns:
        AnalysisPipelineResult as a dictionary.
    """

    async def _analyze() -> dict[str, Any]:
        from src.core.learning.analyzer import create_analysis_pipeline
        from src.core.learning.models import ConversationMessage

        logger.info("Analyzing interaction: user=%s, mode=%s", user_id, mode)

        store = await get_worker_store()
        pipeline = create_analysis_pipeline(store)
        messages = [ConversationMessage.model_validate(item) for item in history or []]

        result = await pipeline.run(
            user_id=user_id,
            user_message=user_message,
            assistant_response=assistant_response,
            history=messages,
            mode=mode,
        )
        return result.to_dict()

    return run_async(_analyze())


def get_learning_analysis_actors() -> list:
    """Get all learning analysis actors."""
    return [analyze_interaction]
