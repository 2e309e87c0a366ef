# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background processing of conversational turns.

Two ways to run the analysis pipeline off the response path:

- In process: AnalysisDispatcher schedules asyncio tasks with bounded
  concurrency and per-learner ordering.
- Out of process: the Dramatiq actor analyze_interaction on the
  learning_analysis queue.

Quick Start:
    from src.infrastructure.background.dispatcher import AnalysisDispatcher

    dispatcher = AnalysisDispatcher(create_analysis_pipeline(store))
    dispatcher.submit("u-1", user_message, assistant_response)

Running Workers:
    dramatiq src.infrastructure.background.tasks --processes 2 --threads 4
"""

# Task actors are imported lazily: importing them sets up the broker.
# Use: from src.infrastructure.background.tasks import analyze_interaction

from src.infrastructure.background.broker import (
    BrokerManager,
    Priority,
    Queues,
    get_broker,
    get_broker_manager,
    setup_dramatiq,
    shutdown_dramatiq,
)

__all__ = [
    "BrokerManager",
    "Priority",
    "Queues",
    "get_broker",
    "get_broker_manager",
    "setup_dramatiq",
    "shutdown_dramatiq",
]
