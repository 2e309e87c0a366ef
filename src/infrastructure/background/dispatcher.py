# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-process fire-and-forget dispatch of analysis jobs.

The chat handler hands a completed turn to AnalysisDispatcher.submit() and
returns to the learner immediately. Jobs run as asyncio tasks with:

- bounded concurrency (ANALYSIS_MAX_CONCURRENCY),
- per-learner FIFO ordering, so two turns of the same learner never
  update mastery concurrently and are applied in submission order,
- an observable completion queue and awaitable tasks for tests and
  monitoring.

A job failure is logged and published as a completion; it is never
re-raised. Out-of-process dispatch goes through the Dramatiq actor in
src.infrastructure.background.tasks.learning_analysis instead.

Example:
    dispatcher = AnalysisDispatcher(create_analysis_pipeline(store))
    task = dispatcher.submit("u-1", "What is mitosis?", "Mitosis is ...")
    ...
    await dispatcher.drain()
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence
from uuid import uuid4

from src.core.config.settings import get_settings
from src.core.learning.analyzer import AnalysisPipeline, AnalysisPipelineResult
from src.core.learning.models import ChatMode, ConversationMessage
from src.utils.datetime import utc_now
from src.utils.logging import bind_context, get_logger

logger = get_logger(__name__)


@dataclass
class AnalysisCompletion:
    """Published on AnalysisDispatcher.completions when a job ends.

    Attributes:
        job_id: Dispatcher-assigned job id.
        user_id: Learner the job belongs to.
        submitted_at: When the job was submitted.
        finished_at: When the job ended.
        result: Pipeline result, None if the job failed or was cancelled.
        error: Error message of an unexpected failure.
        cancelled: True if the job was cancelled by shutdown().
    """

    job_id: str
    user_id: str
    submitted_at: datetime
    finished_at: datetime
    result: Optional[AnalysisPipelineResult] = None
    error: Optional[str] = None
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.result is not None and self.result.success


class AnalysisDispatcher:
    """Runs analysis pipelines in the background of the event loop.

    Must be used from within a running event loop.
    """

    def __init__(
        self,
        pipeline: AnalysisPipeline,
        max_concurrency: Optional[int] = None,
    ):
        if max_concurrency is None:
            max_concurrency = get_settings().analysis.max_concurrency
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self._pipeline = pipeline
        self._max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._user_locks: dict[str, asyncio.Lock] = {}
        self._user_pending: dict[str, int] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closed = False
        self.completions: asyncio.Queue[AnalysisCompletion] = asyncio.Queue()

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    @property
    def pending(self) -> int:
        """Number of submitted jobs that have not finished yet."""
        return len(self._tasks)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def submit(
        self,
        user_id: str,
        user_message: str,
        assistant_response: str,
        history: Sequence[ConversationMessage] = (),
        mode: ChatMode = ChatMode.LEARN,
    ) -> "asyncio.Task[Optional[AnalysisPipelineResult]]":
        """Schedule analysis of one turn and return without waiting.

        Returns:
            The job's task. Awaiting it yields the pipeline result, or None
            if the job failed unexpectedly.

        Raises:
            RuntimeError: If the dispatcher has been shut down.
        """
        if self._closed:
            raise RuntimeError("AnalysisDispatcher is shut down")

        job_id = uuid4().hex[:12]
        # Reserve the learner's lock now so jobs queue in submission order
        lock = self._user_locks.setdefault(user_id, asyncio.Lock())
        self._user_pending[user_id] = self._user_pending.get(user_id, 0) + 1

        task = asyncio.get_running_loop().create_task(
            self._run_job(
                job_id,
                lock,
                user_id,
                user_message,
                assistant_response,
                list(history),
                mode,
                utc_now(),
            ),
            name=f"analysis-{job_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.debug("Analysis job submitted", job_id=job_id, user_id=user_id)
        return task

    async def _run_job(
        self,
        job_id: str,
        lock: asyncio.Lock,
        user_id: str,
        user_message: str,
        assistant_response: str,
        history: list[ConversationMessage],
        mode: ChatMode,
        submitted_at: datetime,
    ) -> Optional[AnalysisPipelineResult]:
        bind_context(user_id=user_id, job_id=job_id)
        completion = AnalysisCompletion(
            job_id=job_id,
            user_id=user_id,
            submitted_at=submitted_at,
            finished_at=submitted_at,
        )
        try:
            async with lock, self._semaphore:
                completion.result = await self._pipeline.run(
                    user_id=user_id,
                    user_message=user_message,
                    assistant_response=assistant_response,
                    history=history,
                    mode=mode,
                )
            return completion.result
        except asyncio.CancelledError:
            completion.cancelled = True
            logger.info("Analysis job cancelled", job_id=job_id)
            raise
        except Exception as e:
            completion.error = str(e)
            logger.error("Analysis job failed", job_id=job_id, error=str(e), exc_info=True)
            return None
        finally:
            completion.finished_at = utc_now()
            self._release_user(user_id)
            self.completions.put_nowait(completion)

    def _release_user(self, user_id: str) -> None:
        remaining = self._user_pending.get(user_id, 1) - 1
        if remaining <= 0:
            self._user_pending.pop(user_id, None)
            self._user_locks.pop(user_id, None)
        else:
            self._user_pending[user_id] = remaining

    async def drain(self) -> None:
        """Wait until every submitted job, including ones submitted meanwhile, has ended."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop accepting jobs and cancel the ones still running.

        Per-concept updates already committed by a cancelled job stay valid.
        """
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._user_locks.clear()
        self._user_pending.clear()
        logger.info("Analysis dispatcher shut down", cancelled=len(tasks))
