"""Sequential evaluation of task records.

Records are evaluated strictly one after another. Between records the
pipeline waits a fixed pacing interval; between attempts on the same record
it backs off exponentially, and only for transient server errors.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional, Protocol, Sequence

from ..errors import EmptyResult, EvaluatorError
from ..models import AnalysisResult, AnalysisState, RunEvent, TaskRecord
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class Evaluator(Protocol):
    async def evaluate(self, record: TaskRecord) -> AnalysisResult: ...


class AnalysisPipeline:
    def __init__(
        self,
        evaluator: Evaluator,
        retry_policy: Optional[RetryPolicy] = None,
        pacing: float = 0.5,
        sleep: Sleep = asyncio.sleep,
    ):
        self.evaluator = evaluator
        self.retry_policy = retry_policy or RetryPolicy()
        self.pacing = pacing
        self._sleep = sleep

    async def run(self, records: Sequence[TaskRecord], run_id: int = 0) -> AsyncIterator[RunEvent]:
        if not records:
            raise EmptyResult("No tasks found")
        ids = [record.id for record in records]
        if len(set(ids)) != len(ids):
            raise ValueError("Task records must have unique ids")

        total = len(records)
        for index, record in enumerate(records):
            logger.info("Run %s: analysing task %s (%d of %d)", run_id, record.id, index + 1, total)
            yield RunEvent(run_id=run_id, record_id=record.id, state=AnalysisState.ANALYZING)

            try:
                result = await self._evaluate_with_retry(record)
            except EvaluatorError as exc:
                logger.error("Run %s: task %s failed: %s", run_id, record.id, exc)
                yield RunEvent(
                    run_id=run_id, record_id=record.id, state=AnalysisState.FAILED, error=str(exc)
                )
            else:
                yield RunEvent(
                    run_id=run_id, record_id=record.id, state=AnalysisState.COMPLETED, result=result
                )

            if index < total - 1:
                await self._sleep(self.pacing)

    async def _evaluate_with_retry(self, record: TaskRecord) -> AnalysisResult:
        policy = self.retry_policy
        for attempt in range(1, policy.max_attempts + 1):
            try:
                return await self.evaluator.evaluate(record)
            except EvaluatorError as exc:
                if not policy.is_retriable(exc) or attempt == policy.max_attempts:
                    raise
                delay = policy.delay_before(attempt)
                logger.warning(
                    "Task %s attempt %d/%d failed with a server error: %s. Retrying in %.2fs...",
                    record.id, attempt, policy.max_attempts, exc, delay,
                )
                await self._sleep(delay)
        raise AssertionError("unreachable")
