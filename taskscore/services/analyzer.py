import asyncio
import logging
from typing import Callable, List, Optional, Tuple

from ..config import settings
from ..errors import EmptyResult, NotConfigured, TaskSourceError
from ..models import RunSnapshot, RunStatus, TaskRecord
from ..state import finalize, initial_snapshot
from ..storage.repo import Repo
from .llm import LLM
from .pipeline import AnalysisPipeline
from .retry import RetryPolicy
from .sheets import SheetsClient

logger = logging.getLogger(__name__)

EMPTY_MESSAGE = "No tasks found"
SUPERSEDED_MESSAGE = "Superseded by a newer run"


class Analyzer:
    """Owns one employee's working set: fetch rows, start a run, drive it to the end."""

    def __init__(
        self,
        source: SheetsClient,
        pipeline: AnalysisPipeline,
        repo: Repo,
        auto_select_first_date: bool = False,
    ):
        self.source = source
        self.pipeline = pipeline
        self.repo = repo
        self.auto_select_first_date = auto_select_first_date

    async def start(self, employee: Optional[str] = None, date: Optional[str] = None) -> RunSnapshot:
        run_id = self.repo.next_run_id()
        self.repo.set_current(employee, run_id)
        logger.info("Run %s started for %s (date=%s)", run_id, employee or "default sheet", date)

        try:
            records = await self.source.fetch_tasks(employee)
        except (TaskSourceError, NotConfigured) as exc:
            failed = finalize(initial_snapshot(run_id, [], employee, date), RunStatus.FAILED, str(exc))
            self.repo.save(failed)
            logger.error("Run %s aborted: %s", run_id, exc)
            raise

        selected, date = self.select_records(records, date, self.auto_select_first_date)
        snapshot = initial_snapshot(run_id, selected, employee, date)
        if not selected:
            snapshot = finalize(snapshot, RunStatus.EMPTY, EMPTY_MESSAGE)
        self.repo.save(snapshot)
        return snapshot

    async def execute(self, snapshot: RunSnapshot) -> RunSnapshot:
        records = [item.record for item in snapshot.items]
        superseded = False
        events = self.pipeline.run(records, snapshot.run_id)
        try:
            async for event in events:
                if not self.repo.apply_event(event):
                    superseded = True
                    break
        except EmptyResult:
            final = finalize(snapshot, RunStatus.EMPTY, EMPTY_MESSAGE)
        except Exception as exc:
            latest = self.repo.get(snapshot.run_id) or snapshot
            self.repo.save(finalize(latest, RunStatus.FAILED, str(exc)))
            logger.exception("Run %s aborted", snapshot.run_id)
            raise
        else:
            latest = self.repo.get(snapshot.run_id) or snapshot
            if superseded:
                logger.info("Run %s stopped: a newer run replaced it", snapshot.run_id)
                final = finalize(latest, RunStatus.FAILED, SUPERSEDED_MESSAGE)
            else:
                final = finalize(latest, RunStatus.DONE)
        finally:
            await events.aclose()

        self.repo.save(final)
        logger.info("Run %s finished with status %s", final.run_id, final.status.value)
        return final

    @staticmethod
    def select_records(
        records: List[TaskRecord], date: Optional[str], auto_select_first_date: bool = False
    ) -> Tuple[List[TaskRecord], Optional[str]]:
        """Pick the records for one date.

        An explicit date wins. Without one, either the first date in sheet
        order is chosen (``auto_select_first_date``) or every record is kept.
        """
        if not date and auto_select_first_date:
            date = next((r.date for r in records if r.date), None)
        if not date:
            return list(records), None
        return [r for r in records if r.date == date], date


def abort_run(repo: Repo, run_id: int, error: str) -> Optional[RunSnapshot]:
    """Fail a stored run that never reached the pipeline."""
    snapshot = repo.get(run_id)
    if snapshot is None:
        return None
    failed = finalize(snapshot, RunStatus.FAILED, error)
    repo.save(failed)
    logger.error("Run %s failed before analysis: %s", run_id, error)
    return failed


def run_stored(run_id: int, repo: Repo, factory: Optional[Callable[[Repo], Analyzer]] = None) -> RunSnapshot:
    """Worker entry: load a queued run and drive it to a terminal status."""
    try:
        analyzer = (factory or build_analyzer)(repo)
        snapshot = repo.get(run_id)
        if snapshot is None:
            raise LookupError(f"Unknown run {run_id}")
    except Exception as exc:
        abort_run(repo, run_id, str(exc))
        raise
    return asyncio.run(analyzer.execute(snapshot))


def build_analyzer(repo: Optional[Repo] = None) -> Analyzer:
    pipeline = AnalysisPipeline(
        LLM.from_settings(settings),
        RetryPolicy(max_attempts=settings.retry_max_attempts, base_delay=settings.retry_base_delay),
        pacing=settings.pacing_seconds,
    )
    return Analyzer(
        SheetsClient.from_settings(settings),
        pipeline,
        repo or Repo(),
        auto_select_first_date=settings.auto_select_first_date,
    )
