"""Immutable run-state transitions.

The pipeline never touches the working set directly. It emits ``RunEvent``
values and whoever owns the current ``RunSnapshot`` folds them in here,
getting a fresh snapshot back each time.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .models import AnalysisState, RunEvent, RunItem, RunSnapshot, RunStatus, TaskRecord

logger = logging.getLogger(__name__)


def initial_snapshot(
    run_id: int,
    records: Iterable[TaskRecord],
    employee: Optional[str] = None,
    date: Optional[str] = None,
) -> RunSnapshot:
    items = [RunItem(record=record) for record in records]
    status = RunStatus.RUNNING if items else RunStatus.EMPTY
    return RunSnapshot(run_id=run_id, employee=employee, date=date, status=status, items=items)


def apply_event(snapshot: RunSnapshot, event: RunEvent) -> RunSnapshot:
    if event.run_id != snapshot.run_id:
        logger.debug("Discarding event for stale run %s (current %s)", event.run_id, snapshot.run_id)
        return snapshot

    items = list(snapshot.items)
    for index, item in enumerate(items):
        if item.record.id != event.record_id:
            continue
        if item.state.terminal:
            logger.warning(
                "Ignoring %s for record %s: already %s", event.state.value, event.record_id, item.state.value
            )
            return snapshot
        items[index] = item.model_copy(
            update={"state": event.state, "result": event.result, "error": event.error}
        )
        return snapshot.model_copy(update={"items": items})

    raise KeyError(f"Record {event.record_id} is not part of run {snapshot.run_id}")


def finalize(snapshot: RunSnapshot, status: RunStatus, error: Optional[str] = None) -> RunSnapshot:
    """Close a run. Anything left non-terminal is marked failed."""
    items = [
        item
        if item.state.terminal
        else item.model_copy(update={"state": AnalysisState.FAILED, "result": None, "error": error or "Run ended"})
        for item in snapshot.items
    ]
    return snapshot.model_copy(update={"items": items, "status": status, "error": error})
