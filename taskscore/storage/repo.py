import logging
from typing import Optional

import orjson
import redis

from ..config import settings
from ..models import RunEvent, RunSnapshot
from ..state import apply_event
from .schema import RunRecord

logger = logging.getLogger(__name__)

DEFAULT_EMPLOYEE = "_default"


class Repo:
    def __init__(self, client=None):
        self.r = client if client is not None else redis.from_url(settings.redis_url, decode_responses=True)

    def _key(self, run_id: int) -> str:
        return f"run:{run_id}"

    def _current_key(self, employee: Optional[str]) -> str:
        return f"run:current:{employee or DEFAULT_EMPLOYEE}"

    def next_run_id(self) -> int:
        return int(self.r.incr("run:seq"))

    def set_current(self, employee: Optional[str], run_id: int):
        self.r.set(self._current_key(employee), str(run_id))

    def current_run_id(self, employee: Optional[str]) -> Optional[int]:
        value = self.r.get(self._current_key(employee))
        return int(value) if value else None

    def save(self, snapshot: RunSnapshot):
        rec = RunRecord(
            run_id=snapshot.run_id,
            employee=snapshot.employee,
            status=snapshot.status.value,
            error=snapshot.error,
            snapshot_json=orjson.dumps(snapshot.model_dump(mode="json")).decode(),
        )
        self.r.hset(self._key(rec.run_id), mapping={
            "employee": rec.employee or "",
            "status": rec.status,
            "error": rec.error or "",
            "snapshot_json": rec.snapshot_json,
        })

    def get_record(self, run_id: int) -> RunRecord | None:
        data = self.r.hgetall(self._key(run_id))
        if not data:
            return None
        return RunRecord(run_id=run_id, employee=data.get("employee") or None,
                         status=data.get("status", "RUNNING"),
                         error=data.get("error") or None,
                         snapshot_json=data["snapshot_json"])

    def get(self, run_id: int) -> RunSnapshot | None:
        rec = self.get_record(run_id)
        if rec is None:
            return None
        return RunSnapshot.model_validate(orjson.loads(rec.snapshot_json))

    def current(self, employee: Optional[str]) -> RunSnapshot | None:
        run_id = self.current_run_id(employee)
        return self.get(run_id) if run_id is not None else None

    def apply_event(self, event: RunEvent) -> bool:
        """Fold ``event`` into its run. Events from superseded runs are dropped."""
        snapshot = self.get(event.run_id)
        if snapshot is None:
            raise KeyError(f"Unknown run {event.run_id}")
        if self.current_run_id(snapshot.employee) != event.run_id:
            logger.info("Dropping event for superseded run %s (task %s)", event.run_id, event.record_id)
            return False
        self.save(apply_event(snapshot, event))
        return True
