import asyncio
import logging
import time
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from ..auth import require_token
from ..config import settings
from ..errors import DispatchFailure
from ..models import DatesResponse, EmployeesResponse, RunResponse, RunSnapshot, RunStatus, StartRunRequest
from ..services.analyzer import Analyzer, abort_run, build_analyzer
from ..services.metrics import Metrics
from ..services.sheets import SheetsClient
from ..storage.repo import Repo

logger = logging.getLogger(__name__)

router = APIRouter()
repo = Repo()


def get_repo() -> Repo:
    return repo


def get_source() -> SheetsClient:
    return SheetsClient.from_settings(settings)


def get_analyzer(store: Repo = Depends(get_repo)) -> Analyzer:
    return build_analyzer(store)


def get_dispatcher() -> Callable[[int], object]:
    from worker.celery_app import run_pipeline
    return run_pipeline.delay


def _response(snapshot: RunSnapshot) -> RunResponse:
    return RunResponse(run=snapshot, progress=Metrics.progress(snapshot))


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/employees", response_model=EmployeesResponse, dependencies=[Depends(require_token)])
async def list_employees(source: SheetsClient = Depends(get_source)):
    return EmployeesResponse(employees=await source.list_employees())


@router.get("/employees/{employee}/dates", response_model=DatesResponse, dependencies=[Depends(require_token)])
async def list_dates(employee: str, source: SheetsClient = Depends(get_source)):
    return DatesResponse(dates=await source.fetch_distinct_dates(employee))


@router.post("/runs", response_model=RunResponse, dependencies=[Depends(require_token)])
async def start_run(
    payload: StartRunRequest,
    analyzer: Analyzer = Depends(get_analyzer),
    dispatch: Callable[[int], object] = Depends(get_dispatcher),
):
    snapshot = await analyzer.start(payload.employee, payload.date)
    if snapshot.status == RunStatus.RUNNING:
        try:
            dispatch(snapshot.run_id)
        except Exception as exc:
            logger.exception("Run %s could not be queued", snapshot.run_id)
            abort_run(analyzer.repo, snapshot.run_id, f"Failed to queue run: {exc}")
            raise DispatchFailure(f"Failed to queue run {snapshot.run_id}: {exc}") from exc
        logger.info("Run %s queued with %d tasks", snapshot.run_id, len(snapshot.items))
    return _response(snapshot)


@router.get("/runs/current", response_model=RunResponse, dependencies=[Depends(require_token)])
async def current_run(employee: Optional[str] = Query(default=None), store: Repo = Depends(get_repo)):
    snapshot = store.current(employee)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No run for this employee")
    return _response(snapshot)


@router.get("/runs/{run_id}", response_model=RunResponse, dependencies=[Depends(require_token)])
async def get_run(run_id: int, longpoll: bool = False, store: Repo = Depends(get_repo)):
    snapshot = store.get(run_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Unknown run")

    deadline = time.time() + settings.max_status_longpoll_seconds
    while longpoll and snapshot.status == RunStatus.RUNNING and time.time() < deadline:
        await asyncio.sleep(1.0)
        snapshot = store.get(run_id) or snapshot

    return _response(snapshot)
