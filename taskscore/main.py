import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import settings
from .errors import DispatchFailure, GenericFetchFailure, NotConfigured, PermissionDenied, TaskScoreError
from .models import ErrorResponse
from .routers import runs

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

PERMISSION_REMEDIATION = [
    "In your Google Sheet, click Share and set General access to 'Anyone with the link' with the Viewer role.",
    "Ensure the Google Sheets API is enabled for the API key's Google Cloud project: "
    "https://console.cloud.google.com/apis/library/sheets.googleapis.com",
]

STATUS_CODES = {
    NotConfigured: 503,
    PermissionDenied: 403,
    GenericFetchFailure: 502,
    DispatchFailure: 503,
}

app = FastAPI(title="Task Score API", version="1.0.0")
app.include_router(runs.router)


@app.exception_handler(TaskScoreError)
async def task_score_error_handler(request: Request, exc: TaskScoreError):
    remediation = PERMISSION_REMEDIATION if isinstance(exc, PermissionDenied) else []
    body = ErrorResponse(error=exc.code, message=str(exc), retry=exc.retry, remediation=remediation)
    return JSONResponse(status_code=STATUS_CODES.get(type(exc), 502), content=body.model_dump())
