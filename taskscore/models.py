from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MEETS_CRITERIA = "Meets criteria"
NEEDS_IMPROVEMENT = "Needs improvement"
STATUS_LABELS = (MEETS_CRITERIA, NEEDS_IMPROVEMENT)


class AnalysisState(str, Enum):
    PENDING = "PENDING"
    ANALYZING = "ANALYZING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        return self in (AnalysisState.COMPLETED, AnalysisState.FAILED)


class RunStatus(str, Enum):
    RUNNING = "RUNNING"
    DONE = "DONE"
    EMPTY = "EMPTY"
    FAILED = "FAILED"


class TaskRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    text: str
    task: Optional[str] = None
    date: Optional[str] = None
    category: Optional[str] = None
    situation: Optional[str] = None
    behavior: Optional[str] = None
    impact: Optional[str] = None
    action: Optional[str] = None


class AnalysisResult(BaseModel):
    """Evaluator verdict for one task. Built only from a fully valid payload."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    match_percentage: int = Field(alias="matchPercentage", ge=0, le=100)
    status: Literal["Meets criteria", "Needs improvement"]
    rationale: str = Field(min_length=1)

    @field_validator("match_percentage", mode="before")
    @classmethod
    def _numeric_score(cls, value):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("matchPercentage must be a number")
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError("matchPercentage must be a whole number")
            return int(value)
        return value

    @field_validator("status", mode="before")
    @classmethod
    def _known_label(cls, value):
        if not isinstance(value, str):
            raise ValueError("status must be a string")
        for label in STATUS_LABELS:
            if value.strip().lower() == label.lower():
                return label
        raise ValueError(f"status must be one of {STATUS_LABELS}")

    @field_validator("rationale", mode="before")
    @classmethod
    def _text_rationale(cls, value):
        if not isinstance(value, str):
            raise ValueError("rationale must be a string")
        return value.strip()


class RunEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: int
    record_id: int
    state: AnalysisState
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None


class RunItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    record: TaskRecord
    state: AnalysisState = AnalysisState.PENDING
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None


class RunSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: int
    employee: Optional[str] = None
    date: Optional[str] = None
    status: RunStatus = RunStatus.RUNNING
    items: List[RunItem] = Field(default_factory=list)
    error: Optional[str] = None


# API payloads

class StartRunRequest(BaseModel):
    employee: Optional[str] = None
    date: Optional[str] = None


class Progress(BaseModel):
    analyzed: int
    failed: int
    total: int
    percent: float


class RunResponse(BaseModel):
    run: RunSnapshot
    progress: Progress


class EmployeesResponse(BaseModel):
    employees: List[str]


class DatesResponse(BaseModel):
    dates: List[str]


class ErrorResponse(BaseModel):
    error: str
    message: str
    retry: bool
    remediation: List[str] = Field(default_factory=list)
