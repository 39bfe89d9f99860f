from pydantic import BaseModel
from typing import Optional

class RunRecord(BaseModel):
    run_id: int
    employee: Optional[str] = None
    status: str  # RUNNING | DONE | EMPTY | FAILED
    error: Optional[str] = None
    snapshot_json: str  # orjson string of RunSnapshot
