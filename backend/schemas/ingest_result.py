from pydantic import BaseModel
from typing import Dict, List


class TypeReport(BaseModel):
    event_type: str  # e.g. "publish_message"
    attempted: int
    inserted: int
    dropped: int
    reasons: Dict[str, int] = {}


class IngestResult(BaseModel):
    run_id: str
    received: int
    unsupported: int
    statements: int
    rows_written: int
    reports: List[TypeReport] = []
