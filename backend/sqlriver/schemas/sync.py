from typing import Optional, List
from pydantic import BaseModel

from sqlriver.constants.abort_reasons import AbortReason

class BatchContext(BaseModel):
    timestamp: int                    # epoch seconds, fixed at cycle start
    row_count: Optional[int] = None   # None when the source could not report it
    processed_count: int = 0

class CycleResult(BaseModel):
    batch_timestamp: int
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    rows_read: int = 0
    rows_written: int = 0
    rows_failed: int = 0
    deleted_stale: int = 0
    purged: bool = False
    aborted: bool = False
    abort_reason: Optional[AbortReason] = None
    abort_detail: Optional[str] = None

class RiverStatusResponse(BaseModel):
    river_name: str
    index: str
    doc_type: str
    running: bool
    run_count: int
    last_run: Optional[str] = None

class PaginatedCycleResults(BaseModel):
    data: List[CycleResult]
    total: int
