import logging
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from sqlriver.river import SqlRiver
from sqlriver.schemas.sync import PaginatedCycleResults, RiverStatusResponse

log = logging.getLogger(__name__)
router = APIRouter()

def get_river(request: Request) -> SqlRiver:
    river = getattr(request.app.state, "river", None)
    if river is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="River is not configured"
        )
    return river

@router.get("/status", response_model=RiverStatusResponse)
async def river_status(river: SqlRiver = Depends(get_river)):
    """Current scheduler state of the river."""
    return river.status()

@router.get("/runs", response_model=PaginatedCycleResults)
async def list_runs(
    river: SqlRiver = Depends(get_river),
    limit: int = Query(20, ge=1, le=100)
):
    """Most recent cycle results, newest first."""
    results = river.recent_results()
    return PaginatedCycleResults(data=results[:limit], total=len(results))

@router.post("/start", response_model=RiverStatusResponse)
def start_river(river: SqlRiver = Depends(get_river)):
    """Start background scheduling; no-op when already running, waits for a cycle still finishing after a stop."""
    river.start()
    return river.status()

@router.post("/stop", response_model=RiverStatusResponse)
async def stop_river(river: SqlRiver = Depends(get_river)):
    """Request a graceful halt; a running cycle stops at the next row."""
    log.info("River stop requested via API")
    river.stop()
    return river.status()
