"""
POST /rebuild
Starts a full rebuild of the lab stack in the background.
Only one rebuild may be active at a time; a second request gets 409.
"""
import logging
import threading
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel

from labctl.api.dependencies import get_settings
from labctl.core.config import LabSettings
from labctl.core.errors import LabctlError, RebuildCancelledError, RebuildFailedError
from labctl.models.rebuild_report import RebuildReport
from labctl.models.step_result import utc_now
from labctl.pipeline.rebuild import run_rebuild

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Run tracking
# ---------------------------------------------------------------------------
class RebuildStatus(BaseModel):
    running: bool = False
    outcome: Optional[str] = None  # success | failed | cancelled | error
    report_id: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    failed_count: Optional[int] = None
    total_count: Optional[int] = None
    message: str = ""


class RebuildTracker:
    """State of the current or most recent rebuild run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.status = RebuildStatus()

    @property
    def running(self) -> bool:
        return self.status.running

    def begin(self) -> bool:
        """Mark a run as started; False if one is already active."""
        with self._lock:
            if self.status.running:
                return False
            self.status = RebuildStatus(running=True, started_at=utc_now(), message="rebuild in progress")
            return True

    def finish(self, outcome: str, report: Optional[RebuildReport] = None, message: str = "") -> None:
        with self._lock:
            self.status = self.status.model_copy(update={
                "running": False,
                "outcome": outcome,
                "report_id": report.id if report else None,
                "finished_at": utc_now(),
                "failed_count": report.failed_count if report else None,
                "total_count": report.total_count if report else None,
                "message": message,
            })


tracker = RebuildTracker()


async def execute_rebuild(settings: LabSettings, verbose: bool, concurrent: Optional[bool]) -> None:
    """Run the pipeline and record its outcome on the tracker."""
    try:
        report = await run_rebuild(settings, verbose=verbose, concurrent=concurrent)
        tracker.finish("success", report, "rebuild complete")
    except RebuildFailedError as e:
        tracker.finish("failed", e.report, str(e))
    except RebuildCancelledError as e:
        tracker.finish("cancelled", e.report, str(e))
    except LabctlError as e:
        logger.error("Rebuild aborted: %s", e)
        tracker.finish("error", message=str(e))
    finally:
        if tracker.running:
            tracker.finish("error", message="rebuild aborted unexpectedly")


# ---------------------------------------------------------------------------
# Route
# ---------------------------------------------------------------------------
class RebuildRequest(BaseModel):
    verbose: bool = False
    concurrent: Optional[bool] = None


@router.post("/rebuild", status_code=status.HTTP_202_ACCEPTED)
async def start_rebuild(
    background_tasks: BackgroundTasks,
    request: Optional[RebuildRequest] = None,
    settings: LabSettings = Depends(get_settings),
):
    request = request or RebuildRequest()
    if not tracker.begin():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="a rebuild is already running")

    logger.info("Rebuild requested (verbose=%s, concurrent=%s)", request.verbose, request.concurrent)
    background_tasks.add_task(execute_rebuild, settings, request.verbose, request.concurrent)
    return {"message": "rebuild started", "status": tracker.status.model_dump(mode="json")}
