"""
GET /reports...
Stored rebuild reports and their diagnoses.

    GET /reports                       newest first (?limit=&service=)
    GET /reports/latest                most recent full report
    GET /reports/history               failed runs overview (?service=)
    GET /reports/{id}                  full report
    GET /reports/{id}/diagnosis        hints for failed steps (?all=)
    GET /reports/{id}/summary          plain-text step table
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from labctl.api.dependencies import get_store
from labctl.core.errors import PersistenceError, ReportNotFoundError
from labctl.core.output_formatter import format_build_summary
from labctl.diagnostic.analysis import diagnose_report, summarize_history
from labctl.models.rebuild_report import RebuildReport
from labctl.services.diagnostic_store import DiagnosticStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports")


class ReportSummary(BaseModel):
    id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    success: Optional[bool] = None
    failed_count: Optional[int] = None
    total_count: Optional[int] = None

    @classmethod
    def from_report(cls, report: RebuildReport) -> "ReportSummary":
        return cls(
            id=report.id,
            start_time=report.start_time,
            end_time=report.end_time,
            success=report.success,
            failed_count=report.failed_count,
            total_count=report.total_count,
        )


def _load(store: DiagnosticStore, report_id: str) -> RebuildReport:
    try:
        return store.load(report_id)
    except ReportNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        logger.error("Failed to load report %s: %s", report_id, e)
        raise HTTPException(status_code=500, detail=str(e))


@router.get("", response_model=List[ReportSummary])
async def list_reports(
    limit: int = Query(20, ge=0),
    service: Optional[str] = None,
    store: DiagnosticStore = Depends(get_store),
):
    return [ReportSummary.from_report(r) for r in store.list(limit=limit, service=service)]


@router.get("/latest")
async def latest_report(store: DiagnosticStore = Depends(get_store)):
    try:
        report = store.latest()
    except ReportNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return report.model_dump(mode="json")


@router.get("/history")
async def report_history(
    limit: int = Query(20, ge=0),
    service: Optional[str] = None,
    store: DiagnosticStore = Depends(get_store),
):
    # limit counts history entries, not scanned reports; 0 means no limit
    entries = summarize_history(store.list(), service=service)
    if limit:
        entries = entries[:limit]
    return [e.to_dict() for e in entries]


@router.get("/{report_id}")
async def get_report(report_id: str, store: DiagnosticStore = Depends(get_store)):
    return _load(store, report_id).model_dump(mode="json")


@router.get("/{report_id}/diagnosis")
async def get_diagnosis(
    report_id: str,
    all: bool = False,
    store: DiagnosticStore = Depends(get_store),
):
    report = _load(store, report_id)
    diagnosed = diagnose_report(report, all_matches=all)
    return {
        "report_id": report.id,
        "failed_count": len(diagnosed),
        "failures": [d.to_dict() for d in diagnosed],
    }


@router.get("/{report_id}/summary", response_class=PlainTextResponse)
async def get_summary(report_id: str, store: DiagnosticStore = Depends(get_store)):
    return format_build_summary(_load(store, report_id))
