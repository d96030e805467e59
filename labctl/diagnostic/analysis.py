"""
Report Analysis
===============
Re-diagnoses stored rebuild reports.

    diagnose_report()   → one StepDiagnosis per failed step of a report
    summarize_history() → compact failure overview across many reports

Both run the pattern matcher over the captured stderr/stdout of each failed
step; a step that no catalog entry recognises keeps its raw error message.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from labctl.diagnostic.patterns import Diagnosis, PatternMatcher
from labctl.diagnostic.rules import default_matcher
from labctl.models.rebuild_report import RebuildReport
from labctl.models.step_result import StepResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepDiagnosis:
    """A failed step paired with the diagnoses its output produced."""
    result: StepResult
    diagnoses: List[Diagnosis] = field(default_factory=list)

    @property
    def best(self) -> Optional[Diagnosis]:
        return self.diagnoses[0] if self.diagnoses else None

    def to_dict(self) -> dict:
        return {
            "phase": self.result.phase.value,
            "service": self.result.service,
            "error_message": self.result.error_message,
            "error_kind": self.result.error_kind.value,
            "exit_code": self.result.exit_code,
            "command": self.result.command,
            "diagnoses": [d.to_dict() for d in self.diagnoses],
        }


@dataclass(frozen=True)
class HistoryEntry:
    report_id: str
    start_time: datetime
    failed_count: int
    total_count: int
    failed_services: List[str]
    first_error: str

    def to_dict(self) -> dict:
        return {
            "report_id": self.report_id,
            "start_time": self.start_time.isoformat(),
            "failed_count": self.failed_count,
            "total_count": self.total_count,
            "failed_services": self.failed_services,
            "first_error": self.first_error,
        }


def diagnose_report(
    report: RebuildReport,
    matcher: Optional[PatternMatcher] = None,
    all_matches: bool = False,
) -> List[StepDiagnosis]:
    """
    Diagnose every failed step of a report.

    Parameters
    ----------
    report : RebuildReport
        Finalized (or in-progress) rebuild report.
    matcher : PatternMatcher, optional
        Defaults to the built-in catalog.
    all_matches : bool
        Return every ranked diagnosis instead of only the best one.

    Returns
    -------
    list[StepDiagnosis]
        In execution order. Cascaded skips carry no diagnoses since they
        produced no tool output.
    """
    matcher = matcher or default_matcher()
    diagnosed: List[StepDiagnosis] = []

    for result in report.failed():
        if all_matches:
            diagnoses = matcher.match_all_result(result)
        else:
            best = matcher.match_result(result)
            diagnoses = [best] if best is not None else []

        logger.debug(
            "Diagnosed %s/%s: %s",
            result.phase.value, result.service,
            diagnoses[0].pattern_name if diagnoses else "no match",
        )
        diagnosed.append(StepDiagnosis(result=result, diagnoses=diagnoses))

    return diagnosed


def summarize_history(
    reports: Iterable[RebuildReport], service: Optional[str] = None
) -> List[HistoryEntry]:
    """Failure overview per report; reports without (matching) failures are omitted."""
    entries: List[HistoryEntry] = []

    for report in reports:
        failed = report.failed()
        if service:
            failed = [r for r in failed if r.service == service]
        if not failed:
            continue

        entries.append(HistoryEntry(
            report_id=report.id,
            start_time=report.start_time,
            failed_count=len(failed),
            total_count=report.total_count if report.total_count is not None else len(report.results),
            failed_services=[r.service for r in failed],
            first_error=failed[0].error_message,
        ))

    return entries
