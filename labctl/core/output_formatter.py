"""
Output Formatter
================
Plain-text rendering of rebuild reports and diagnoses.

DETERMINISM CONTRACT:
  - This module NEVER reads environment variables.
  - Given the same report, it ALWAYS returns the same text.

Outputs:
    format_build_summary(report)  → step table + totals (+ diagnosis pointer)
    format_diagnosis(diagnosed)   → per-failed-step hint / suggestion blocks
    format_history(entries)       → one line per past failed rebuild
"""
from typing import Iterable, List

from labctl.diagnostic.analysis import HistoryEntry, StepDiagnosis
from labctl.models.rebuild_report import RebuildReport
from labctl.models.step_result import StepResult

# ---------------------------------------------------------------------------
# Status markers
# ---------------------------------------------------------------------------
MARK_OK = "✓"       # check mark
MARK_FAILED = "✗"   # ballot x
MARK_SKIPPED = "-"

DIAGNOSIS_POINTER = "Diagnose failures with: GET /reports/{id}/diagnosis"

_COLUMNS = ("", "PHASE", "SERVICE", "DURATION", "DETAILS")


def _status_mark(result: StepResult) -> str:
    if result.is_skipped:
        return MARK_SKIPPED
    return MARK_OK if result.success else MARK_FAILED


def _row(result: StepResult) -> List[str]:
    return [
        _status_mark(result),
        result.phase.value,
        result.service,
        f"{result.duration:.1f}s",
        result.error_message,
    ]


def _render_table(rows: List[List[str]]) -> List[str]:
    widths = [max(len(r[i]) for r in rows) for i in range(len(_COLUMNS) - 1)]
    lines = []
    for row in rows:
        cells = [cell.ljust(widths[i]) for i, cell in enumerate(row[:-1])]
        lines.append("  ".join(cells + [row[-1]]).rstrip())
    return lines


def format_build_summary(report: RebuildReport) -> str:
    """
    Tabular summary of every step in ``report``.

    A finalized report with failures ends with a pointer to the diagnosis
    route for its id.
    """
    lines = [f"Rebuild {report.id}"]
    rows = [list(_COLUMNS)] + [_row(r) for r in report.results]
    lines.extend(_render_table(rows))

    total = report.total_count if report.total_count is not None else len(report.results)
    failed = report.failed_count if report.failed_count is not None else len(report.failed())
    duration = report.duration
    totals = f"{total - failed}/{total} steps succeeded"
    if duration is not None:
        totals += f" in {duration:.1f}s"
    lines.append("")
    lines.append(totals)

    if report.has_failures():
        lines.append(DIAGNOSIS_POINTER.format(id=report.id))
    return "\n".join(lines)


def format_diagnosis(diagnosed: Iterable[StepDiagnosis]) -> str:
    """Hint and suggestion for each failed step; raw error when nothing matched."""
    blocks: List[str] = []

    for item in diagnosed:
        result = item.result
        header = f"{MARK_FAILED} {result.service} ({result.phase.value})"
        body = [header]
        if result.command:
            body.append(f"  Command: {result.command}")
        if result.exit_code:
            body.append(f"  Exit code: {result.exit_code}")

        if not item.diagnoses:
            body.append(f"  Error: {result.error_message or 'unknown error'}")
        for diagnosis in item.diagnoses:
            body.append(f"  [{diagnosis.confidence.value}] {diagnosis.pattern_name}")
            body.append(f"  Hint: {diagnosis.hint}")
            if diagnosis.suggestion:
                body.append("  Suggestion:")
                body.extend(f"    {line}" if line else "" for line in diagnosis.suggestion.splitlines())
        blocks.append("\n".join(body))

    if not blocks:
        return "No failures to diagnose."
    return "\n\n".join(blocks)


def format_history(entries: Iterable[HistoryEntry]) -> str:
    lines = [
        f"{e.start_time:%Y-%m-%d %H:%M:%S}  {e.report_id}  "
        f"{e.failed_count}/{e.total_count} failed  {', '.join(e.failed_services)}"
        for e in entries
    ]
    return "\n".join(lines) if lines else "No failed rebuilds recorded."
