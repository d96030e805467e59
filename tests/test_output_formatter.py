"""
Output Formatter Tests
======================
Deterministic text for build summaries and diagnoses.
"""
from labctl.core.output_formatter import (
    MARK_FAILED,
    MARK_OK,
    MARK_SKIPPED,
    format_build_summary,
    format_diagnosis,
    format_history,
)
from labctl.diagnostic.analysis import HistoryEntry, diagnose_report
from labctl.models.rebuild_report import RebuildReport
from labctl.models.step_result import Phase, StepResult

from tests.conftest import make_result


def _report(*results):
    report = RebuildReport()
    for r in results:
        report.add_result(r)
    report.finalize()
    return report


def test_summary_lists_every_step_with_marks():
    report = _report(
        make_result("xatu-cbt", Phase.PROTO_GEN, success=False),
        StepResult.skipped(Phase.BUILD, "cbt-api", "skipped due to upstream failure"),
        make_result("cbt"),
    )
    text = format_build_summary(report)
    lines = text.splitlines()

    assert lines[0] == f"Rebuild {report.id}"
    assert lines[2].startswith(MARK_FAILED)
    assert lines[3].startswith(MARK_SKIPPED)
    assert lines[4].startswith(MARK_OK)
    assert "skipped due to upstream failure" in lines[3]
    assert "1/3 steps succeeded" in text
    assert f"/reports/{report.id}/diagnosis" in text


def test_summary_without_failures_has_no_pointer():
    text = format_build_summary(_report(make_result("cbt")))
    assert "diagnosis" not in text
    assert "1/1 steps succeeded" in text


def test_summary_is_deterministic():
    report = _report(make_result("cbt"), make_result("lab-backend", success=False))
    assert format_build_summary(report) == format_build_summary(report)


def test_format_diagnosis_with_hint_and_suggestion():
    report = _report(make_result("cbt", success=False, stderr="x.go:1: undefined: Foo"))
    text = format_diagnosis(diagnose_report(report))
    assert text.startswith(f"{MARK_FAILED} cbt (build)")
    assert "go-undefined-identifier" in text
    assert "Hint:" in text
    assert "Suggestion:" in text


def test_format_diagnosis_falls_back_to_raw_error():
    report = _report(make_result("cbt", success=False, stderr="???", message="cbt failed hard"))
    assert "Error: cbt failed hard" in format_diagnosis(diagnose_report(report))


def test_format_diagnosis_without_failures():
    assert format_diagnosis([]) == "No failures to diagnose."


def test_format_history():
    entry = HistoryEntry(
        report_id="abc", start_time=make_result().start_time, failed_count=1,
        total_count=8, failed_services=["cbt"], first_error="boom",
    )
    assert format_history([entry]) == "2024-05-01 12:00:00  abc  1/8 failed  cbt"
    assert format_history([]) == "No failed rebuilds recorded."
