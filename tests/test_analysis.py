"""
Report Analysis Tests
=====================
Re-diagnosis of stored reports and the failure history overview.
"""
from labctl.diagnostic.analysis import diagnose_report, summarize_history
from labctl.diagnostic.patterns import Confidence, ErrorPattern, PatternCatalogBuilder
from labctl.models.rebuild_report import RebuildReport
from labctl.models.step_result import Phase, StepResult

from tests.conftest import make_result


def _report(*results):
    report = RebuildReport()
    for r in results:
        report.add_result(r)
    report.finalize()
    return report


def test_only_failed_steps_are_diagnosed():
    report = _report(
        make_result("xatu-cbt"),
        make_result("cbt-api", success=False, stderr="server.go:4: undefined: Handler"),
    )
    diagnosed = diagnose_report(report)
    assert len(diagnosed) == 1
    assert diagnosed[0].result.service == "cbt-api"
    assert diagnosed[0].best.pattern_name == "go-undefined-identifier"


def test_unrecognised_failure_keeps_raw_error():
    report = _report(make_result("cbt", success=False, stderr="mystery", message="cbt exploded"))
    item = diagnose_report(report)[0]
    assert item.diagnoses == []
    assert item.best is None
    assert item.to_dict()["error_message"] == "cbt exploded"


def test_cascaded_skip_has_no_diagnosis():
    report = _report(StepResult.skipped(Phase.BUILD, "cbt-api", "skipped due to upstream failure"))
    assert diagnose_report(report)[0].diagnoses == []


def test_all_matches_with_custom_matcher():
    matcher = PatternCatalogBuilder().add_patterns([
        ErrorPattern.create("m", hint="m", contains=["boom"], confidence=Confidence.MEDIUM),
        ErrorPattern.create("h", hint="h", pattern="boom", confidence=Confidence.HIGH),
    ]).build()
    report = _report(make_result("cbt", success=False, stderr="boom"))

    best_only = diagnose_report(report, matcher=matcher)
    ranked = diagnose_report(report, matcher=matcher, all_matches=True)

    assert [d.pattern_name for d in best_only[0].diagnoses] == ["h"]
    assert [d.pattern_name for d in ranked[0].diagnoses] == ["h", "m"]


def test_summarize_history_filters_and_omits_clean_reports():
    clean = _report(make_result("cbt"))
    api_failed = _report(make_result("cbt-api", success=False, message="api broke"),
                         make_result("cbt", success=False))
    cbt_failed = _report(make_result("cbt", success=False, message="cbt broke"))

    entries = summarize_history([clean, api_failed, cbt_failed])
    assert [e.report_id for e in entries] == [api_failed.id, cbt_failed.id]
    assert entries[0].failed_services == ["cbt-api", "cbt"]
    assert entries[0].first_error == "api broke"
    assert entries[0].total_count == 2

    only_api = summarize_history([clean, api_failed, cbt_failed], service="cbt-api")
    assert [e.report_id for e in only_api] == [api_failed.id]
    assert only_api[0].failed_count == 1
