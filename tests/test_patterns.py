"""
Unit Tests — Pattern Matcher
============================
Scoring, filtering, tie-breaking and catalog assembly.
No built-in rules involved; every catalog here is assembled by hand.
"""
import re

import pytest

from labctl.core.errors import InvalidPatternError
from labctl.diagnostic.patterns import (
    Confidence,
    Diagnosis,
    ErrorPattern,
    PatternCatalogBuilder,
    PatternMatcher,
    score_pattern,
)
from labctl.models.step_result import Phase

from tests.conftest import make_result


def _p(name, confidence=Confidence.MEDIUM, **kwargs):
    return ErrorPattern.create(name, hint=f"{name} hint", suggestion=f"{name} fix",
                               confidence=confidence, **kwargs)


def _matcher(*patterns):
    return PatternCatalogBuilder().add_patterns(patterns).build()


# ===========================================================================
# 1. Scoring
# ===========================================================================
class TestScoring:

    def _score(self, pattern, text):
        return score_pattern(pattern, text, text.lower())

    def test_regex_on_raw_text(self):
        p = _p("a", Confidence.HIGH, pattern=r"undefined:\s*\w+")
        assert self._score(p, "undefined: Bar") == 10 + 5

    def test_regex_on_lowered_text_only(self):
        p = _p("a", Confidence.LOW, pattern=r"permission denied")
        assert self._score(p, "Permission Denied") == 8 + 1

    def test_regex_miss_excludes_despite_substrings(self):
        p = _p("a", pattern=r"nomatch", contains=["error"])
        assert self._score(p, "error everywhere") == 0

    def test_all_substrings_add_two_each(self):
        p = _p("a", contains=["connection refused", "8123"])
        assert self._score(p, "dial tcp :8123: Connection Refused") == 4 + 3

    def test_substring_only_partial_is_excluded(self):
        p = _p("a", contains=["connection refused", "6379"])
        assert self._score(p, "connection refused on 8123") == 0

    def test_regex_with_partial_substrings_keeps_regex_score(self):
        p = _p("a", Confidence.HIGH, pattern=r"timeout", contains=["timeout", "redis"])
        assert self._score(p, "timeout talking to clickhouse") == 10 + 5

    def test_regex_with_all_substrings(self):
        p = _p("a", Confidence.HIGH, pattern=r"timeout", contains=["redis"])
        assert self._score(p, "redis timeout") == 10 + 2 + 5

    def test_confidence_bonus(self):
        assert Confidence.HIGH.score_bonus == 5
        assert Confidence.MEDIUM.score_bonus == 3
        assert Confidence.LOW.score_bonus == 1

    def test_confidence_rank_ordering(self):
        assert Confidence.HIGH.rank > Confidence.MEDIUM.rank > Confidence.LOW.rank


# ===========================================================================
# 2. Match
# ===========================================================================
class TestMatch:

    def test_empty_and_whitespace_output(self):
        m = _matcher(_p("a", contains=["x"]))
        assert m.match("") is None
        assert m.match("   \n\t") is None
        assert m.match_all("  ") == []

    def test_no_entry_scores(self):
        m = _matcher(_p("a", pattern="foo"))
        assert m.match("bar") is None

    def test_returns_diagnosis_fields(self):
        m = _matcher(_p("a", Confidence.HIGH, pattern="boom"))
        d = m.match("boom")
        assert d == Diagnosis("a", "a hint", "a fix", Confidence.HIGH, True)

    def test_service_filter(self):
        m = _matcher(_p("a", pattern="boom", service="cbt"))
        assert m.match("boom", service="cbt-api") is None
        assert m.match("boom", service="cbt").pattern_name == "a"

    def test_phase_filter(self):
        m = _matcher(_p("a", pattern="boom", phase=Phase.BUILD))
        assert m.match("boom", phase=Phase.PROTO_GEN) is None
        assert m.match("boom", phase=Phase.BUILD).pattern_name == "a"

    def test_unfiltered_entry_applies_everywhere(self):
        m = _matcher(_p("a", pattern="boom"))
        assert m.match("boom", service="anything", phase=Phase.RESTART) is not None

    def test_high_confidence_wins_over_low(self):
        m = _matcher(
            _p("low", Confidence.LOW, pattern="boom"),
            _p("high", Confidence.HIGH, pattern="boom"),
        )
        assert m.match("boom").pattern_name == "high"

    def test_tie_goes_to_first_registered(self):
        m = _matcher(
            _p("first", pattern="boom"),
            _p("second", pattern="bo+m"),
        )
        assert m.match("boom").pattern_name == "first"

    def test_higher_score_beats_registration_order(self):
        m = _matcher(
            _p("regex-lowered", pattern="boom"),
            _p("regex-raw", pattern="BOOM"),
        )
        # "boom" only matches the lowered text (8), "BOOM" matches raw (10)
        assert m.match("BOOM").pattern_name == "regex-raw"

    def test_is_deterministic(self):
        m = _matcher(_p("a", pattern="x"), _p("b", contains=["x"]))
        assert m.match("x y z") == m.match("x y z")

    def test_end_to_end_example(self):
        p1 = _p("P1", Confidence.HIGH, pattern=r"undefined:\s*\w+", phase=Phase.BUILD)
        p2 = _p("P2", Confidence.MEDIUM, contains=["too many errors"])
        m = _matcher(p1, p2)

        d = m.match("foo.go:10: undefined: Bar", phase=Phase.BUILD)
        assert (d.pattern_name, d.confidence) == ("P1", Confidence.HIGH)

        d = m.match("too many errors\nundefined: X", phase=Phase.FRONTEND_GEN)
        assert (d.pattern_name, d.confidence) == ("P2", Confidence.MEDIUM)

    def test_match_result_uses_stderr_and_stdout(self):
        m = _matcher(_p("a", contains=["alpha", "omega"]))
        result = make_result(success=False, stderr="alpha", stdout="omega")
        assert m.match_result(result).pattern_name == "a"


# ===========================================================================
# 3. MatchAll
# ===========================================================================
class TestMatchAll:

    def test_sorted_by_confidence(self):
        m = _matcher(
            _p("low", Confidence.LOW, pattern="x"),
            _p("high", Confidence.HIGH, pattern="x"),
            _p("medium", Confidence.MEDIUM, pattern="x"),
        )
        assert [d.pattern_name for d in m.match_all("x")] == ["high", "medium", "low"]

    def test_stable_within_tier(self):
        m = _matcher(
            _p("E1", Confidence.MEDIUM, pattern="x"),
            _p("E2", Confidence.MEDIUM, contains=["x"]),
        )
        assert [d.pattern_name for d in m.match_all("x")] == ["E1", "E2"]

    def test_excludes_non_matching(self):
        m = _matcher(_p("a", pattern="x"), _p("b", pattern="y"))
        assert [d.pattern_name for d in m.match_all("x")] == ["a"]

    def test_match_all_result(self):
        m = _matcher(_p("a", pattern="x", phase=Phase.BUILD))
        result = make_result(phase=Phase.PROTO_GEN, success=False, stderr="x")
        assert m.match_all_result(result) == []


# ===========================================================================
# 4. Catalog assembly
# ===========================================================================
class TestCatalogBuilder:

    def test_rejects_non_discriminating_pattern(self):
        with pytest.raises(InvalidPatternError):
            PatternCatalogBuilder().add_pattern(_p("catch-all"))

    def test_rejects_duplicate_name(self):
        builder = PatternCatalogBuilder().add_pattern(_p("a", pattern="x"))
        with pytest.raises(InvalidPatternError, match="duplicate"):
            builder.add_pattern(_p("a", pattern="y"))

    def test_rejects_empty_name(self):
        with pytest.raises(InvalidPatternError):
            PatternCatalogBuilder().add_pattern(_p("", pattern="x"))

    def test_build_preserves_registration_order(self):
        m = _matcher(_p("a", pattern="x"), _p("b", pattern="y"), _p("c", pattern="z"))
        assert [p.name for p in m.patterns] == ["a", "b", "c"]
        assert len(m) == 3

    def test_built_matcher_is_unaffected_by_later_registration(self):
        builder = PatternCatalogBuilder().add_pattern(_p("a", pattern="x"))
        matcher = builder.build()
        builder.add_pattern(_p("b", pattern="x"))
        assert len(matcher) == 1

    def test_create_accepts_compiled_regex(self):
        p = _p("a", pattern=re.compile("boom", re.IGNORECASE))
        assert _matcher(p).match("BOOM").pattern_name == "a"

    def test_empty_catalog_matches_nothing(self):
        assert PatternMatcher().match("anything") is None
