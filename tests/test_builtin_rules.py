"""
Built-in Rule Tests
===================
Real tool output samples against the shipped catalog.
"""
import pytest

from labctl.diagnostic.patterns import Confidence
from labctl.diagnostic.rules import (
    builtin_catalog,
    builtin_patterns,
    default_matcher,
    diagnose_output,
)
from labctl.diagnostic.patterns import ErrorPattern
from labctl.models.step_result import Phase


def test_catalog_names_are_unique():
    names = [p.name for p in builtin_patterns()]
    assert len(names) == len(set(names))


def test_every_rule_is_discriminating():
    assert all(p.is_discriminating for p in builtin_patterns())


def test_default_matcher_is_shared():
    assert default_matcher() is default_matcher()
    assert len(default_matcher()) == len(builtin_patterns())


def test_group_order_proto_first_docker_last():
    names = [p.name for p in default_matcher().patterns]
    assert names[0] == "proto-undefined-type"
    assert names.index("go-undefined-identifier") < names.index("ts-cannot-find-module")
    assert names.index("ts-cannot-find-module") < names.index("make-no-rule")
    assert names.index("make-no-rule") < names.index("clickhouse-not-ready")
    assert names[-1] == "docker-network-error"


@pytest.mark.parametrize("phase, stderr, expected", [
    (Phase.BUILD, "pkg/server.go:42:7: undefined: NewHandler", "go-undefined-identifier"),
    (Phase.BUILD, "main.go:3:2: \"fmt\" imported and not used", "go-imported-not-used"),
    (Phase.BUILD, "missing go.sum entry for module providing package x", "go-mod-tidy-needed"),
    (Phase.PROTO_GEN, "common.proto:4:1: Import \"types.proto\" was not found or had errors.",
     "proto-import-not-found"),
    (Phase.PROTO_GEN, "bash: protoc: command not found", "protoc-not-found"),
    (Phase.FRONTEND_GEN, "src/api.ts(3,10): error TS2305: Module has no exported member 'Foo'",
     "ts-type-error-2305"),
    (Phase.FRONTEND_GEN, "ERR_PNPM_OUTDATED_LOCKFILE Cannot install", "pnpm-specific-error"),
    (Phase.RESTART, "dial tcp 127.0.0.1:8123: connect: connection refused", "clickhouse-not-ready"),
    (Phase.RESTART, "listen tcp :8091: bind: address already in use", "port-already-in-use"),
    (Phase.BUILD, "write /var/lib/docker/tmp: no space left on device", "docker-no-space"),
])
def test_real_output_samples(phase, stderr, expected):
    diagnosis = diagnose_output("any", phase, stderr)
    assert diagnosis is not None
    assert diagnosis.pattern_name == expected


def test_too_many_errors_is_medium_and_loses_to_specific_error():
    stderr = "a.go:1: undefined: Foo\na.go:2: too many errors"
    diagnosis = diagnose_output("xatu-cbt", Phase.BUILD, stderr)
    assert diagnosis.pattern_name == "go-undefined-identifier"

    ranked = default_matcher().match_all(stderr, "xatu-cbt", Phase.BUILD)
    names = [d.pattern_name for d in ranked]
    assert "go-too-many-errors" in names
    assert ranked[-1].confidence == Confidence.MEDIUM


def test_phase_scoped_rules_do_not_leak():
    # TS rule only applies to front-end generation
    assert diagnose_output("lab", Phase.BUILD, "error TS2304: Cannot find name 'x'") is None


def test_unknown_output_has_no_diagnosis():
    assert diagnose_output("cbt", Phase.BUILD, "everything is fine") is None


def test_stdout_is_considered():
    diagnosis = diagnose_output("cbt", Phase.BUILD, "", "make: *** No rule to make target 'x'.")
    assert diagnosis.pattern_name == "make-no-rule"


def test_builtin_catalog_accepts_custom_rules():
    custom = ErrorPattern.create(
        "lab-custom", hint="custom", contains=["lab exploded"], confidence=Confidence.HIGH,
    )
    matcher = builtin_catalog().add_pattern(custom).build()
    assert matcher.match("the lab exploded").pattern_name == "lab-custom"
    assert len(default_matcher()) == len(builtin_patterns())
