"""
Shared fixtures: lab settings rooted in tmp_path and StepResult helpers.
"""
from datetime import datetime, timedelta, timezone

import pytest

from labctl.core.config import LabSettings, RepoPaths
from labctl.models.step_result import Phase, StepResult


@pytest.fixture
def settings(tmp_path):
    root = tmp_path / "lab"
    repos = RepoPaths(
        xatu_cbt=root / "xatu-cbt",
        cbt=root / "cbt",
        cbt_api=root / "cbt-api",
        lab_backend=root / "lab-backend",
        lab=root / "lab",
    )
    return LabSettings(
        lab_root=root,
        state_dir=tmp_path / "state",
        repos=repos,
        networks=["mainnet", "sepolia"],
        readiness_timeout=0.2,
        readiness_poll_interval=0.01,
    )


def make_result(service="cbt", phase=Phase.BUILD, success=True, stderr="", stdout="",
                message="", start=None):
    start = start or datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
    return StepResult(
        phase=phase,
        service=service,
        success=success,
        error_message=message or ("" if success else f"{service} failed"),
        exit_code=0 if success else 2,
        start_time=start,
        end_time=start + timedelta(seconds=1.5),
        stdout=stdout,
        stderr=stderr,
    )
