"""
Rebuild Report Model
====================
Pydantic model aggregating every StepResult of one rebuild run.

Lifecycle:
    1. Created at pipeline start (id + start_time assigned)
    2. Grows by add_result() in execution order
    3. finalize() exactly once, also on short-circuit exits
    4. Handed to the summary renderer and the diagnostic store

Before finalize() the summary fields (end_time, success, failed_count,
total_count) are None. After finalize() the report is read-only.

Used by:
    - RebuildPipeline to record stage outcomes
    - DiagnosticStore to persist / reload runs
    - diagnostic.analysis to re-diagnose failed steps
"""
import secrets
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from labctl.core.errors import ReportFinalizedError
from labctl.models.step_result import StepResult, utc_now


def generate_report_id() -> str:
    """Random 16-character hex id."""
    return secrets.token_hex(8)


class RebuildReport(BaseModel):
    id: str = Field(default_factory=generate_report_id)
    start_time: datetime = Field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    results: List[StepResult] = Field(default_factory=list)

    # --- Summary (set by finalize) ---
    success: Optional[bool] = None
    failed_count: Optional[int] = None
    total_count: Optional[int] = None

    @property
    def is_finalized(self) -> bool:
        return self.total_count is not None

    @property
    def duration(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    def add_result(self, result: StepResult) -> None:
        if self.is_finalized:
            raise ReportFinalizedError(f"report {self.id} is finalized")
        self.results.append(result)

    def finalize(self) -> None:
        """Compute end_time, success, failed_count and total_count."""
        if self.is_finalized:
            raise ReportFinalizedError(f"report {self.id} already finalized")
        self.end_time = utc_now()
        self.total_count = len(self.results)
        self.failed_count = len(self.failed())
        self.success = self.failed_count == 0

    def failed(self) -> List[StepResult]:
        return [r for r in self.results if not r.success]

    def succeeded(self) -> List[StepResult]:
        return [r for r in self.results if r.success]

    def has_failures(self) -> bool:
        return any(not r.success for r in self.results)

    def first_error(self) -> Optional[StepResult]:
        return next((r for r in self.results if not r.success), None)
