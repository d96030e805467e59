"""
Step Result Model
=================
Pydantic model for the outcome of one rebuild stage.

Fields:
    phase            — pipeline phase the stage belongs to (Phase)
    service          — component the stage acted on (e.g. "cbt-api")
    success          — True if the stage completed without error
    error_message    — human-readable failure or note ("" on plain success)
    error_kind       — failure class (ErrorKind); NONE exactly when success,
                       TOOL_FAILURE when a failure names no class
    underlying_error — original exception, kept in memory only (never serialized)
    command          — command line that was executed, if any
    work_dir         — working directory of the command, if any
    exit_code        — process exit code (0 success, -1 when it never ran)
    start_time       — UTC time the stage started
    end_time         — UTC time the stage finished (== start_time for skips)
    stdout / stderr  — captured tool output, input for the pattern matcher

A StepResult is immutable: it is created exactly once per stage, or
synthetically for a cascaded skip.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class Phase(str, Enum):
    PROTO_GEN = "proto-gen"
    BUILD = "build"
    FRONTEND_GEN = "frontend-gen"
    CONFIG_GEN = "config-gen"
    RESTART = "restart"


class ErrorKind(str, Enum):
    NONE = "none"
    TOOL_FAILURE = "tool_failure"
    CASCADED_SKIP = "cascaded_skip"
    READINESS_TIMEOUT = "readiness_timeout"
    CANCELLED = "cancelled"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StepResult(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    phase: Phase
    service: str
    success: bool
    error_message: str = ""
    error_kind: ErrorKind = ErrorKind.NONE
    underlying_error: Optional[BaseException] = Field(default=None, exclude=True)
    command: str = ""
    work_dir: str = ""
    exit_code: int = 0
    start_time: datetime
    end_time: datetime
    stdout: str = ""
    stderr: str = ""

    @model_validator(mode="before")
    @classmethod
    def _fill_defaults(cls, data):
        if isinstance(data, dict):
            data = dict(data)
            if data.get("start_time") is None:
                data["start_time"] = utc_now()
            if data.get("end_time") is None:
                data["end_time"] = data["start_time"]
            # A failure always carries a failure class; a success never does.
            success = data.get("success")
            if success is True:
                data["error_kind"] = ErrorKind.NONE
            elif success is False and data.get("error_kind") in (None, ErrorKind.NONE):
                data["error_kind"] = ErrorKind.TOOL_FAILURE
        return data

    @computed_field
    @property
    def duration(self) -> float:
        """Seconds between start_time and end_time."""
        return (self.end_time - self.start_time).total_seconds()

    @property
    def combined_output(self) -> str:
        """stderr followed by stdout, the text the pattern matcher scores."""
        return f"{self.stderr}\n{self.stdout}"

    @property
    def is_skipped(self) -> bool:
        return self.error_kind == ErrorKind.CASCADED_SKIP

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------
    @classmethod
    def skipped(cls, phase: Phase, service: str, message: str,
                at: Optional[datetime] = None) -> "StepResult":
        """Synthetic failed result for a stage whose dependency failed."""
        now = at or utc_now()
        return cls(
            phase=phase,
            service=service,
            success=False,
            error_message=message,
            error_kind=ErrorKind.CASCADED_SKIP,
            exit_code=-1,
            start_time=now,
            end_time=now,
        )

    @classmethod
    def from_outcome(
        cls,
        phase: Phase,
        service: str,
        start_time: datetime,
        end_time: Optional[datetime] = None,
        error: Optional[BaseException] = None,
        error_kind: ErrorKind = ErrorKind.TOOL_FAILURE,
        message: str = "",
    ) -> "StepResult":
        """
        Result for an in-process action (config generation, restarts).

        ``error`` None means success; ``message`` overrides the text taken
        from ``error`` and may also annotate a success.
        """
        failed = error is not None
        return cls(
            phase=phase,
            service=service,
            success=not failed,
            error_message=message or (str(error) if failed else ""),
            error_kind=error_kind if failed else ErrorKind.NONE,
            underlying_error=error,
            exit_code=-1 if failed else 0,
            start_time=start_time,
            end_time=end_time or utc_now(),
        )

    def as_failure(self, message: str, error: Optional[BaseException] = None,
                   error_kind: ErrorKind = ErrorKind.TOOL_FAILURE) -> "StepResult":
        """Copy of this result marked failed, keeping captured output."""
        return self.model_copy(update={
            "success": False,
            "error_message": message,
            "error_kind": error_kind,
            "underlying_error": error if error is not None else self.underlying_error,
            "end_time": utc_now(),
        })
