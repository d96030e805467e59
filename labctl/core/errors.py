"""
Errors
======
Exception taxonomy for labctl.

Rebuild outcome classes:
    CascadedSkip       — recorded as a StepResult, never raised
    ToolFailure        — recorded as a StepResult, never raised
    ReadinessTimeout   — ReadinessTimeoutError inside the front-end stage,
                         recorded as a StepResult
    Cancellation       — RebuildCancelledError, raised from the pipeline
    PersistenceFailure — PersistenceError, logged by the pipeline

Only the aggregate RebuildFailedError / RebuildCancelledError ever leave a
pipeline run.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from labctl.models.rebuild_report import RebuildReport


class LabctlError(Exception):
    """Base class for all labctl errors."""


# ---------------------------------------------------------------------------
# Reports & diagnostics
# ---------------------------------------------------------------------------
class ReportFinalizedError(LabctlError, RuntimeError):
    """A finalized report was modified or finalized a second time."""


class InvalidPatternError(LabctlError, ValueError):
    """A catalog entry was rejected at registration time."""


class PersistenceError(LabctlError):
    """A rebuild report could not be written to the diagnostic store."""


class ReportNotFoundError(LabctlError, LookupError):
    """No stored report matches the requested id."""


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------
class ConfigGenerationError(LabctlError):
    """Service configuration files could not be generated."""


class ServiceLifecycleError(LabctlError):
    """A container restart or status query failed."""


class ReadinessTimeoutError(LabctlError, TimeoutError):
    """A service did not report healthy within its readiness window."""

    def __init__(self, service: str, timeout: float) -> None:
        self.service = service
        self.timeout = timeout
        super().__init__(f"{service} did not become ready after {timeout:g} seconds")


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------
class StageGraphError(LabctlError, ValueError):
    """The stage graph was declared inconsistently."""


class RebuildFailedError(LabctlError):
    """One or more rebuild steps failed. Carries the full finalized report."""

    def __init__(self, report: "RebuildReport") -> None:
        self.report = report
        self.failed_count = report.failed_count or 0
        self.total_count = report.total_count or 0
        super().__init__(
            f"rebuild failed: {self.failed_count} of {self.total_count} steps failed"
        )


class RebuildCancelledError(LabctlError):
    """The rebuild was interrupted before it completed."""

    def __init__(self, report: "RebuildReport") -> None:
        self.report = report
        super().__init__(f"rebuild {report.id} was cancelled")
