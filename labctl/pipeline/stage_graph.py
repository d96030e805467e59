"""
Stage Graph
===========
Generic runner for a small, fixed dependency graph of async stages.

Execution model:
    1. Stages run in registration order (which is a topological order).
    2. Consecutive stages sharing a ``group`` are independent of each other;
       with concurrent=True they run together via asyncio.gather, otherwise
       one after another. Either way every member is attempted and results
       are appended to the report in declaration order before the next
       group starts.
    3. A stage whose dependency failed (including a cascaded skip) is not
       executed; a synthetic skip StepResult is recorded instead, citing
       the first failed dependency in ``depends_on`` order.
    4. An action raising Halt(result) records ``result`` and stops the
       graph after the current group. Halting is not a failure.
    5. asyncio.CancelledError records a ``cancelled`` StepResult for every
       stage that was running and propagates.

Actions never raise for tool failures; they return a failed StepResult.
An unexpected exception from an action is recorded as a tool failure so
the report always holds one result per executed stage.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from labctl.core.constants import MSG_CANCELLED
from labctl.core.errors import StageGraphError
from labctl.models.rebuild_report import RebuildReport
from labctl.models.step_result import ErrorKind, Phase, StepResult, utc_now

logger = logging.getLogger(__name__)

StageAction = Callable[[], Awaitable[StepResult]]


class Halt(Exception):
    """Raised by a stage action to record ``result`` and stop the graph."""

    def __init__(self, result: StepResult) -> None:
        self.result = result
        super().__init__(result.error_message or "halted")


@dataclass
class Stage:
    name: str
    phase: Phase
    service: str
    action: StageAction
    depends_on: Tuple[str, ...] = ()
    skip_reasons: Dict[str, str] = field(default_factory=dict)
    group: Optional[str] = None
    step: Optional[int] = None
    title: str = ""

    def skip_reason(self, dependency: str) -> str:
        return self.skip_reasons.get(
            dependency, f"skipped due to upstream failure: {dependency} failed"
        )


@dataclass
class GraphOutcome:
    results: Dict[str, StepResult] = field(default_factory=dict)
    halted: bool = False

    def failed(self, name: str) -> bool:
        result = self.results.get(name)
        return result is not None and not result.success


class StageGraph:
    """Ordered stage registry plus the runner that executes it."""

    def __init__(self, total_steps: Optional[int] = None) -> None:
        self._stages: List[Stage] = []
        self.total_steps = total_steps

    @property
    def stages(self) -> List[Stage]:
        return list(self._stages)

    def add(self, stage: Stage) -> "StageGraph":
        """
        Register ``stage``.

        Raises
        ------
        StageGraphError
            Duplicate name, unknown dependency, or a dependency on a member
            of the same group.
        """
        known = {s.name: s for s in self._stages}
        if stage.name in known:
            raise StageGraphError(f"duplicate stage name: {stage.name}")
        for dependency in stage.depends_on:
            if dependency not in known:
                raise StageGraphError(
                    f"stage {stage.name} depends on unregistered stage {dependency}"
                )
            if stage.group is not None and known[dependency].group == stage.group:
                raise StageGraphError(
                    f"stage {stage.name} depends on {dependency} in its own group {stage.group}"
                )
        unknown = set(stage.skip_reasons) - set(stage.depends_on)
        if unknown:
            raise StageGraphError(
                f"stage {stage.name} has skip reasons for non-dependencies: {sorted(unknown)}"
            )
        self._stages.append(stage)
        return self

    def groups(self) -> List[List[Stage]]:
        """Stages batched into execution groups, in registration order."""
        batches: List[List[Stage]] = []
        for stage in self._stages:
            if batches and stage.group is not None and batches[-1][0].group == stage.group:
                batches[-1].append(stage)
            else:
                batches.append([stage])
        return batches

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------
    def _prefix(self, stage: Stage) -> str:
        if stage.step is None or self.total_steps is None:
            return f"[{stage.name}]"
        return f"[{stage.step}/{self.total_steps}]"

    def _log_result(self, stage: Stage, result: StepResult) -> None:
        prefix = self._prefix(stage)
        label = stage.title or stage.name
        if result.is_skipped:
            logger.warning("%s %s: %s", prefix, label, result.error_message)
        elif result.success:
            logger.info("%s %s done (%.1fs)", prefix, label, result.duration)
        else:
            logger.error("%s %s failed: %s", prefix, label, result.error_message)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    @staticmethod
    def _cancelled(stage: Stage, start_time=None) -> StepResult:
        return StepResult.from_outcome(
            stage.phase,
            stage.service,
            start_time or utc_now(),
            error=asyncio.CancelledError(),
            error_kind=ErrorKind.CANCELLED,
            message=MSG_CANCELLED,
        )

    def _dependency_failure(self, stage: Stage, outcome: GraphOutcome) -> Optional[str]:
        for dependency in stage.depends_on:
            if outcome.failed(dependency):
                return stage.skip_reason(dependency)
        return None

    async def _execute(self, stage: Stage, outcome: GraphOutcome) -> Tuple[StepResult, bool]:
        """Run one stage; returns (result, halted). Only CancelledError escapes."""
        reason = self._dependency_failure(stage, outcome)
        if reason is not None:
            return StepResult.skipped(stage.phase, stage.service, reason), False

        logger.info("%s %s...", self._prefix(stage), stage.title or stage.name)
        start_time = utc_now()
        try:
            return await stage.action(), False
        except Halt as halt:
            return halt.result, True
        except Exception as e:
            logger.exception("Stage %s raised unexpectedly", stage.name)
            return StepResult.from_outcome(
                stage.phase, stage.service, start_time, error=e,
                message=f"{stage.name} raised {type(e).__name__}: {e}",
            ), False

    def _record(self, stage: Stage, result: StepResult,
                report: RebuildReport, outcome: GraphOutcome) -> None:
        outcome.results[stage.name] = result
        report.add_result(result)
        self._log_result(stage, result)

    async def _run_sequential(self, group: List[Stage], report: RebuildReport,
                              outcome: GraphOutcome) -> bool:
        halted = False
        for stage in group:
            start_time = utc_now()
            try:
                result, stage_halted = await self._execute(stage, outcome)
            except asyncio.CancelledError:
                self._record(stage, self._cancelled(stage, start_time), report, outcome)
                raise
            self._record(stage, result, report, outcome)
            halted = halted or stage_halted
        return halted

    async def _run_concurrent(self, group: List[Stage], report: RebuildReport,
                              outcome: GraphOutcome) -> bool:
        start_time = utc_now()
        tasks = [asyncio.ensure_future(self._execute(s, outcome)) for s in group]
        try:
            executed = await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            for stage, task in zip(group, tasks):
                if task.cancelled() or task.exception() is not None:
                    self._record(stage, self._cancelled(stage, start_time), report, outcome)
                else:
                    self._record(stage, task.result()[0], report, outcome)
            raise

        halted = False
        for stage, (result, stage_halted) in zip(group, executed):
            self._record(stage, result, report, outcome)
            halted = halted or stage_halted
        return halted

    async def run(self, report: RebuildReport, concurrent: bool = False) -> GraphOutcome:
        """
        Execute every stage, appending results to ``report``.

        Parameters
        ----------
        report : RebuildReport
            Open (not finalized) report receiving one result per stage.
        concurrent : bool
            Run members of a group together.

        Returns
        -------
        GraphOutcome
            Results by stage name; ``halted`` when an action raised Halt.
        """
        outcome = GraphOutcome()
        for group in self.groups():
            if concurrent and len(group) > 1:
                halted = await self._run_concurrent(group, report, outcome)
            else:
                halted = await self._run_sequential(group, report, outcome)
            if halted:
                outcome.halted = True
                break
        return outcome
