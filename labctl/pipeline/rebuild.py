"""
Rebuild Pipeline
================
The seven-stage full rebuild of the lab stack.

    [1/7] xatu-cbt-protos  proto generation                 always
    [2/7] xatu-cbt         build                            needs 1
    [3/7] cbt-api          proto regen + build              needs 2
    [4/7] cbt, lab-backend remaining binaries (one group)   always
    [5/7] configs          config generation                always
    [6/7] restart          restart all services             always; halts the
                                                            run when nothing is running
    [7/7] lab-frontend     wait for cbt-api, regenerate     needs 3 and 6
                           API client, restart front end

Failure handling:
    - A failing stage only skips its dependents; independent stages proceed.
    - The run raises one aggregate RebuildFailedError (failed/total) at the
      end, never the first error.
    - Cancellation is recorded, the report is finalized and saved, then
      RebuildCancelledError is raised.
    - A report that cannot be saved is logged, never raised.

Collaborators (duck-typed, see LabBuilder / DockerServiceLifecycle /
ConfigGenerator / DiagnosticStore for the concrete ones):
    builder.generate_xatu_cbt_protos(), build_xatu_cbt(), build_cbt_api(),
        build_cbt(), build_lab_backend(), build_lab_frontend()  → StepResult
    lifecycle.are_running() → bool, restart_all(verbose), restart(name),
        wait_ready()
    config_generator.generate()
    store.save(report)
"""
import asyncio
import logging
from typing import Any, Optional

from labctl.core.config import LabSettings, load_settings
from labctl.core.constants import (
    MSG_API_BUILD_FAILED,
    MSG_RESTART_FAILED,
    MSG_SERVICES_NOT_RUNNING,
    MSG_UPSTREAM_PROTOS_FAILED,
    MSG_UPSTREAM_XATU_CBT_FAILED,
    SERVICE_ALL,
    SERVICE_CBT,
    SERVICE_CBT_API,
    SERVICE_CONFIGS,
    SERVICE_LAB_BACKEND,
    SERVICE_LAB_FRONTEND,
    SERVICE_XATU_CBT,
    TOTAL_STEPS,
)
from labctl.core.errors import (
    ConfigGenerationError,
    PersistenceError,
    ReadinessTimeoutError,
    RebuildCancelledError,
    RebuildFailedError,
    ServiceLifecycleError,
)
from labctl.core.output_formatter import format_build_summary
from labctl.executor.lab_builder import LabBuilder
from labctl.models.rebuild_report import RebuildReport
from labctl.models.step_result import ErrorKind, Phase, StepResult, utc_now
from labctl.pipeline.stage_graph import Halt, Stage, StageGraph
from labctl.services.config_generator import ConfigGenerator
from labctl.services.diagnostic_store import DiagnosticStore
from labctl.services.service_lifecycle import DockerServiceLifecycle

logger = logging.getLogger(__name__)

# Stage names
STAGE_PROTOS = "xatu-cbt-protos"
STAGE_XATU_CBT = SERVICE_XATU_CBT
STAGE_CBT_API = SERVICE_CBT_API
STAGE_CBT = SERVICE_CBT
STAGE_LAB_BACKEND = SERVICE_LAB_BACKEND
STAGE_CONFIGS = SERVICE_CONFIGS
STAGE_RESTART = "restart"
STAGE_LAB_FRONTEND = SERVICE_LAB_FRONTEND


class RebuildPipeline:
    """One full rebuild run. Create a new instance per run."""

    def __init__(
        self,
        builder: Any,
        lifecycle: Any,
        config_generator: Any,
        store: Any,
        settings: LabSettings,
        verbose: bool = False,
        concurrent: bool = False,
    ) -> None:
        self.builder = builder
        self.lifecycle = lifecycle
        self.config_generator = config_generator
        self.store = store
        self.settings = settings
        self.verbose = verbose
        self.concurrent = concurrent
        self.report: Optional[RebuildReport] = None

    # ------------------------------------------------------------------
    # Stage actions
    # ------------------------------------------------------------------
    async def _generate_configs(self) -> StepResult:
        start_time = utc_now()
        try:
            self.config_generator.generate()
        except ConfigGenerationError as e:
            return StepResult.from_outcome(Phase.CONFIG_GEN, SERVICE_CONFIGS, start_time, error=e)
        return StepResult.from_outcome(Phase.CONFIG_GEN, SERVICE_CONFIGS, start_time)

    async def _restart_services(self) -> StepResult:
        start_time = utc_now()
        if not await self.lifecycle.are_running():
            raise Halt(StepResult.from_outcome(
                Phase.RESTART, SERVICE_ALL, start_time, message=MSG_SERVICES_NOT_RUNNING,
            ))
        try:
            await self.lifecycle.restart_all(self.verbose)
        except ServiceLifecycleError as e:
            return StepResult.from_outcome(Phase.RESTART, SERVICE_ALL, start_time, error=e)
        return StepResult.from_outcome(Phase.RESTART, SERVICE_ALL, start_time)

    async def _regenerate_frontend(self) -> StepResult:
        start_time = utc_now()
        timeout = self.settings.readiness_timeout
        try:
            await asyncio.wait_for(self.lifecycle.wait_ready(), timeout)
        except asyncio.TimeoutError:
            error = ReadinessTimeoutError(SERVICE_CBT_API, timeout)
            return StepResult.from_outcome(
                Phase.FRONTEND_GEN, SERVICE_LAB_FRONTEND, start_time,
                error=error,
                error_kind=ErrorKind.READINESS_TIMEOUT,
                message=f"cbt-api did not become ready: {error}",
            )
        except ServiceLifecycleError as e:
            return StepResult.from_outcome(
                Phase.FRONTEND_GEN, SERVICE_LAB_FRONTEND, start_time,
                error=e,
                message=f"cbt-api readiness check failed: {e}",
            )

        result = await self.builder.build_lab_frontend()
        if not result.success:
            return result

        try:
            await self.lifecycle.restart(SERVICE_LAB_FRONTEND)
        except ServiceLifecycleError as e:
            logger.warning("Could not restart lab-frontend: %s", e)
            return result.as_failure(f"failed to restart lab-frontend: {e}", error=e)
        return result

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------
    def build_graph(self) -> StageGraph:
        graph = StageGraph(total_steps=TOTAL_STEPS)
        graph.add(Stage(
            name=STAGE_PROTOS, phase=Phase.PROTO_GEN, service=SERVICE_XATU_CBT,
            action=self.builder.generate_xatu_cbt_protos,
            step=1, title="Regenerating xatu-cbt protos",
        ))
        graph.add(Stage(
            name=STAGE_XATU_CBT, phase=Phase.BUILD, service=SERVICE_XATU_CBT,
            action=self.builder.build_xatu_cbt,
            depends_on=(STAGE_PROTOS,),
            skip_reasons={STAGE_PROTOS: MSG_UPSTREAM_PROTOS_FAILED},
            step=2, title="Rebuilding xatu-cbt",
        ))
        graph.add(Stage(
            name=STAGE_CBT_API, phase=Phase.BUILD, service=SERVICE_CBT_API,
            action=self.builder.build_cbt_api,
            depends_on=(STAGE_XATU_CBT,),
            skip_reasons={STAGE_XATU_CBT: MSG_UPSTREAM_XATU_CBT_FAILED},
            step=3, title="Regenerating cbt-api protos and rebuilding cbt-api",
        ))
        graph.add(Stage(
            name=STAGE_CBT, phase=Phase.BUILD, service=SERVICE_CBT,
            action=self.builder.build_cbt,
            group="binaries", step=4, title="Rebuilding cbt",
        ))
        graph.add(Stage(
            name=STAGE_LAB_BACKEND, phase=Phase.BUILD, service=SERVICE_LAB_BACKEND,
            action=self.builder.build_lab_backend,
            group="binaries", step=4, title="Rebuilding lab-backend",
        ))
        graph.add(Stage(
            name=STAGE_CONFIGS, phase=Phase.CONFIG_GEN, service=SERVICE_CONFIGS,
            action=self._generate_configs,
            step=5, title="Regenerating configs",
        ))
        graph.add(Stage(
            name=STAGE_RESTART, phase=Phase.RESTART, service=SERVICE_ALL,
            action=self._restart_services,
            step=6, title="Restarting all services",
        ))
        graph.add(Stage(
            name=STAGE_LAB_FRONTEND, phase=Phase.FRONTEND_GEN, service=SERVICE_LAB_FRONTEND,
            action=self._regenerate_frontend,
            depends_on=(STAGE_CBT_API, STAGE_RESTART),
            skip_reasons={
                STAGE_CBT_API: MSG_API_BUILD_FAILED,
                STAGE_RESTART: MSG_RESTART_FAILED,
            },
            step=7, title="Regenerating lab-frontend API types",
        ))
        return graph

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------
    def _finish(self, report: RebuildReport) -> None:
        """Finalize, persist and log the summary."""
        report.finalize()
        try:
            path = self.store.save(report)
            logger.info("Saved rebuild report %s to %s", report.id, path)
        except PersistenceError as e:
            logger.warning("Failed to save diagnostic report: %s", e)
        logger.info("Rebuild summary:\n%s", format_build_summary(report))

    async def run(self) -> RebuildReport:
        """
        Execute the full rebuild.

        Returns
        -------
        RebuildReport
            Finalized report when every step succeeded (a restart skipped
            because nothing was running counts as success).

        Raises
        ------
        RebuildFailedError
            At least one step failed; carries the finalized report.
        RebuildCancelledError
            The run was cancelled; carries the finalized report.
        """
        report = RebuildReport()
        self.report = report
        graph = self.build_graph()
        logger.info("Starting full rebuild %s", report.id)

        try:
            outcome = await graph.run(report, concurrent=self.concurrent)
        except asyncio.CancelledError as e:
            logger.warning("Rebuild %s cancelled", report.id)
            self._finish(report)
            raise RebuildCancelledError(report) from e

        self._finish(report)

        if report.has_failures():
            raise RebuildFailedError(report)

        if outcome.halted:
            logger.warning(
                "Services not currently running - skipped restart and lab-frontend regeneration. "
                "All binaries, protos and configs have been regenerated."
            )
        else:
            logger.info("Full rebuild and restart complete")
        return report


async def run_rebuild(
    settings: Optional[LabSettings] = None,
    verbose: bool = False,
    concurrent: Optional[bool] = None,
) -> RebuildReport:
    """Run a full rebuild with the concrete collaborators."""
    settings = settings or load_settings()
    pipeline = RebuildPipeline(
        builder=LabBuilder(settings, verbose=verbose),
        lifecycle=DockerServiceLifecycle(settings),
        config_generator=ConfigGenerator(settings),
        store=DiagnosticStore(settings.errors_dir, settings.report_retention_days),
        settings=settings,
        verbose=verbose,
        concurrent=settings.concurrent_builds if concurrent is None else concurrent,
    )
    return await pipeline.run()
