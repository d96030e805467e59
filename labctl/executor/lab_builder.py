"""
Lab Builder
===========
Builds the lab repositories with their own tool chains (make, go, pnpm).

Every operation returns exactly one StepResult, even when it runs several
commands. Multi-command builds stop at the first failing command; the
combined result carries the output of every command that ran.

Commands per component:
    xatu-cbt protos  → make proto
    xatu-cbt         → make build
    cbt-api          → make proto (CONFIG_FILE=<configs>/cbt-api-<net>.yaml),
                       make generate, make build-binary
    cbt              → pnpm install + pnpm build (frontend/), go build -o bin/cbt .
    lab-backend      → make build
    lab-frontend     → pnpm run generate:api (OPENAPI_INPUT=<cbt-api>/openapi.yaml)
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from labctl.core.config import LabSettings
from labctl.core.constants import (
    SERVICE_CBT,
    SERVICE_CBT_API,
    SERVICE_LAB_BACKEND,
    SERVICE_LAB_FRONTEND,
    SERVICE_XATU_CBT,
)
from labctl.executor.command_runner import run_command_with_result
from labctl.models.step_result import ErrorKind, Phase, StepResult, utc_now

logger = logging.getLogger(__name__)


@dataclass
class BuildCommand:
    """One command of a (possibly multi-command) build."""
    args: List[str]
    cwd: Path
    env: Dict[str, str] = field(default_factory=dict)


def _missing_repository(phase: Phase, service: str, path: Path) -> StepResult:
    now = utc_now()
    return StepResult(
        phase=phase,
        service=service,
        success=False,
        error_message=f"{service} repository not found at {path}",
        error_kind=ErrorKind.TOOL_FAILURE,
        work_dir=str(path),
        exit_code=-1,
        start_time=now,
        end_time=now,
        stderr=f"repository not found: {path}",
    )


class LabBuilder:
    """Builder collaborator for the rebuild pipeline."""

    def __init__(self, settings: LabSettings, verbose: bool = False) -> None:
        self.settings = settings
        self.verbose = verbose

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _run_sequence(
        self,
        phase: Phase,
        service: str,
        repo: Path,
        commands: Sequence[BuildCommand],
    ) -> StepResult:
        """Run ``commands`` in order, stopping at the first failure."""
        if not repo.is_dir():
            logger.error("Repository for %s not found at %s", service, repo)
            return _missing_repository(phase, service, repo)

        start_time = utc_now()
        ran: List[StepResult] = []

        for command in commands:
            result = await run_command_with_result(
                command.args,
                phase=phase,
                service=service,
                cwd=str(command.cwd),
                env=command.env or None,
                verbose=self.verbose,
            )
            ran.append(result)
            if not result.success:
                break

        if len(ran) == 1:
            return ran[0]

        last = ran[-1]
        return last.model_copy(update={
            "command": " && ".join(r.command for r in ran),
            "stdout": "\n".join(r.stdout for r in ran if r.stdout),
            "stderr": "\n".join(r.stderr for r in ran if r.stderr),
            "start_time": start_time,
        })

    def _first_network(self) -> Optional[str]:
        networks = self.settings.enabled_networks()
        return networks[0] if networks else None

    # ------------------------------------------------------------------
    # Builder operations
    # ------------------------------------------------------------------
    async def generate_xatu_cbt_protos(self) -> StepResult:
        repo = self.settings.repos.xatu_cbt
        logger.info("Generating xatu-cbt protos in %s", repo)
        return await self._run_sequence(
            Phase.PROTO_GEN, SERVICE_XATU_CBT, repo,
            [BuildCommand(["make", "proto"], repo)],
        )

    async def build_xatu_cbt(self) -> StepResult:
        repo = self.settings.repos.xatu_cbt
        logger.info("Building xatu-cbt in %s", repo)
        return await self._run_sequence(
            Phase.BUILD, SERVICE_XATU_CBT, repo,
            [BuildCommand(["make", "build"], repo)],
        )

    async def build_cbt_api(self) -> StepResult:
        """Regenerate cbt-api protos from the first network's config, then build."""
        repo = self.settings.repos.cbt_api
        network = self._first_network()
        if network is None:
            now = utc_now()
            return StepResult(
                phase=Phase.BUILD, service=SERVICE_CBT_API, success=False,
                error_message="no networks enabled - cannot determine cbt-api config",
                error_kind=ErrorKind.TOOL_FAILURE, exit_code=-1,
                start_time=now, end_time=now,
            )

        config_file = (self.settings.configs_dir / f"cbt-api-{network}.yaml").resolve()
        logger.info("Building cbt-api in %s (config=%s)", repo, config_file)
        return await self._run_sequence(
            Phase.BUILD, SERVICE_CBT_API, repo,
            [
                BuildCommand(["make", "proto"], repo, {"CONFIG_FILE": str(config_file)}),
                BuildCommand(["make", "generate"], repo),
                BuildCommand(["make", "build-binary"], repo),
            ],
        )

    async def build_cbt(self) -> StepResult:
        """Build the embedded frontend first; go:embed needs it in the binary."""
        repo = self.settings.repos.cbt
        frontend = repo / "frontend"
        logger.info("Building cbt in %s", repo)
        if repo.is_dir():
            (repo / "bin").mkdir(exist_ok=True)
        return await self._run_sequence(
            Phase.BUILD, SERVICE_CBT, repo,
            [
                BuildCommand(["pnpm", "install"], frontend),
                BuildCommand(["pnpm", "build"], frontend),
                BuildCommand(["go", "build", "-o", "bin/cbt", "."], repo),
            ],
        )

    async def build_lab_backend(self) -> StepResult:
        repo = self.settings.repos.lab_backend
        logger.info("Building lab-backend in %s", repo)
        return await self._run_sequence(
            Phase.BUILD, SERVICE_LAB_BACKEND, repo,
            [BuildCommand(["make", "build"], repo)],
        )

    async def build_lab_frontend(self) -> StepResult:
        """Regenerate the front-end API client from the running cbt-api."""
        repo = self.settings.repos.lab
        network = self._first_network() or "mainnet"
        openapi_url = f"http://localhost:{self.settings.cbt_api_port(network)}/openapi.yaml"
        logger.info("Regenerating lab frontend API types from %s", openapi_url)
        return await self._run_sequence(
            Phase.FRONTEND_GEN, SERVICE_LAB_FRONTEND, repo,
            [BuildCommand(["pnpm", "run", "generate:api"], repo, {"OPENAPI_INPUT": openapi_url})],
        )
