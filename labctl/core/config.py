"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    LAB_ROOT                 — Directory holding the lab repositories (default: cwd)
    LAB_STATE_DIR            — State directory for configs, reports, logs (default: <LAB_ROOT>/.labctl)
    LAB_NETWORKS             — Comma-separated enabled networks (default: mainnet)
    CBT_API_BASE_PORT        — cbt-api port of the first network; later networks add 1 each (default: 8091)
    READINESS_TIMEOUT        — Seconds to wait for cbt-api to report healthy (default: 30)
    READINESS_POLL_INTERVAL  — Seconds between readiness probes (default: 1)
    CONTAINER_PREFIX         — Docker container name prefix for managed services (default: labctl-)
    REPORT_RETENTION_DAYS    — Age after which stored rebuild reports are pruned (default: 7)
    CONCURRENT_BUILDS        — Run independent binary builds concurrently (default: false)
    LOG_LEVEL                — Root log level (default: INFO)
    LOG_DIR                  — Directory for dated log files, empty disables them (default: logs)

Readiness Philosophy:
    READINESS_TIMEOUT bounds the only polling loop in a rebuild. The front-end
    stage needs the freshly restarted cbt-api to serve its OpenAPI document,
    so the wait must be long enough for a cold start but short enough that a
    crashed service is reported quickly.
"""
import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from labctl.core.constants import cbt_api_service, cbt_service, SERVICE_LAB_BACKEND

load_dotenv()

LAB_ROOT = os.getenv("LAB_ROOT", os.getcwd())
LAB_STATE_DIR = os.getenv("LAB_STATE_DIR", os.path.join(LAB_ROOT, ".labctl"))
LAB_NETWORKS = os.getenv("LAB_NETWORKS", "mainnet")
CBT_API_BASE_PORT = int(os.getenv("CBT_API_BASE_PORT", 8091))
READINESS_TIMEOUT = float(os.getenv("READINESS_TIMEOUT", 30))
READINESS_POLL_INTERVAL = float(os.getenv("READINESS_POLL_INTERVAL", 1))
CONTAINER_PREFIX = os.getenv("CONTAINER_PREFIX", "labctl-")
REPORT_RETENTION_DAYS = int(os.getenv("REPORT_RETENTION_DAYS", 7))
CONCURRENT_BUILDS = os.getenv("CONCURRENT_BUILDS", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR", "logs")

# Per-repository overrides (e.g. LAB_REPO_CBT_API=/src/cbt-api)
_REPO_DIRS: dict[str, str] = {
    "xatu_cbt": os.getenv("LAB_REPO_XATU_CBT", "xatu-cbt"),
    "cbt": os.getenv("LAB_REPO_CBT", "cbt"),
    "cbt_api": os.getenv("LAB_REPO_CBT_API", "cbt-api"),
    "lab_backend": os.getenv("LAB_REPO_LAB_BACKEND", "lab-backend"),
    "lab": os.getenv("LAB_REPO_LAB", "lab"),
}


class RepoPaths(BaseModel):
    xatu_cbt: Path
    cbt: Path
    cbt_api: Path
    lab_backend: Path
    lab: Path


class LabSettings(BaseModel):
    """Resolved settings for one lab stack."""

    lab_root: Path
    state_dir: Path
    repos: RepoPaths
    networks: List[str] = Field(default_factory=lambda: ["mainnet"])
    cbt_api_base_port: int = 8091
    readiness_timeout: float = 30.0
    readiness_poll_interval: float = 1.0
    container_prefix: str = "labctl-"
    report_retention_days: int = 7
    concurrent_builds: bool = False

    def enabled_networks(self) -> List[str]:
        return [n for n in self.networks if n]

    def cbt_api_port(self, network: str) -> int:
        networks = self.enabled_networks()
        offset = networks.index(network) if network in networks else 0
        return self.cbt_api_base_port + offset

    def managed_services(self) -> List[str]:
        """Services restarted together by a full rebuild, in restart order."""
        networks = self.enabled_networks()
        services = [cbt_service(n) for n in networks]
        services += [cbt_api_service(n) for n in networks]
        services.append(SERVICE_LAB_BACKEND)
        return services

    @property
    def errors_dir(self) -> Path:
        return self.state_dir / "errors"

    @property
    def configs_dir(self) -> Path:
        return self.state_dir / "configs"

    @property
    def custom_configs_dir(self) -> Path:
        return self.state_dir / "custom-configs"

    @property
    def logs_dir(self) -> Path:
        return self.state_dir / "logs"


def load_settings() -> LabSettings:
    """Build LabSettings from the environment-derived constants above."""
    root = Path(LAB_ROOT).expanduser().resolve()
    repos = {
        key: (root / value) if not os.path.isabs(value) else Path(value)
        for key, value in _REPO_DIRS.items()
    }
    return LabSettings(
        lab_root=root,
        state_dir=Path(LAB_STATE_DIR).expanduser(),
        repos=RepoPaths(**repos),
        networks=[n.strip() for n in LAB_NETWORKS.split(",") if n.strip()],
        cbt_api_base_port=CBT_API_BASE_PORT,
        readiness_timeout=READINESS_TIMEOUT,
        readiness_poll_interval=READINESS_POLL_INTERVAL,
        container_prefix=CONTAINER_PREFIX,
        report_retention_days=REPORT_RETENTION_DAYS,
        concurrent_builds=CONCURRENT_BUILDS,
    )
