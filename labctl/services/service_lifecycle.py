"""
Service Lifecycle
=================
Restarts the lab's service containers and waits for cbt-api to come up.

DOCKER STRATEGY:
    - Managed services run as containers named {CONTAINER_PREFIX}{service}.
    - The docker SDK is synchronous; every call runs in a worker thread
      (asyncio.to_thread) so the event loop keeps serving the HTTP surface.

READINESS:
    wait_ready() polls the first enabled network's cbt-api /health endpoint
    until it answers HTTP 200. It has no deadline of its own; the caller
    bounds it (asyncio.wait_for) and cancellation stops the poll loop.
"""
import asyncio
import logging
from typing import List, Optional

import docker
import httpx
from docker.errors import APIError, DockerException, NotFound

from labctl.core.config import LabSettings
from labctl.core.constants import cbt_api_service, cbt_service
from labctl.core.errors import ServiceLifecycleError

logger = logging.getLogger(__name__)


class DockerServiceLifecycle:
    """Service-Lifecycle collaborator backed by the docker SDK and httpx."""

    def __init__(self, settings: LabSettings, client: Optional[docker.DockerClient] = None) -> None:
        self.settings = settings
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as e:
                raise ServiceLifecycleError(f"cannot connect to docker daemon: {e}") from e
        return self._client

    def container_name(self, service: str) -> str:
        return f"{self.settings.container_prefix}{service}"

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    def _running_names(self) -> List[str]:
        containers = self.client.containers.list(filters={"status": "running"})
        return [c.name for c in containers]

    async def are_running(self) -> bool:
        """True if any cbt or cbt-api container of an enabled network is running."""
        try:
            running = set(await asyncio.to_thread(self._running_names))
        except (DockerException, ServiceLifecycleError) as e:
            logger.warning("Could not query running containers: %s", e)
            return False

        for network in self.settings.enabled_networks():
            for service in (cbt_service(network), cbt_api_service(network)):
                if self.container_name(service) in running:
                    return True
        return False

    # ------------------------------------------------------------------
    # Restart
    # ------------------------------------------------------------------
    def _restart_container(self, service: str) -> None:
        name = self.container_name(service)
        try:
            self.client.containers.get(name).restart()
        except NotFound as e:
            raise ServiceLifecycleError(f"container {name} not found") from e
        except APIError as e:
            raise ServiceLifecycleError(f"failed to restart {name}: {e.explanation or e}") from e

    async def restart(self, service: str) -> None:
        """Restart one managed service; raises ServiceLifecycleError."""
        logger.info("Restarting %s", service)
        await asyncio.to_thread(self._restart_container, service)

    async def restart_all(self, verbose: bool = False) -> None:
        """
        Restart cbt-{net}, cbt-api-{net} and lab-backend.

        Every service is attempted; failures are aggregated into a single
        ServiceLifecycleError raised at the end.
        """
        failures: List[str] = []
        for service in self.settings.managed_services():
            try:
                await self.restart(service)
            except ServiceLifecycleError as e:
                logger.error("Restart of %s failed: %s", service, e)
                failures.append(f"{service}: {e}")
            else:
                if verbose:
                    logger.info("Restarted %s", service)

        if failures:
            raise ServiceLifecycleError("failed to restart services: " + "; ".join(failures))

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------
    def health_url(self) -> str:
        networks = self.settings.enabled_networks()
        if not networks:
            raise ServiceLifecycleError("no networks enabled")
        return f"http://localhost:{self.settings.cbt_api_port(networks[0])}/health"

    async def wait_ready(self) -> None:
        """Poll cbt-api /health until it returns 200."""
        url = self.health_url()
        interval = self.settings.readiness_poll_interval
        logger.info("Waiting for cbt-api at %s", url)

        async with httpx.AsyncClient(timeout=2.0) as client:
            while True:
                try:
                    response = await client.get(url)
                    if response.status_code == 200:
                        logger.info("cbt-api is ready")
                        return
                    logger.debug("cbt-api not ready yet (HTTP %d)", response.status_code)
                except httpx.HTTPError as e:
                    logger.debug("cbt-api not ready yet: %s", e)
                await asyncio.sleep(interval)
