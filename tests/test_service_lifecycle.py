"""
Service Lifecycle Tests
=======================
Docker client is a MagicMock; httpx calls are patched. No daemon, no network.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from docker.errors import APIError, NotFound

from labctl.core.errors import ServiceLifecycleError
from labctl.services.service_lifecycle import DockerServiceLifecycle


def _container(name):
    c = MagicMock()
    c.name = name
    return c


def _lifecycle(settings, running=(), missing=()):
    client = MagicMock()
    client.containers.list.return_value = [_container(n) for n in running]
    containers = {}

    def get(name):
        if name in missing:
            raise NotFound(f"No such container: {name}")
        return containers.setdefault(name, _container(name))

    client.containers.get.side_effect = get
    return DockerServiceLifecycle(settings, client=client), containers


def test_are_running_true_for_any_cbt_container(settings):
    lifecycle, _ = _lifecycle(settings, running=["labctl-cbt-api-sepolia", "other"])
    assert asyncio.run(lifecycle.are_running()) is True


def test_are_running_ignores_unrelated_containers(settings):
    lifecycle, _ = _lifecycle(settings, running=["labctl-lab-backend", "postgres"])
    assert asyncio.run(lifecycle.are_running()) is False


def test_are_running_false_when_docker_unavailable(settings):
    lifecycle, _ = _lifecycle(settings)
    lifecycle.client.containers.list.side_effect = APIError("daemon gone")
    assert asyncio.run(lifecycle.are_running()) is False


def test_restart_all_restarts_managed_services_in_order(settings):
    lifecycle, containers = _lifecycle(settings)
    asyncio.run(lifecycle.restart_all())

    assert list(containers) == [
        "labctl-cbt-mainnet", "labctl-cbt-sepolia",
        "labctl-cbt-api-mainnet", "labctl-cbt-api-sepolia",
        "labctl-lab-backend",
    ]
    assert all(c.restart.called for c in containers.values())


def test_restart_all_attempts_every_service_and_aggregates(settings):
    lifecycle, containers = _lifecycle(settings, missing={"labctl-cbt-mainnet"})

    with pytest.raises(ServiceLifecycleError) as exc:
        asyncio.run(lifecycle.restart_all())

    assert "cbt-mainnet" in str(exc.value)
    assert "labctl-lab-backend" in containers


def test_restart_single_missing_container(settings):
    lifecycle, _ = _lifecycle(settings, missing={"labctl-lab-frontend"})
    with pytest.raises(ServiceLifecycleError, match="not found"):
        asyncio.run(lifecycle.restart("lab-frontend"))


def test_health_url_uses_first_network_port(settings):
    lifecycle, _ = _lifecycle(settings)
    assert lifecycle.health_url() == "http://localhost:8091/health"


def test_wait_ready_polls_until_200(settings):
    lifecycle, _ = _lifecycle(settings)
    responses = [
        httpx.ConnectError("refused"),
        MagicMock(status_code=503),
        MagicMock(status_code=200),
    ]
    with patch("httpx.AsyncClient.get", new_callable=AsyncMock, side_effect=responses) as mock_get:
        asyncio.run(lifecycle.wait_ready())
    assert mock_get.call_count == 3


def test_wait_ready_is_cancellable_by_timeout(settings):
    lifecycle, _ = _lifecycle(settings)
    with patch("httpx.AsyncClient.get", new_callable=AsyncMock, return_value=MagicMock(status_code=503)):
        with pytest.raises(asyncio.TimeoutError):
            asyncio.run(asyncio.wait_for(lifecycle.wait_ready(), 0.1))


def test_wait_ready_without_networks_fails_fast(settings):
    lifecycle, _ = _lifecycle(settings.model_copy(update={"networks": []}))
    with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
        with pytest.raises(ServiceLifecycleError, match="no networks enabled"):
            asyncio.run(lifecycle.wait_ready())
    mock_get.assert_not_called()
