"""
Lab Builder Tests
=================
Command sequencing per component. The subprocess runner is mocked.
"""
import asyncio
from unittest.mock import AsyncMock, patch

from labctl.executor.lab_builder import LabBuilder
from labctl.models.step_result import Phase

from tests.conftest import make_result


def _make_repos(settings):
    for repo in settings.repos.model_dump().values():
        repo.mkdir(parents=True, exist_ok=True)


def _fake_runner(fail_on=None):
    async def run(args, *, phase, service, cwd=None, env=None, verbose=False):
        failed = fail_on is not None and list(args) == fail_on
        result = make_result(service, phase, success=not failed,
                             stdout=f"ran {' '.join(args)}",
                             stderr="boom" if failed else "")
        return result.model_copy(update={"command": " ".join(args)})
    return AsyncMock(side_effect=run)


def test_missing_repository(settings):
    builder = LabBuilder(settings)
    result = asyncio.run(builder.build_xatu_cbt())
    assert not result.success
    assert result.exit_code == -1
    assert "repository not found" in result.stderr


def test_xatu_cbt_protos(settings):
    _make_repos(settings)
    runner = _fake_runner()
    with patch("labctl.executor.lab_builder.run_command_with_result", runner):
        result = asyncio.run(LabBuilder(settings).generate_xatu_cbt_protos())

    assert result.success
    assert result.phase == Phase.PROTO_GEN
    args = runner.call_args.args[0]
    assert args == ["make", "proto"]
    assert runner.call_args.kwargs["cwd"] == str(settings.repos.xatu_cbt)


def test_cbt_api_runs_three_commands_with_config_file(settings):
    _make_repos(settings)
    runner = _fake_runner()
    with patch("labctl.executor.lab_builder.run_command_with_result", runner):
        result = asyncio.run(LabBuilder(settings).build_cbt_api())

    assert result.success
    assert [c.args[0] for c in runner.call_args_list] == [
        ["make", "proto"], ["make", "generate"], ["make", "build-binary"],
    ]
    env = runner.call_args_list[0].kwargs["env"]
    assert env["CONFIG_FILE"].endswith("cbt-api-mainnet.yaml")
    assert result.command == "make proto && make generate && make build-binary"
    assert "ran make generate" in result.stdout


def test_multi_command_build_stops_at_first_failure(settings):
    _make_repos(settings)
    runner = _fake_runner(fail_on=["pnpm", "build"])
    with patch("labctl.executor.lab_builder.run_command_with_result", runner):
        result = asyncio.run(LabBuilder(settings).build_cbt())

    assert not result.success
    assert runner.call_count == 2
    assert result.stderr == "boom"
    assert "go build" not in result.command
    assert runner.call_args_list[0].kwargs["cwd"] == str(settings.repos.cbt / "frontend")


def test_lab_frontend_points_at_first_network_api(settings):
    _make_repos(settings)
    runner = _fake_runner()
    with patch("labctl.executor.lab_builder.run_command_with_result", runner):
        result = asyncio.run(LabBuilder(settings).build_lab_frontend())

    assert result.phase == Phase.FRONTEND_GEN
    assert runner.call_args.args[0] == ["pnpm", "run", "generate:api"]
    assert runner.call_args.kwargs["env"] == {"OPENAPI_INPUT": "http://localhost:8091/openapi.yaml"}


def test_no_networks_fails_cbt_api(settings):
    _make_repos(settings)
    settings = settings.model_copy(update={"networks": []})
    result = asyncio.run(LabBuilder(settings).build_cbt_api())
    assert not result.success
    assert "no networks enabled" in result.error_message
