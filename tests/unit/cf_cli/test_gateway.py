"""
Unit Tests: CfCliGateway.

The process layer is mocked; these tests cover result mapping, the
environment lock discipline and the structured `-v` queries.
"""

import json
import threading
from unittest.mock import AsyncMock, MagicMock

import pytest


INVALID_REFRESH = (
    "The token expired, was revoked, or the token ID is incorrect. "
    "Please log back in to re-authenticate."
)


def _output(stdout="", stderr="", code=0):
    from cf_explorer.cf_cli.executor import ProcessOutput

    return ProcessOutput(stdout=stdout, stderr=stderr, return_code=code)


@pytest.fixture
def executor():
    from cf_explorer.cf_cli.executor import CommandExecutor

    mock = MagicMock(spec=CommandExecutor)
    mock.run.return_value = _output("OK\n")
    mock.run_async = AsyncMock(return_value=_output("OK\n"))
    return mock


@pytest.fixture
def gateway(fake_locator, executor, cf_home):
    from cf_explorer.cf_cli.environment import EnvironmentBuilder
    from cf_explorer.cf_cli.gateway import CfCliGateway

    return CfCliGateway(fake_locator, EnvironmentBuilder(str(cf_home)), executor=executor)


class TestExecute:
    """Result mapping shared by both variants."""

    def test_success(self, gateway, executor):
        result = gateway.execute(["orgs"])

        assert result.succeeded is True
        assert result.explanation is None
        assert result.exit_code == 0

    def test_cf_home_always_set(self, gateway, executor, cf_home):
        gateway.execute(["orgs"], env_vars={"CF_HOME": "/elsewhere", "EXTRA": "1"})

        env = executor.run.call_args.kwargs["env_vars"]
        assert env["CF_HOME"] == str(cf_home)
        assert env["EXTRA"] == "1"

    def test_explanation_prefers_stderr(self, gateway, executor):
        executor.run.return_value = _output("FAILED\n", "Server error", 1)

        result = gateway.execute(["orgs"])

        assert result.succeeded is False
        assert result.explanation == "Server error"

    def test_explanation_uses_failed_stdout(self, gateway, executor):
        executor.run.return_value = _output("Getting orgs...\nFAILED\nNot logged in.", "", 1)

        result = gateway.execute(["orgs"])

        assert "Not logged in." in result.explanation

    def test_explanation_falls_back_to_generic(self, gateway, executor):
        executor.run.return_value = _output("something", "", 2)

        result = gateway.execute(["target", "-o", "my-org"])

        assert result.explanation == "Unable to execute `cf target -o my-org`."
        assert result.exit_code == 2

    def test_generic_explanation_hides_password(self, gateway, executor):
        executor.run.return_value = _output("", "", 1)

        result = gateway.execute(["auth", "admin", "s3cret"])

        assert "s3cret" not in result.explanation

    def test_missing_executable_never_spawns(self, gateway, executor, fake_locator):
        fake_locator.locate.return_value = None

        result = gateway.execute(["orgs"])

        assert result.succeeded is False
        assert result.explanation == "Unable to locate cf executable."
        executor.run.assert_not_called()


class TestRunLockDiscipline:
    """The coroutine variant refuses to run inside the environment lock."""

    @pytest.mark.asyncio
    async def test_run_outside_lock(self, gateway, executor):
        result = await gateway.run(["orgs"])

        assert result.succeeded is True
        executor.run_async.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_inside_lock_raises(self, gateway, executor):
        with gateway.environment_lock:
            with pytest.raises(RuntimeError):
                await gateway.run(["orgs"])

        executor.run_async.assert_not_called()

    def test_target_org_requires_lock(self, gateway):
        with pytest.raises(RuntimeError):
            gateway.target_org("my-org")

    def test_lock_tracks_owner_thread(self, gateway):
        lock = gateway.environment_lock
        seen_from_other_thread = []

        with lock:
            assert lock.held_by_current_thread()
            t = threading.Thread(
                target=lambda: seen_from_other_thread.append(lock.held_by_current_thread())
            )
            t.start()
            t.join()

        assert seen_from_other_thread == [False]
        assert not lock.locked()


class TestTargetAndRun:
    """Composite targeting sequence."""

    def test_runs_org_space_command_in_order(self, gateway, executor):
        gateway.target_and_run("my-org", "my-space", ["logs", "app", "--recent"])

        commands = [c.args[0][1:] for c in executor.run.call_args_list]
        assert commands == [
            ["target", "-o", "my-org"],
            ["target", "-s", "my-space"],
            ["logs", "app", "--recent"],
        ]

    def test_holds_lock_for_whole_sequence(self, gateway, executor):
        held = []

        def record(*args, **kwargs):
            held.append(gateway.environment_lock.held_by_current_thread())
            return _output("OK")

        executor.run.side_effect = record

        gateway.target_and_run("my-org", "my-space", ["apps"])

        assert held == [True, True, True]
        assert not gateway.environment_lock.locked()

    def test_org_failure_stops_sequence(self, gateway, executor):
        executor.run.return_value = _output("", "Org my-org not found.", 1)

        result = gateway.target_and_run("my-org", "my-space", ["apps"])

        assert result.succeeded is False
        assert "my-org" in result.explanation
        assert executor.run.call_count == 1

    def test_invalid_refresh_token_raises(self, gateway, executor):
        from cf_explorer.errors import InvalidRefreshTokenError

        executor.run.return_value = _output("", INVALID_REFRESH, 1)

        with pytest.raises(InvalidRefreshTokenError):
            gateway.target_and_run("my-org", None, ["spaces"])

        assert not gateway.environment_lock.locked()

    def test_serialises_concurrent_sequences(self, gateway, executor):
        """Two threads never interleave their targeting sequences."""
        active = []
        overlaps = []

        def slow(*args, **kwargs):
            active.append(1)
            if len(active) > 1:
                overlaps.append(True)
            threading.Event().wait(0.01)
            active.pop()
            return _output("OK")

        executor.run.side_effect = slow

        threads = [
            threading.Thread(target=gateway.target_and_run, args=(f"org-{i}", "space", ["apps"]))
            for i in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []
        assert executor.run.call_count == 12


class TestSessionCommands:
    """api / auth / api version."""

    def test_target_api_flags_expired_certificate(self, gateway, executor):
        from cf_explorer.models import FailureType

        executor.run.return_value = _output(
            "", "x509: certificate has expired or is not yet valid", 1
        )

        result = gateway.target_api("https://api.example.com", False)

        assert result.succeeded is False
        assert result.failure_type == FailureType.INVALID_CERTIFICATE

    def test_target_api_skip_ssl_flag(self, gateway, executor):
        gateway.target_api("https://api.example.com", True)

        args = executor.run.call_args.args[0]
        assert args[1:] == ["api", "https://api.example.com", "--skip-ssl-validation"]

    @pytest.mark.asyncio
    async def test_authenticate_failure(self, gateway, executor):
        executor.run_async.return_value = _output("", "Credentials were rejected", 1)

        result = await gateway.authenticate("admin", "pw")

        assert result.succeeded is False
        assert result.explanation == "Credentials were rejected"

    @pytest.mark.asyncio
    async def test_api_version_parsed(self, gateway, executor):
        executor.run_async.return_value = _output(
            "API endpoint:   https://api.example.com\nAPI version:    3.150.0\n"
        )

        assert await gateway.get_api_version() == (3, 150, 0)

    @pytest.mark.asyncio
    async def test_api_version_undetectable(self, gateway, executor):
        executor.run_async.return_value = _output("API endpoint: https://api.example.com\n")

        assert await gateway.get_api_version() is None


class TestAppCommands:
    """start / stop / delete / push."""

    @pytest.mark.asyncio
    async def test_delete_with_routes(self, gateway, executor):
        await gateway.delete_app("my-app", remove_mapped_routes=True)

        args = executor.run_async.call_args.args[0]
        assert args[1:] == ["delete", "-f", "my-app", "-r"]

    @pytest.mark.asyncio
    async def test_stop_invalid_refresh_token_raises(self, gateway, executor):
        from cf_explorer.errors import InvalidRefreshTokenError

        executor.run_async.return_value = _output("", INVALID_REFRESH, 1)

        with pytest.raises(InvalidRefreshTokenError):
            await gateway.stop_app("my-app")

    @pytest.mark.asyncio
    async def test_push_targets_then_pushes(self, gateway, executor, tmp_path):
        result = await gateway.push_app(
            "my-org", "my-space", app_name="my-app", app_dir=str(tmp_path), buildpack="python_buildpack"
        )

        assert result.succeeded is True
        commands = [c.args[0][1:] for c in executor.run.call_args_list]
        assert commands[-1] == ["push", "my-app", "-b", "python_buildpack", "-p", str(tmp_path)]
        assert executor.run.call_args.kwargs["cwd"] == str(tmp_path)

    @pytest.mark.asyncio
    async def test_push_missing_manifest(self, gateway, executor, tmp_path):
        result = await gateway.push_app(
            "my-org", "my-space", manifest_path=str(tmp_path / "manifest.yml")
        )

        assert result.succeeded is False
        executor.run.assert_not_called()

    def test_push_arguments(self):
        from cf_explorer.cf_cli.gateway import build_push_arguments

        args = build_push_arguments(
            app_name="app", stack="cflinuxfs4", start_command="python app.py", manifest_path="m.yml"
        )

        assert args == ["push", "app", "-s", "cflinuxfs4", "-c", "python app.py", "-f", "m.yml"]


class TestStructuredQueries:
    """`-v` output parsed into resources."""

    @staticmethod
    def _trace(path, names):
        body = {
            "pagination": {"total_results": len(names), "total_pages": 1, "next": None, "previous": None},
            "resources": [{"guid": f"g-{n}", "name": n} for n in names],
        }
        return (
            f"REQUEST: [now]\nGET {path} HTTP/1.1\n\n"
            f"RESPONSE: [now]\nHTTP/1.1 200 OK\n\n{json.dumps(body)}\n"
        )

    @pytest.mark.asyncio
    async def test_list_orgs(self, gateway, executor):
        executor.run_async.return_value = _output(self._trace("/v3/organizations", ["a", "b"]))

        items = await gateway.list_org_resources()

        assert [i["name"] for i in items] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_no_orgs_found_short_circuits(self, gateway, executor):
        executor.run_async.return_value = _output("Getting orgs as admin...\n\nNo orgs found.\n")

        assert await gateway.list_org_resources() == []

    @pytest.mark.asyncio
    async def test_unparseable_output_raises(self, gateway, executor):
        from cf_explorer.errors import JsonParsingError

        executor.run_async.return_value = _output("Getting orgs as admin...\nname\norg-a\n")

        with pytest.raises(JsonParsingError):
            await gateway.list_org_resources()

    @pytest.mark.asyncio
    async def test_command_failure_raises(self, gateway, executor):
        from cf_explorer.errors import ProcessExecutionError

        executor.run_async.return_value = _output("", "Not logged in.", 1)

        with pytest.raises(ProcessExecutionError):
            await gateway.list_org_resources()

    @pytest.mark.asyncio
    async def test_missing_executable_raises(self, gateway, fake_locator):
        from cf_explorer.errors import ExecutableNotFoundError

        fake_locator.locate.return_value = None

        with pytest.raises(ExecutableNotFoundError):
            await gateway.list_org_resources()

    @pytest.mark.asyncio
    async def test_list_apps_targets_first(self, gateway, executor):
        executor.run.return_value = _output(self._trace("/v3/apps", ["app-1"]))

        items = await gateway.list_app_resources("my-org", "my-space")

        assert items[0]["name"] == "app-1"
        commands = [c.args[0][1:] for c in executor.run.call_args_list]
        assert commands[:2] == [["target", "-o", "my-org"], ["target", "-s", "my-space"]]
