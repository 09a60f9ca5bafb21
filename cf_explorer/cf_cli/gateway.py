"""
CfCliGateway: the cf CLI as an authentication and operation backend.

The cf CLI keeps one "current org" and one "current space" per CF_HOME.
That targeting state is global to every process sharing the directory, so
all sequences that change it and then depend on it run under a single
environment lock. Only the blocking `execute` may be called while that lock
is held; the coroutine `run` refuses to.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from cf_explorer.cf_cli.availability import CfExecutableLocator
from cf_explorer.cf_cli.environment import EnvironmentBuilder
from cf_explorer.cf_cli.executor import (
    CommandExecutor,
    CommandResult,
    LineCallback,
    ProcessOutput,
)
from cf_explorer.cf_cli.parsers import ResponsePageParser
from cf_explorer.errors import (
    ExecutableNotFoundError,
    InvalidRefreshTokenError,
    JsonParsingError,
    ProcessExecutionError,
)
from cf_explorer.models import DetailedResult, FailureType
from cf_explorer.utils.thread_pool import run_in_thread_pool

logger = logging.getLogger(__name__)

EXECUTABLE_NOT_FOUND_MSG = "Unable to locate cf executable."
INVALID_REFRESH_TOKEN_MARKER = (
    "The token expired, was revoked, or the token ID is incorrect. "
    "Please log back in to re-authenticate."
)
EXPIRED_CERTIFICATE_MARKER = "certificate has expired or is not yet valid"
API_VERSION_LABEL = "api version:"

# Request paths traced by `cf <cmd> -v`
ORGS_REQUEST_PATH = "GET /v3/organizations"
SPACES_REQUEST_PATH = "GET /v3/spaces"
APPS_REQUEST_PATH = "GET /v3/apps"


class EnvironmentLock:
    """
    Non-reentrant lock guarding the cf CLI's current target.

    Remembers the owning thread so callers can assert they hold it, and so
    coroutine entry points can refuse to run while it is held.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._owner: Optional[int] = None

    def acquire(self, blocking: bool = True, timeout: float = -1) -> bool:
        acquired = self._lock.acquire(blocking, timeout)
        if acquired:
            self._owner = threading.get_ident()
        return acquired

    def release(self) -> None:
        self._owner = None
        self._lock.release()

    def locked(self) -> bool:
        return self._lock.locked()

    def held_by_current_thread(self) -> bool:
        return self._owner == threading.get_ident()

    def __enter__(self) -> "EnvironmentLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def raise_if_invalid_refresh_token(result: Optional[CommandResult]) -> None:
    """Raise InvalidRefreshTokenError if cf reported a dead refresh token."""
    if result is not None and INVALID_REFRESH_TOKEN_MARKER in (result.stderr or ""):
        raise InvalidRefreshTokenError()


def parse_version(text: str) -> Optional[Tuple[int, ...]]:
    """Parse "3.150.0" into (3, 150, 0); None if any part is not numeric."""
    parts = text.strip().split(".")
    try:
        return tuple(int(p) for p in parts if p != "")
    except ValueError:
        return None


class CfCliGateway:
    """
    Runs cf commands with an isolated CF_HOME and maps them to results.

    Owns the environment lock; the credential cache shares it.
    """

    def __init__(
        self,
        locator: CfExecutableLocator,
        environment: EnvironmentBuilder,
        executor: Optional[CommandExecutor] = None,
        parser: Optional[ResponsePageParser] = None,
    ):
        self._locator = locator
        self._environment = environment
        self._executor = executor or CommandExecutor()
        self._parser = parser or ResponsePageParser()
        self._lock = EnvironmentLock()

    @property
    def environment_lock(self) -> EnvironmentLock:
        return self._lock

    @property
    def environment(self) -> EnvironmentBuilder:
        return self._environment

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def execute(
        self,
        arguments: Sequence[str],
        working_dir: Optional[str] = None,
        env_vars: Optional[Dict[str, str]] = None,
        stdout_callback: Optional[LineCallback] = None,
        stderr_callback: Optional[LineCallback] = None,
    ) -> CommandResult:
        """
        Run a cf command and block until it exits.

        The only variant that may be used inside the environment lock.
        """
        executable = self._locator.locate()
        if not executable:
            return self._executable_missing()

        output = self._executor.run(
            [executable, *arguments],
            env_vars=self._environment.build_env(env_vars),
            cwd=working_dir,
            stdout_callback=stdout_callback,
            stderr_callback=stderr_callback,
        )
        return self._to_command_result(arguments, output)

    async def run(
        self,
        arguments: Sequence[str],
        working_dir: Optional[str] = None,
        env_vars: Optional[Dict[str, str]] = None,
        stdout_callback: Optional[LineCallback] = None,
        stderr_callback: Optional[LineCallback] = None,
    ) -> CommandResult:
        """
        Run a cf command without blocking the event loop.

        Raises:
            RuntimeError: if the calling thread holds the environment lock
        """
        if self._lock.held_by_current_thread():
            raise RuntimeError(
                "CfCliGateway.run must not be awaited while holding the environment lock; "
                "use execute instead"
            )

        executable = self._locator.locate()
        if not executable:
            return self._executable_missing()

        output = await self._executor.run_async(
            [executable, *arguments],
            env_vars=self._environment.build_env(env_vars),
            cwd=working_dir,
            stdout_callback=stdout_callback,
            stderr_callback=stderr_callback,
        )
        return self._to_command_result(arguments, output)

    def _executable_missing(self) -> CommandResult:
        logger.error(EXECUTABLE_NOT_FOUND_MSG)
        return CommandResult(
            succeeded=False,
            explanation=EXECUTABLE_NOT_FOUND_MSG,
            stdout="",
            stderr="",
            exit_code=-1,
        )

    @staticmethod
    def _to_command_result(arguments: Sequence[str], output: ProcessOutput) -> CommandResult:
        if output.return_code == 0:
            return CommandResult(
                succeeded=True,
                explanation=None,
                stdout=output.stdout,
                stderr=output.stderr,
                exit_code=0,
            )

        if output.stderr.strip():
            reason = output.stderr
        elif "FAILED" in output.stdout:
            reason = output.stdout
        else:
            reason = f"Unable to execute `cf {_describe(arguments)}`."

        return CommandResult(
            succeeded=False,
            explanation=reason,
            stdout=output.stdout,
            stderr=output.stderr,
            exit_code=output.return_code,
        )

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def target_api(self, api_address: str, skip_ssl_validation: bool) -> DetailedResult:
        args = ["api", api_address]
        if skip_ssl_validation:
            args.append("--skip-ssl-validation")

        with self._lock:
            result = self.execute(args)

        if result.succeeded:
            return DetailedResult(succeeded=True, command_result=result)

        logger.error(f"target_api({api_address}, {skip_ssl_validation}) failed: {result.explanation}")
        failure_type = FailureType.NONE
        if EXPIRED_CERTIFICATE_MARKER in result.stderr:
            failure_type = FailureType.INVALID_CERTIFICATE
        return DetailedResult.failure(result.explanation or "", failure_type, result)

    async def authenticate(self, username: str, password: str) -> DetailedResult:
        result = await self.run(["auth", username, password])
        if not result.succeeded:
            logger.error(f"authenticate({username}, ***) failed: {result.explanation}")
            return DetailedResult.failure(result.explanation or "", command_result=result)
        return DetailedResult(succeeded=True, command_result=result)

    async def get_api_version(self) -> Optional[Tuple[int, ...]]:
        """
        Read the Cloud Controller version from `cf api`.

        Returns:
            Version tuple, or None if it cannot be determined
        """
        result = await self.run(["api"])
        if not result.succeeded:
            return None

        for line in result.stdout.lower().splitlines():
            if API_VERSION_LABEL in line:
                version_text = line.split(API_VERSION_LABEL, 1)[1].replace(" ", "")
                return parse_version(version_text) or None

        return None

    def logout(self) -> DetailedResult:
        with self._lock:
            result = self.execute(["logout"])
        if not result.succeeded:
            return DetailedResult.failure(result.explanation or "", command_result=result)
        return DetailedResult(succeeded=True, command_result=result)

    # ------------------------------------------------------------------
    # Targeting
    # ------------------------------------------------------------------

    def target_org(self, org_name: str) -> DetailedResult:
        """
        Invoke `cf target -o`.

        Not thread-safe in isolation: another thread may change the target
        before the caller's dependent command runs. Callers must hold the
        environment lock for the whole sequence; prefer `target_and_run`.

        Raises:
            InvalidRefreshTokenError: if cf reports a dead refresh token
        """
        self._require_lock("target_org")
        result = self.execute(["target", "-o", org_name])
        raise_if_invalid_refresh_token(result)

        if not result.succeeded:
            logger.error(f"target_org({org_name}) failed: {result.explanation}")
            return DetailedResult.failure(result.explanation or "", command_result=result)
        return DetailedResult(succeeded=True, command_result=result)

    def target_space(self, space_name: str) -> DetailedResult:
        """
        Invoke `cf target -s`. Same locking contract as `target_org`.

        Raises:
            InvalidRefreshTokenError: if cf reports a dead refresh token
        """
        self._require_lock("target_space")
        result = self.execute(["target", "-s", space_name])
        raise_if_invalid_refresh_token(result)

        if not result.succeeded:
            logger.error(f"target_space({space_name}) failed: {result.explanation}")
            return DetailedResult.failure(result.explanation or "", command_result=result)
        return DetailedResult(succeeded=True, command_result=result)

    def target_and_run(
        self,
        org_name: str,
        space_name: Optional[str],
        arguments: Sequence[str],
        working_dir: Optional[str] = None,
        stdout_callback: Optional[LineCallback] = None,
        stderr_callback: Optional[LineCallback] = None,
    ) -> DetailedResult:
        """
        Target an org (and optionally a space), then run a dependent command.

        The three steps run atomically with respect to every other user of
        the environment lock.

        Raises:
            InvalidRefreshTokenError: if cf reports a dead refresh token
        """
        with self._lock:
            org_result = self.target_org(org_name)
            if not org_result.succeeded:
                return DetailedResult.failure(
                    f"Unable to target org '{org_name}'.\n{org_result.explanation}",
                    command_result=org_result.command_result,
                )

            if space_name is not None:
                space_result = self.target_space(space_name)
                if not space_result.succeeded:
                    return DetailedResult.failure(
                        f"Unable to target space '{space_name}'.\n{space_result.explanation}",
                        command_result=space_result.command_result,
                    )

            result = self.execute(
                arguments,
                working_dir=working_dir,
                stdout_callback=stdout_callback,
                stderr_callback=stderr_callback,
            )

        raise_if_invalid_refresh_token(result)
        if not result.succeeded:
            return DetailedResult.failure(result.explanation or "", command_result=result)
        return DetailedResult(succeeded=True, content=result.stdout, command_result=result)

    async def target_and_run_async(self, *args: Any, **kwargs: Any) -> DetailedResult:
        """`target_and_run` on the shared thread pool, awaitable from coroutines."""
        return await run_in_thread_pool(self.target_and_run, *args, **kwargs)

    def _require_lock(self, operation: str) -> None:
        if not self._lock.held_by_current_thread():
            raise RuntimeError(f"{operation} requires the environment lock")

    # ------------------------------------------------------------------
    # App operations
    # ------------------------------------------------------------------

    async def start_app(self, app_name: str) -> DetailedResult:
        return await self._run_app_command(["start", app_name], f"start_app({app_name})")

    async def stop_app(self, app_name: str) -> DetailedResult:
        return await self._run_app_command(["stop", app_name], f"stop_app({app_name})")

    async def delete_app(self, app_name: str, remove_mapped_routes: bool = True) -> DetailedResult:
        # -f avoids the confirmation prompt
        args = ["delete", "-f", app_name]
        if remove_mapped_routes:
            args.append("-r")
        return await self._run_app_command(
            args, f"delete_app({app_name}, {remove_mapped_routes})"
        )

    async def _run_app_command(self, args: List[str], description: str) -> DetailedResult:
        result = await self.run(args)
        raise_if_invalid_refresh_token(result)
        if not result.succeeded:
            logger.error(f"{description} failed: {result.explanation}")
            return DetailedResult.failure(result.explanation or "", command_result=result)
        return DetailedResult(succeeded=True, command_result=result)

    async def push_app(
        self,
        org_name: str,
        space_name: str,
        app_name: Optional[str] = None,
        manifest_path: Optional[str] = None,
        app_dir: Optional[str] = None,
        buildpack: Optional[str] = None,
        stack: Optional[str] = None,
        start_command: Optional[str] = None,
        stdout_callback: Optional[LineCallback] = None,
        stderr_callback: Optional[LineCallback] = None,
    ) -> DetailedResult:
        """
        Deploy with `cf push` inside the targeted org and space.

        Raises:
            InvalidRefreshTokenError: if cf reports a dead refresh token
        """
        if app_name is None and manifest_path is None:
            raise ValueError("push_app needs an app name or a manifest path")

        if manifest_path is not None and not Path(manifest_path).is_file():
            msg = f"Unable to deploy app; no manifest file found at '{manifest_path}'"
            logger.error(msg)
            return DetailedResult.failure(msg)

        args = build_push_arguments(
            app_name=app_name,
            manifest_path=manifest_path,
            app_dir=app_dir,
            buildpack=buildpack,
            stack=stack,
            start_command=start_command,
        )

        result = await self.target_and_run_async(
            org_name,
            space_name,
            args,
            working_dir=app_dir,
            stdout_callback=stdout_callback,
            stderr_callback=stderr_callback,
        )
        if not result.succeeded:
            logger.error(
                f"cf push to org '{org_name}', space '{space_name}' failed: {result.explanation}"
            )
        return result

    async def get_recent_app_logs(
        self, app_name: str, org_name: str, space_name: str
    ) -> DetailedResult[str]:
        return await self.target_and_run_async(
            org_name, space_name, ["logs", app_name, "--recent"]
        )

    # ------------------------------------------------------------------
    # Structured queries through `-v` traces
    # ------------------------------------------------------------------

    async def list_org_resources(self) -> List[Dict[str, Any]]:
        """
        List orgs visible to the logged-in user via `cf orgs -v`.

        Raises:
            ExecutableNotFoundError, ProcessExecutionError, JsonParsingError
        """
        result = await self.run(["orgs", "-v"])
        return self._resources_from(result, ["orgs", "-v"], ORGS_REQUEST_PATH, "No orgs found")

    async def list_space_resources(self, org_name: str) -> List[Dict[str, Any]]:
        """List spaces of an org via `cf spaces -v` after targeting the org."""
        args = ["spaces", "-v"]
        detailed = await self.target_and_run_async(org_name, None, args)
        return self._resources_from(
            detailed.command_result, args, SPACES_REQUEST_PATH, "No spaces found", detailed.explanation
        )

    async def list_app_resources(self, org_name: str, space_name: str) -> List[Dict[str, Any]]:
        """List apps of a space via `cf apps -v` after targeting org and space."""
        args = ["apps", "-v"]
        detailed = await self.target_and_run_async(org_name, space_name, args)
        return self._resources_from(
            detailed.command_result, args, APPS_REQUEST_PATH, "No apps found", detailed.explanation
        )

    def _resources_from(
        self,
        result: Optional[CommandResult],
        args: Sequence[str],
        request_path: str,
        empty_marker: str,
        explanation: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        if result is None:
            raise ProcessExecutionError(list(args), -1, explanation)
        if not result.succeeded and result.explanation == EXECUTABLE_NOT_FOUND_MSG:
            raise ExecutableNotFoundError()

        raise_if_invalid_refresh_token(result)

        if not result.succeeded:
            raise ProcessExecutionError(list(args), result.exit_code, explanation or result.explanation)

        # cf prints this instead of a table when the collection is empty
        if empty_marker in result.stdout[-200:]:
            return []

        items = self._parser.parse_resources(result.stdout, request_path)
        if items is None:
            raise JsonParsingError(content=result.stdout)
        return items


def build_push_arguments(
    app_name: Optional[str] = None,
    manifest_path: Optional[str] = None,
    app_dir: Optional[str] = None,
    buildpack: Optional[str] = None,
    stack: Optional[str] = None,
    start_command: Optional[str] = None,
) -> List[str]:
    args = ["push"]
    if app_name:
        args.append(app_name)

    flags: List[Tuple[str, Optional[str]]] = [
        ("-b", buildpack),
        ("-s", stack),
        ("-c", start_command),
        ("-f", manifest_path),
        ("-p", app_dir),
    ]
    for flag, value in flags:
        if value:
            args.extend([flag, value])
    return args


def _describe(arguments: Sequence[str]) -> str:
    """Render arguments for messages; never echoes the password of `auth`."""
    args = list(arguments)
    if args and args[0] == "auth" and len(args) >= 3:
        args = [args[0], args[1], "***", *args[3:]]
    return " ".join(args)

