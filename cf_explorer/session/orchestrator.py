"""
SessionOrchestrator: login, listing and app actions against one platform.

Composes the cf CLI gateway (authentication, targeting, push, logs), the
credential cache and the v3 API client. Every API call fetches a token, and
on failure drops the cached token and retries a bounded number of times.
Failures come back as DetailedResult; only InvalidRefreshTokenError escapes,
because it ends the session.
"""

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from cf_explorer.cf_api import CfApiClient, build_uri
from cf_explorer.cf_api import models as api_models
from cf_explorer.cf_cli import CfCliGateway, CfExecutableLocator, EnvironmentBuilder
from cf_explorer.cf_cli.executor import LineCallback
from cf_explorer.cf_cli.gateway import parse_version
from cf_explorer.config import Settings, get_settings
from cf_explorer.errors import (
    AccessTokenUnavailableError,
    InvalidRefreshTokenError,
    LoginFailureError,
    flatten_exception_messages,
)
from cf_explorer.models import (
    App,
    Buildpack,
    CloudFoundryInstance,
    ConnectResult,
    DetailedResult,
    FailureType,
    Organization,
    Route,
    Space,
    Stack,
)
from cf_explorer.session.credentials import CredentialCache
from cf_explorer.session.retry import is_retryable_error, run_with_retry
from cf_explorer.utils.thread_pool import run_in_thread_pool

logger = logging.getLogger(__name__)

T = TypeVar("T")

NotifyCallback = Callable[[str, str], None]

API_VERSION_UNDETECTABLE_TITLE = "Unable to detect Cloud Controller API version."
API_VERSION_UNDETECTABLE_MSG = (
    "Failed to detect which version of the Cloud Controller API is being run on the "
    "provided instance; some features may not work properly."
)
API_VERSION_UNSUPPORTED_TITLE = "API version not supported"
ROUTE_DELETION_ERROR_MSG = "Encountered error deleting certain routes"
EMPTY_APP_DIR_MSG = "Unable to locate app files; the app directory is empty."
SSO_PROMPT_KEY = "passcode"


class LoginState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    TARGETING_API = "targeting_api"
    AUTHENTICATING = "authenticating"
    DETECTING_API_VERSION = "detecting_api_version"
    AUTHENTICATED = "authenticated"


def _log_notification(title: str, message: str) -> None:
    logger.warning(f"{title} {message}")


def _format_version(version: Tuple[int, ...]) -> str:
    return ".".join(str(part) for part in version)


class SessionOrchestrator:
    """
    Entry point for everything the explorer does against a platform.

    Args:
        gateway: cf CLI gateway; built from settings when omitted
        credentials: Credential cache sharing the gateway's lock
        api_client: v3 API client used for every instance; when omitted one
            client is built per TLS verification mode
        settings: Settings (defaults to the cached instance)
        notify: Receives (title, message) for user-visible warnings
    """

    def __init__(
        self,
        gateway: Optional[CfCliGateway] = None,
        credentials: Optional[CredentialCache] = None,
        api_client: Optional[CfApiClient] = None,
        settings: Optional[Settings] = None,
        notify: Optional[NotifyCallback] = None,
    ):
        self._settings = settings or get_settings()
        if gateway is None:
            gateway = CfCliGateway(
                CfExecutableLocator(self._settings.cli.executable_path),
                EnvironmentBuilder(self._settings.cli.config_dir),
            )
        self._gateway = gateway
        self._credentials = credentials or CredentialCache(gateway)
        self._injected_client = api_client
        self._api_clients: Dict[bool, CfApiClient] = {}
        self._proxy: Optional[str] = None
        self._notify = notify or _log_notification

        self.state = LoginState.UNAUTHENTICATED
        self.api_version: Optional[Tuple[int, ...]] = None

    def client_for(self, skip_ssl_validation: bool = False) -> CfApiClient:
        """API client for one TLS verification mode, created on first use."""
        if self._injected_client is not None:
            return self._injected_client

        client = self._api_clients.get(skip_ssl_validation)
        if client is None:
            client = CfApiClient(
                skip_ssl_validation=skip_ssl_validation,
                proxy=self._proxy,
                settings=self._settings,
            )
            self._api_clients[skip_ssl_validation] = client
        return client

    def _client_of(self, instance: CloudFoundryInstance) -> CfApiClient:
        return self.client_for(instance.skip_ssl_validation)

    async def _close_clients(self) -> None:
        clients = list(self._api_clients.values())
        self._api_clients.clear()
        for client in clients:
            await client.aclose()

    async def aclose(self) -> None:
        await self._close_clients()
        if self._injected_client is not None:
            await self._injected_client.aclose()

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def connect(
        self,
        api_address: str,
        username: str,
        password: str,
        proxy: Optional[str] = None,
        skip_ssl_validation: bool = False,
    ) -> ConnectResult:
        """
        Log in through the cf CLI and return the resulting access token.

        The auth server is located first; if the API root does not advertise
        one, no CLI command is run at all.

        Raises:
            InvalidRefreshTokenError: if the fresh session is rejected at once
        """
        if not username:
            raise ValueError("username must not be empty")

        self.state = LoginState.UNAUTHENTICATED
        failure_type = FailureType.NONE
        try:
            build_uri(api_address, "/")

            self._gateway.environment.proxy = proxy
            if proxy != self._proxy:
                # Existing clients were built for the previous proxy
                await self._close_clients()
                self._proxy = proxy

            await self.client_for(skip_ssl_validation).get_auth_server_uri(api_address)

            self.state = LoginState.TARGETING_API
            target = await run_in_thread_pool(
                self._gateway.target_api, api_address, skip_ssl_validation
            )
            if not target.succeeded:
                failure_type = target.failure_type
                raise LoginFailureError(
                    f"Unable to target api at this address: {api_address}\n{target.explanation}"
                )

            self.state = LoginState.AUTHENTICATING
            auth = await self._gateway.authenticate(username, password)
            if not auth.succeeded:
                raise LoginFailureError(
                    f'Unable to authenticate user "{username}"\n{auth.explanation}'
                )

            self.state = LoginState.DETECTING_API_VERSION
            await self._detect_api_version()

            # Tokens cached for a previous login are not valid for this one
            await run_in_thread_pool(self._credentials.invalidate)
            token = await self._access_token("finish logging in")

        except InvalidRefreshTokenError:
            self.state = LoginState.UNAUTHENTICATED
            raise
        except Exception as e:
            self.state = LoginState.UNAUTHENTICATED
            error_message = flatten_exception_messages(e)
            logger.error(f"Login to {api_address} failed: {error_message}")
            return ConnectResult(False, error_message=error_message, failure_type=failure_type)

        self.state = LoginState.AUTHENTICATED
        logger.info(f"Logged in to {api_address} as {username}")
        return ConnectResult(True, token=token)

    async def _detect_api_version(self) -> None:
        api_settings = self._settings.api
        version = await self._gateway.get_api_version()

        if version is None:
            self.api_version = parse_version(api_settings.default_api_version)
            logger.warning(
                f"Cloud Controller API version undetectable; assuming {api_settings.default_api_version}"
            )
            self._notify(API_VERSION_UNDETECTABLE_TITLE, API_VERSION_UNDETECTABLE_MSG)
            return

        self.api_version = version
        minimum = parse_version(api_settings.min_supported_api_version) or ()
        if version < minimum:
            msg = (
                "Detected a Cloud Controller API version lower than the minimum supported "
                f"version ({api_settings.min_supported_api_version}); some features may not "
                "work as expected for the given instance."
            )
            logger.info(msg)
            self._notify(API_VERSION_UNSUPPORTED_TITLE, msg)
        else:
            logger.debug(f"Detected Cloud Controller API version {_format_version(version)}")

    async def get_sso_prompt(
        self, api_address: str, skip_ssl_validation: bool = False
    ) -> DetailedResult[str]:
        """Return the passcode prompt (it carries the SSO URL) of the login server."""
        try:
            client = self.client_for(skip_ssl_validation)
            info = await client.get_login_server_information(api_address)
        except Exception as e:
            logger.error(f"Login server lookup for {api_address} failed: {e}")
            return DetailedResult.failure(flatten_exception_messages(e))

        prompt = info.prompts.get(SSO_PROMPT_KEY)
        if prompt and len(prompt) > 1:
            return DetailedResult.success(prompt[1])

        return DetailedResult.failure(
            "Unable to determine SSO URL.", FailureType.MISSING_SSO_PROMPT
        )

    async def logout(self) -> DetailedResult:
        result = await run_in_thread_pool(self._gateway.logout)
        await run_in_thread_pool(self._credentials.invalidate)
        self.state = LoginState.UNAUTHENTICATED
        return result

    # ------------------------------------------------------------------
    # Retry plumbing
    # ------------------------------------------------------------------

    async def _access_token(self, description: str) -> str:
        token = await run_in_thread_pool(self._credentials.get_token)
        if token is None:
            raise AccessTokenUnavailableError(
                f"Unable to look up an access token while trying to {description}."
            )
        return token

    async def _invalidate_credentials(self, _error: Exception) -> None:
        await run_in_thread_pool(self._credentials.invalidate)

    async def _call_api(
        self,
        description: str,
        call: Callable[[str], Awaitable[T]],
        retry_amount: Optional[int],
    ) -> T:
        if retry_amount is None:
            retry_amount = self._settings.session.retry_amount

        async def attempt() -> T:
            token = await self._access_token(description)
            return await call(token)

        return await run_with_retry(
            attempt,
            retry_amount=retry_amount,
            is_retryable=is_retryable_error,
            before_retry=self._invalidate_credentials,
            description=description,
        )

    async def _list(
        self,
        description: str,
        call: Callable[[str], Awaitable[List[Any]]],
        translate: Callable[[List[Any]], List[T]],
        retry_amount: Optional[int],
    ) -> DetailedResult[List[T]]:
        try:
            items = await self._call_api(description, call, retry_amount)
        except InvalidRefreshTokenError:
            raise
        except Exception as e:
            logger.error(f"Unable to {description}: {e}")
            return DetailedResult.failure(flatten_exception_messages(e))
        return DetailedResult.success(translate(items))

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_orgs(
        self, instance: CloudFoundryInstance, retry_amount: Optional[int] = None
    ) -> DetailedResult[List[Organization]]:
        return await self._list(
            f"list orgs for '{instance.name}'",
            lambda token: self._client_of(instance).list_orgs(instance.api_address, token),
            lambda items: _to_orgs(items, instance),
            retry_amount,
        )

    async def list_spaces(
        self, org: Organization, retry_amount: Optional[int] = None
    ) -> DetailedResult[List[Space]]:
        return await self._list(
            f"list spaces for '{org.name}'",
            lambda token: self._client_of(org.parent).list_spaces_for_org(
                org.parent.api_address, token, org.guid
            ),
            lambda items: _to_spaces(items, org),
            retry_amount,
        )

    async def list_apps(
        self, space: Space, retry_amount: Optional[int] = None
    ) -> DetailedResult[List[App]]:
        return await self._list(
            f"list apps for '{space.name}'",
            lambda token: self._client_of(space.instance).list_apps_for_space(
                space.instance.api_address, token, space.guid
            ),
            lambda items: _to_apps(items, space),
            retry_amount,
        )

    async def list_all_apps(
        self, instance: CloudFoundryInstance, retry_amount: Optional[int] = None
    ) -> DetailedResult[List[App]]:
        """List apps across every space; returned apps have no parent space."""
        return await self._list(
            f"list all apps for '{instance.name}'",
            lambda token: self._client_of(instance).list_all_apps(instance.api_address, token),
            lambda items: _to_apps(items, None),
            retry_amount,
        )

    async def list_routes(
        self, app: App, retry_amount: Optional[int] = None
    ) -> DetailedResult[List[Route]]:
        instance = _instance_of(app)
        return await self._list(
            f"list routes for '{app.name}'",
            lambda token: self._client_of(instance).list_routes_for_app(
                instance.api_address, token, app.guid
            ),
            _to_routes,
            retry_amount,
        )

    async def list_buildpacks(
        self, instance: CloudFoundryInstance, retry_amount: Optional[int] = None
    ) -> DetailedResult[List[Buildpack]]:
        return await self._list(
            f"list buildpacks for '{instance.name}'",
            lambda token: self._client_of(instance).list_buildpacks(instance.api_address, token),
            _to_buildpacks,
            retry_amount,
        )

    async def list_stacks(
        self, instance: CloudFoundryInstance, retry_amount: Optional[int] = None
    ) -> DetailedResult[List[Stack]]:
        return await self._list(
            f"list stacks for '{instance.name}'",
            lambda token: self._client_of(instance).list_stacks(instance.api_address, token),
            _to_stacks,
            retry_amount,
        )

    # ------------------------------------------------------------------
    # App actions
    # ------------------------------------------------------------------

    async def start_app(self, app: App, retry_amount: Optional[int] = None) -> DetailedResult:
        instance = _instance_of(app)
        return await self._change_state(
            app,
            "start",
            "STARTED",
            lambda token: self._client_of(instance).start_app_with_guid(
                instance.api_address, token, app.guid
            ),
            retry_amount,
        )

    async def stop_app(self, app: App, retry_amount: Optional[int] = None) -> DetailedResult:
        instance = _instance_of(app)
        return await self._change_state(
            app,
            "stop",
            "STOPPED",
            lambda token: self._client_of(instance).stop_app_with_guid(
                instance.api_address, token, app.guid
            ),
            retry_amount,
        )

    async def _change_state(
        self,
        app: App,
        verb: str,
        new_state: str,
        call: Callable[[str], Awaitable[bool]],
        retry_amount: Optional[int],
    ) -> DetailedResult:
        try:
            changed = await self._call_api(f"{verb} app '{app.name}'", call, retry_amount)
        except InvalidRefreshTokenError:
            raise
        except Exception as e:
            logger.error(f"Unable to {verb} app '{app.name}': {e}")
            return DetailedResult.failure(flatten_exception_messages(e))

        if not changed:
            msg = f"Attempted to {verb} app '{app.name}' but it hasn't been {new_state.lower()}."
            logger.error(msg)
            return DetailedResult.failure(msg)

        app.state = new_state
        return DetailedResult.success()

    async def delete_app(
        self, app: App, remove_routes: bool = False, retry_amount: Optional[int] = None
    ) -> DetailedResult:
        """Delete an app, optionally deleting all of its routes first."""
        instance = _instance_of(app)

        if remove_routes:
            routes_result = await self.delete_all_routes_for_app(app, retry_amount)
            if not routes_result.succeeded:
                return DetailedResult.failure(
                    f"{routes_result.explanation}. Please try deleting '{app.name}' again"
                )

        try:
            await self._call_api(
                f"delete app '{app.name}'",
                lambda token: self._client_of(instance).delete_app_with_guid(
                    instance.api_address, token, app.guid
                ),
                retry_amount,
            )
        except InvalidRefreshTokenError:
            raise
        except Exception as e:
            logger.error(f"Unable to delete app '{app.name}': {e}")
            return DetailedResult.failure(flatten_exception_messages(e))

        app.state = "DELETED"
        return DetailedResult.success()

    async def delete_all_routes_for_app(
        self, app: App, retry_amount: Optional[int] = None
    ) -> DetailedResult:
        """
        Delete every route mapped to an app.

        Route deletions run concurrently; each one is retried with fresh
        credentials like any other API call.

        Raises:
            InvalidRefreshTokenError: if the session has expired
        """
        instance = _instance_of(app)
        client = self._client_of(instance)

        routes_result = await self.list_routes(app, retry_amount)
        if not routes_result.succeeded:
            return DetailedResult.failure(routes_result.explanation or ROUTE_DELETION_ERROR_MSG)

        routes = routes_result.content or []
        if not routes:
            return DetailedResult.success()

        async def delete_route(route: Route) -> bool:
            return await self._call_api(
                f"delete route '{route.guid}' of '{app.name}'",
                lambda token: client.delete_route_with_guid(
                    instance.api_address, token, route.guid
                ),
                retry_amount,
            )

        outcomes = await asyncio.gather(
            *(delete_route(route) for route in routes), return_exceptions=True
        )

        for outcome in outcomes:
            if isinstance(outcome, InvalidRefreshTokenError):
                raise outcome

        failed = [o for o in outcomes if isinstance(o, BaseException) or o is not True]
        if failed:
            for outcome in failed:
                if isinstance(outcome, BaseException):
                    logger.error(f"{ROUTE_DELETION_ERROR_MSG}; {outcome}")
            logger.error(f"{ROUTE_DELETION_ERROR_MSG}; {len(failed)} routes were not deleted")
            return DetailedResult.failure(ROUTE_DELETION_ERROR_MSG)

        return DetailedResult.success()

    async def deploy_app(
        self,
        app_name: str,
        org: Organization,
        space: Space,
        app_dir: Optional[str] = None,
        manifest_path: Optional[str] = None,
        buildpack: Optional[str] = None,
        stack: Optional[str] = None,
        start_command: Optional[str] = None,
        stdout_callback: Optional[LineCallback] = None,
        stderr_callback: Optional[LineCallback] = None,
    ) -> DetailedResult:
        """
        Push an app with the cf CLI.

        Output lines are streamed to the callbacks while the push runs.

        Raises:
            InvalidRefreshTokenError: if the session has expired
        """
        if app_dir is not None:
            path = Path(app_dir)
            if not path.is_dir() or not any(p.is_file() for p in path.rglob("*")):
                return DetailedResult.failure(EMPTY_APP_DIR_MSG)

        result = await self._gateway.push_app(
            org.name,
            space.name,
            app_name=app_name,
            manifest_path=manifest_path,
            app_dir=app_dir,
            buildpack=buildpack,
            stack=stack,
            start_command=start_command,
            stdout_callback=stdout_callback,
            stderr_callback=stderr_callback,
        )
        if not result.succeeded:
            logger.error(
                f"App deployment to org '{org.name}', space '{space.name}' failed: {result.explanation}"
            )
            return DetailedResult.failure(result.explanation or "", command_result=result.command_result)

        return DetailedResult.success(
            explanation=f"App successfully deploying to org '{org.name}', space '{space.name}'..."
        )

    async def get_recent_logs(self, app: App) -> DetailedResult[str]:
        """
        Raises:
            InvalidRefreshTokenError: if the session has expired
        """
        space = _space_of(app)
        result = await self._gateway.get_recent_app_logs(app.name, space.parent.name, space.name)
        if not result.succeeded:
            logger.error(f"Unable to retrieve recent logs for '{app.name}': {result.explanation}")
        return result


def _space_of(app: App) -> Space:
    if app.parent is None:
        raise ValueError(f"App '{app.name}' is not attached to a space")
    return app.parent


def _instance_of(app: App) -> CloudFoundryInstance:
    return _space_of(app).instance


def _to_orgs(items: List[api_models.Org], instance: CloudFoundryInstance) -> List[Organization]:
    orgs = []
    for item in items:
        if not item.name or not item.guid:
            logger.warning("Omitting an org without a name or guid")
            continue
        orgs.append(Organization(item.name, item.guid, instance))
    return orgs


def _to_spaces(items: List[api_models.Space], org: Organization) -> List[Space]:
    spaces = []
    for item in items:
        if not item.name or not item.guid:
            logger.warning(f"Omitting a space of '{org.name}' without a name or guid")
            continue
        spaces.append(Space(item.name, item.guid, org))
    return spaces


def _to_apps(items: List[api_models.App], space: Optional[Space]) -> List[App]:
    apps = []
    for item in items:
        if not item.name or not item.guid:
            logger.warning("Omitting an app without a name or guid")
            continue

        data = item.lifecycle.data if item.lifecycle is not None else None
        apps.append(
            App(
                name=item.name,
                guid=item.guid,
                parent=space,
                state=item.state or "",
                stack=data.stack if data is not None else None,
                buildpacks=list(data.buildpacks or []) if data is not None else [],
            )
        )
    return apps


def _to_routes(items: List[api_models.Route]) -> List[Route]:
    routes = []
    for item in items:
        if not item.guid or not item.guid.strip():
            logger.warning("Omitting a route without a guid")
            continue
        routes.append(Route(item.guid, item.url))
    return routes


def _to_buildpacks(items: List[api_models.Buildpack]) -> List[Buildpack]:
    buildpacks = []
    for item in items:
        if not item.name or not item.stack:
            logger.warning("Omitting a buildpack without a name or stack")
            continue
        buildpacks.append(Buildpack(item.name, item.stack))
    return buildpacks


def _to_stacks(items: List[api_models.Stack]) -> List[Stack]:
    stacks = []
    for item in items:
        if not item.name:
            logger.warning("Omitting a stack without a name")
            continue
        stacks.append(Stack(item.name))
    return stacks
