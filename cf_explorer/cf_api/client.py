"""
CfApiClient: Cloud Controller v3 REST client.

Collections are fetched by following `pagination.next.href` until the
server stops returning one. Paging is a plain loop bounded by the first
page's `total_pages`, so a server that keeps handing out links cannot keep
the client busy forever.
"""

import logging
from typing import Any, Dict, List, Optional, Set

import httpx
from pydantic import ValidationError

from cf_explorer.cf_api import models
from cf_explorer.cf_api.resources import (
    APPS,
    BUILDPACKS,
    ORGS,
    ROUTES,
    SPACES,
    STACKS,
    ItemT,
    ResourceKind,
)
from cf_explorer.config import Settings, get_settings
from cf_explorer.errors import (
    AuthServerLookupError,
    InvalidTargetUriError,
    JsonParsingError,
    RequestError,
)

logger = logging.getLogger(__name__)

LOGIN_INFO_PATH = "/login"
STARTED_STATE = "STARTED"
STOPPED_STATE = "STOPPED"


def build_uri(address: str, path: str, query: Optional[str] = None) -> str:
    """
    Replace the path and query of an absolute address.

    Raises:
        InvalidTargetUriError: if `address` is not an absolute http(s) URI
    """
    try:
        url = httpx.URL(address)
    except httpx.InvalidURL as e:
        raise InvalidTargetUriError(address) from e

    if url.scheme not in ("http", "https") or not url.host:
        raise InvalidTargetUriError(address)

    uri = f"{url.scheme}://{url.netloc.decode('ascii')}{path}"
    if query:
        uri = f"{uri}?{query}"
    return uri


def _path_of(href: str) -> str:
    """Path and query of an href, used to name a request in errors."""
    return httpx.URL(href).raw_path.decode("ascii")


class CfApiClient:
    """
    Async client for the Cloud Controller API.

    One client talks to any number of API addresses; the address is passed
    to every call. The underlying httpx client is created lazily unless one
    is injected.
    """

    def __init__(
        self,
        skip_ssl_validation: bool = False,
        proxy: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        self._skip_ssl_validation = skip_ssl_validation
        self._proxy = proxy
        self._http_client = http_client
        self._owns_client = http_client is None
        self._settings = settings or get_settings()

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            api_settings = self._settings.api
            timeout = httpx.Timeout(
                connect=api_settings.connect_timeout,
                read=api_settings.read_timeout,
                write=api_settings.read_timeout,
                pool=api_settings.connect_timeout,
            )
            self._http_client = httpx.AsyncClient(
                timeout=timeout,
                verify=not self._skip_ssl_validation,
                proxy=self._proxy,
            )
            logger.debug(
                f"Created HTTP client (skip_ssl_validation={self._skip_ssl_validation}, "
                f"proxy={'yes' if self._proxy else 'no'})"
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "CfApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @staticmethod
    def _auth_headers(access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise JsonParsingError(content=response.text) from e

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    async def list_resources(
        self,
        api_address: str,
        access_token: str,
        kind: ResourceKind[ItemT],
        filter_query: Optional[str] = None,
    ) -> List[ItemT]:
        """
        Fetch every page of a collection.

        Args:
            api_address: Cloud Controller base address
            access_token: Bearer token
            kind: Collection to list
            filter_query: Query string for the first page, e.g.
                "organization_guids=<guid>"

        Returns:
            All items, in page order

        Raises:
            RequestError: on any non-success page; no partial results
            JsonParsingError: if a page cannot be decoded
        """
        next_href: Optional[str] = build_uri(api_address, kind.path, filter_query)
        items: List[ItemT] = []
        seen: Set[str] = set()
        max_pages: Optional[int] = None
        pages_fetched = 0

        while next_href is not None:
            if next_href in seen:
                logger.warning(f"Stopping {kind.name} listing: next page link repeats {next_href}")
                break
            if max_pages is not None and pages_fetched >= max_pages:
                logger.warning(
                    f"Stopping {kind.name} listing after {pages_fetched} pages; "
                    f"server still reports a next page"
                )
                break

            seen.add(next_href)
            page = await self._get_page(next_href, access_token, kind)
            pages_fetched += 1

            if max_pages is None:
                max_pages = max(page.pagination.total_pages, 1)

            items.extend(page.items)
            next_href = page.pagination.next_href

        logger.debug(f"Fetched {len(items)} {kind.name} in {pages_fetched} page(s)")
        return items

    async def _get_page(
        self, href: str, access_token: str, kind: ResourceKind[ItemT]
    ) -> "models.ResourcePage[ItemT]":
        response = await self._client().get(href, headers=self._auth_headers(access_token))
        if not response.is_success:
            raise RequestError("GET", _path_of(href), response.status_code)
        return kind.decode(self._json(response))

    async def list_orgs(self, api_address: str, access_token: str) -> List[models.Org]:
        return await self.list_resources(api_address, access_token, ORGS)

    async def list_spaces_for_org(
        self, api_address: str, access_token: str, org_guid: str
    ) -> List[models.Space]:
        return await self.list_resources(
            api_address, access_token, SPACES, SPACES.filter_query(org_guid)
        )

    async def list_apps_for_space(
        self, api_address: str, access_token: str, space_guid: str
    ) -> List[models.App]:
        return await self.list_resources(
            api_address, access_token, APPS, APPS.filter_query(space_guid)
        )

    async def list_all_apps(self, api_address: str, access_token: str) -> List[models.App]:
        return await self.list_resources(api_address, access_token, APPS)

    async def list_routes_for_app(
        self, api_address: str, access_token: str, app_guid: str
    ) -> List[models.Route]:
        return await self.list_resources(
            api_address, access_token, ROUTES, ROUTES.filter_query(app_guid)
        )

    async def list_buildpacks(self, api_address: str, access_token: str) -> List[models.Buildpack]:
        return await self.list_resources(api_address, access_token, BUILDPACKS)

    async def list_stacks(self, api_address: str, access_token: str) -> List[models.Stack]:
        return await self.list_resources(api_address, access_token, STACKS)

    # ------------------------------------------------------------------
    # App and route actions
    # ------------------------------------------------------------------

    async def start_app_with_guid(self, api_address: str, access_token: str, app_guid: str) -> bool:
        """
        POST the start action.

        Returns:
            True if the app reports STARTED, False for any other state

        Raises:
            RequestError: on a non-success status
        """
        return await self._app_action(api_address, access_token, app_guid, "start", STARTED_STATE)

    async def stop_app_with_guid(self, api_address: str, access_token: str, app_guid: str) -> bool:
        """Like `start_app_with_guid`, expecting STOPPED."""
        return await self._app_action(api_address, access_token, app_guid, "stop", STOPPED_STATE)

    async def _app_action(
        self,
        api_address: str,
        access_token: str,
        app_guid: str,
        action: str,
        expected_state: str,
    ) -> bool:
        path = f"{APPS.path}/{app_guid}/actions/{action}"
        response = await self._client().post(
            build_uri(api_address, path), headers=self._auth_headers(access_token)
        )
        if not response.is_success:
            raise RequestError("POST", path, response.status_code)

        try:
            app = models.App.model_validate(self._json(response))
        except ValidationError as e:
            raise JsonParsingError(f"Unable to parse response from POST `{path}`") from e

        if app.state != expected_state:
            logger.info(f"App {app_guid} reported state {app.state} after {action}")
        return app.state == expected_state

    async def delete_app_with_guid(self, api_address: str, access_token: str, app_guid: str) -> bool:
        """
        DELETE an app. Deletion is asynchronous on the platform, so only
        202 Accepted counts as success.

        Raises:
            RequestError: on any other status, 200 and 204 included
        """
        return await self._delete(api_address, access_token, f"{APPS.path}/{app_guid}")

    async def delete_route_with_guid(
        self, api_address: str, access_token: str, route_guid: str
    ) -> bool:
        return await self._delete(api_address, access_token, f"{ROUTES.path}/{route_guid}")

    async def _delete(self, api_address: str, access_token: str, path: str) -> bool:
        response = await self._client().delete(
            build_uri(api_address, path), headers=self._auth_headers(access_token)
        )
        if response.status_code != httpx.codes.ACCEPTED:
            raise RequestError("DELETE", path, response.status_code)
        return True

    # ------------------------------------------------------------------
    # Login discovery
    # ------------------------------------------------------------------

    async def get_auth_server_uri(self, api_address: str) -> str:
        """
        Find the login server advertised by the API root document.

        Raises:
            InvalidTargetUriError: if `api_address` is not an absolute URI
            AuthServerLookupError: on any failure to read `links.login.href`
        """
        root_uri = build_uri(api_address, "/")

        try:
            response = await self._client().get(root_uri)
            if response.status_code != httpx.codes.OK:
                raise RequestError("GET", "/", response.status_code)
            basic_info = models.BasicInfoResponse.model_validate(self._json(response))
        except (httpx.HTTPError, RequestError, JsonParsingError, ValidationError) as e:
            logger.error(f"Auth server lookup at {root_uri} failed: {e}")
            raise AuthServerLookupError() from e

        login_href = basic_info.login_href
        if not login_href:
            logger.error(f"Root document of {root_uri} has no login link")
            raise AuthServerLookupError()
        return login_href

    async def get_login_server_information(self, api_address: str) -> models.LoginInfoResponse:
        """
        Fetch login server information, including the configured prompts.

        Raises:
            AuthServerLookupError: if the login server cannot be located
            RequestError: if the login server does not answer 200
        """
        login_server = await self.get_auth_server_uri(api_address)
        response = await self._client().get(
            build_uri(login_server, LOGIN_INFO_PATH),
            headers={"Accept": "application/json"},
        )
        if response.status_code != httpx.codes.OK:
            raise RequestError("GET", LOGIN_INFO_PATH, response.status_code)

        try:
            return models.LoginInfoResponse.model_validate(self._json(response))
        except ValidationError as e:
            raise JsonParsingError("Unable to parse login server information") from e
