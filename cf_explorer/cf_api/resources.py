"""Resource kinds served by the paginated v3 endpoints."""

from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, Type, TypeVar

from pydantic import ValidationError

from cf_explorer.cf_api import models
from cf_explorer.errors import JsonParsingError

ItemT = TypeVar("ItemT")

__all__ = [
    "ResourceKind",
    "ORGS",
    "SPACES",
    "APPS",
    "ROUTES",
    "BUILDPACKS",
    "STACKS",
]


@dataclass(frozen=True)
class ResourceKind(Generic[ItemT]):
    """Everything the pager needs to know about one collection.

    Adding a collection means adding a kind here; the traversal in
    ``CfApiClient.list_resources`` never changes.
    """

    name: str
    path: str
    item_model: Type[ItemT]
    filter_param: Optional[str] = None
    items_field: str = "resources"

    def filter_query(self, value: str) -> str:
        if self.filter_param is None:
            raise ValueError(f"Resource kind '{self.name}' does not support filtering")
        return f"{self.filter_param}={value}"

    def decode(self, payload: Any) -> "models.ResourcePage[ItemT]":
        """
        Validate one page payload.

        Raises:
            JsonParsingError: if the payload is not a page of this kind
        """
        if not isinstance(payload, dict):
            raise JsonParsingError(f"Page of {self.name} is not a JSON object")

        page_data: Dict[str, Any] = {
            "pagination": payload.get("pagination") or {},
            "items": payload.get(self.items_field) or [],
        }
        try:
            return models.ResourcePage[self.item_model].model_validate(page_data)  # type: ignore[name-defined]
        except ValidationError as e:
            raise JsonParsingError(f"Unable to parse page of {self.name}: {e}") from e


ORGS = ResourceKind("orgs", "/v3/organizations", models.Org)
SPACES = ResourceKind("spaces", "/v3/spaces", models.Space, filter_param="organization_guids")
APPS = ResourceKind("apps", "/v3/apps", models.App, filter_param="space_guids")
ROUTES = ResourceKind("routes", "/v3/routes", models.Route, filter_param="app_guids")
BUILDPACKS = ResourceKind("buildpacks", "/v3/buildpacks", models.Buildpack)
STACKS = ResourceKind("stacks", "/v3/stacks", models.Stack)
