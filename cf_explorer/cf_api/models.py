"""Cloud Controller v3 response models.

Only the fields needed for paging and for building domain records are
declared; everything else in a payload is ignored. Identifying fields are
optional here so that incomplete records reach translation, where they are
dropped with a warning instead of failing a whole page.
"""

from typing import Any, Dict, Generic, List, Optional, TypeVar
from pydantic import BaseModel, ConfigDict, Field

ItemT = TypeVar("ItemT", bound=BaseModel)


class HypertextReference(BaseModel):
    """A link object: ``{"href": "..."}``."""

    model_config = ConfigDict(frozen=True)

    href: Optional[str] = None


class Pagination(BaseModel):
    total_results: int = 0
    total_pages: int = 0
    first: Optional[HypertextReference] = None
    last: Optional[HypertextReference] = None
    next: Optional[HypertextReference] = None
    previous: Optional[HypertextReference] = None

    @property
    def next_href(self) -> Optional[str]:
        return self.next.href if self.next is not None else None


class ResourcePage(BaseModel, Generic[ItemT]):
    """One page of a paginated collection."""

    pagination: Pagination = Field(default_factory=Pagination)
    items: List[ItemT] = Field(default_factory=list)


class Org(BaseModel):
    guid: Optional[str] = None
    name: Optional[str] = None


class Space(BaseModel):
    guid: Optional[str] = None
    name: Optional[str] = None


class LifecycleData(BaseModel):
    # Shaped for the "buildpack" lifecycle type; docker/kpack apps leave these empty
    buildpacks: Optional[List[str]] = None
    stack: Optional[str] = None


class Lifecycle(BaseModel):
    type: Optional[str] = None
    data: Optional[LifecycleData] = None


class App(BaseModel):
    guid: Optional[str] = None
    name: Optional[str] = None
    state: Optional[str] = None
    lifecycle: Optional[Lifecycle] = None


class Route(BaseModel):
    guid: Optional[str] = None
    host: Optional[str] = None
    path: Optional[str] = None
    url: Optional[str] = None


class Buildpack(BaseModel):
    guid: Optional[str] = None
    name: Optional[str] = None
    stack: Optional[str] = None
    position: Optional[int] = None
    enabled: Optional[bool] = None


class Stack(BaseModel):
    guid: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None


class BasicInfoLinks(BaseModel):
    login: Optional[HypertextReference] = None


class BasicInfoResponse(BaseModel):
    """Root document of the Cloud Controller (``GET /``)."""

    links: Optional[BasicInfoLinks] = None

    @property
    def login_href(self) -> Optional[str]:
        if self.links is None or self.links.login is None:
            return None
        return self.links.login.href


class LoginInfoResponse(BaseModel):
    """Login server information (``GET <login>/login``).

    ``prompts`` maps a prompt name to ``[type, display name]``, e.g.
    ``{"passcode": ["password", "One Time Code (Get one at https://...)"]}``.
    """

    prompts: Dict[str, List[str]] = Field(default_factory=dict)
    app: Dict[str, Any] = Field(default_factory=dict)
    links: Dict[str, Any] = Field(default_factory=dict)
