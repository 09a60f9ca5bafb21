"""Cloud Controller v3 API client."""

from .client import CfApiClient, build_uri
from .resources import APPS, BUILDPACKS, ORGS, ROUTES, SPACES, STACKS, ResourceKind

__all__ = [
    "CfApiClient",
    "build_uri",
    "ResourceKind",
    "ORGS",
    "SPACES",
    "APPS",
    "ROUTES",
    "BUILDPACKS",
    "STACKS",
]
