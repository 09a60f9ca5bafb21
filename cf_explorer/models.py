"""Domain records and operation results handed to the explorer UI."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Generic, List, Optional, TypeVar

if TYPE_CHECKING:
    from cf_explorer.cf_cli.executor import CommandResult

T = TypeVar("T")


class FailureType(Enum):
    """Failures the UI reacts to differently from a generic error."""

    NONE = "none"
    INVALID_CERTIFICATE = "invalid_certificate"
    MISSING_SSO_PROMPT = "missing_sso_prompt"


@dataclass
class DetailedResult(Generic[T]):
    """Outcome of a remote operation, never an unhandled exception."""

    succeeded: bool
    explanation: Optional[str] = None
    content: Optional[T] = None
    failure_type: FailureType = FailureType.NONE
    command_result: Optional["CommandResult"] = None

    @classmethod
    def success(cls, content: Optional[T] = None, explanation: Optional[str] = None):
        return cls(succeeded=True, content=content, explanation=explanation)

    @classmethod
    def failure(
        cls,
        explanation: str,
        failure_type: FailureType = FailureType.NONE,
        command_result: Optional["CommandResult"] = None,
    ):
        return cls(
            succeeded=False,
            explanation=explanation,
            failure_type=failure_type,
            command_result=command_result,
        )


@dataclass(frozen=True)
class ConnectResult:
    """Result of the login sequence."""

    success: bool
    token: Optional[str] = None
    error_message: Optional[str] = None
    failure_type: FailureType = FailureType.NONE


@dataclass
class CloudFoundryInstance:
    name: str
    api_address: str
    skip_ssl_validation: bool = False


@dataclass
class Organization:
    name: str
    guid: str
    parent: CloudFoundryInstance


@dataclass
class Space:
    name: str
    guid: str
    parent: Organization

    @property
    def instance(self) -> CloudFoundryInstance:
        return self.parent.parent


@dataclass
class App:
    """A deployed application; ``parent`` is None when listed across spaces."""

    name: str
    guid: str
    parent: Optional[Space]
    state: str
    stack: Optional[str] = None
    buildpacks: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Route:
    guid: str
    url: Optional[str] = None


@dataclass(frozen=True)
class Buildpack:
    name: str
    stack: str


@dataclass(frozen=True)
class Stack:
    name: str
