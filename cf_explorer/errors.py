"""Error hierarchy for the Cloud Foundry session layer.

Every failure raised by the gateway, the API client or the orchestrator
carries an ``ErrorCategory`` so callers can decide between retrying,
re-authenticating and reporting.
"""

from enum import Enum, auto
from typing import List, Optional


class ErrorCategory(Enum):
    """Categories of errors for recovery decisions."""

    INVALID_TARGET = auto()  # API address is not an absolute URI
    AUTH_SERVER_LOOKUP = auto()  # Root document has no login link
    LOGIN = auto()  # A step of the login sequence failed
    INVALID_REFRESH_TOKEN = auto()  # Session is over, never retried
    ACCESS_TOKEN = auto()  # No access token could be obtained
    REQUEST = auto()  # Non-success HTTP status
    PARSING = auto()  # Malformed or absent JSON
    EXECUTABLE_NOT_FOUND = auto()  # cf executable could not be located
    PROCESS_EXECUTION = auto()  # Non-zero exit with no clearer signal


class CloudFoundryException(Exception):
    """Base exception for session layer errors with categorization."""

    def __init__(self, category: ErrorCategory, message: str):
        super().__init__(message)
        self.category = category


class InvalidTargetUriError(CloudFoundryException):
    """Raised when an API address cannot be parsed as an absolute URI."""

    def __init__(self, address: str, message: str = "Invalid target URI"):
        super().__init__(ErrorCategory.INVALID_TARGET, f"{message}: '{address}'")
        self.address = address


class AuthServerLookupError(CloudFoundryException):
    """Raised when the login server cannot be discovered from the API root."""

    def __init__(self, message: str = "Unable to locate authentication server"):
        super().__init__(ErrorCategory.AUTH_SERVER_LOOKUP, message)


class LoginFailureError(CloudFoundryException):
    """Raised when targeting or authenticating through the cf CLI fails."""

    def __init__(self, message: str = "Login failed."):
        super().__init__(ErrorCategory.LOGIN, message)


class InvalidRefreshTokenError(CloudFoundryException):
    """The refresh token can no longer be exchanged for an access token.

    This always propagates to the top-level caller: the session is over and
    the user must log in again.
    """

    def __init__(
        self,
        message: str = "The connection has expired. Please log back in to re-authenticate.",
    ):
        super().__init__(ErrorCategory.INVALID_REFRESH_TOKEN, message)


class AccessTokenUnavailableError(CloudFoundryException):
    """Raised when the credential cache could not produce a token."""

    def __init__(self, message: str):
        super().__init__(ErrorCategory.ACCESS_TOKEN, message)


class RequestError(CloudFoundryException):
    """Non-success HTTP response from the Cloud Controller API."""

    def __init__(self, method: str, path: str, status_code: int):
        super().__init__(
            ErrorCategory.REQUEST,
            f"Response from {method} `{path}` was {status_code}",
        )
        self.method = method
        self.path = path
        self.status_code = status_code


class JsonParsingError(CloudFoundryException):
    """Raised when structured content cannot be recovered from a response."""

    def __init__(
        self,
        message: str = "Unable to parse response from Cloud Foundry API.",
        content: Optional[str] = None,
    ):
        super().__init__(ErrorCategory.PARSING, message)
        self.content = content


class ExecutableNotFoundError(CloudFoundryException):
    """Raised when the cf executable cannot be located."""

    def __init__(self, message: str = "Unable to locate cf executable."):
        super().__init__(ErrorCategory.EXECUTABLE_NOT_FOUND, message)


class ProcessExecutionError(CloudFoundryException):
    """Raised when a cf command exits non-zero without a clearer explanation."""

    def __init__(self, arguments: List[str], exit_code: int, message: Optional[str] = None):
        if message is None:
            message = f"Unable to execute `cf {' '.join(arguments)}`."
        super().__init__(ErrorCategory.PROCESS_EXECUTION, message)
        self.arguments = list(arguments)
        self.exit_code = exit_code


def flatten_exception_messages(exc: BaseException) -> str:
    """Join the messages of an exception chain into one displayable string.

    Follows ``__cause__`` first, then ``__context__``, skipping empty and
    repeated messages.
    """
    messages: List[str] = []
    seen = set()
    current: Optional[BaseException] = exc

    while current is not None and id(current) not in seen:
        seen.add(id(current))
        message = str(current).strip()
        if message and message not in messages:
            messages.append(message)
        current = current.__cause__ or current.__context__

    return "\n".join(messages)
