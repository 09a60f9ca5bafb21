"""Session layer: credentials, retry policy and the orchestrator."""

from .credentials import Credential, CredentialCache
from .orchestrator import LoginState, SessionOrchestrator
from .retry import is_retryable_error, run_with_retry

__all__ = [
    "Credential",
    "CredentialCache",
    "LoginState",
    "SessionOrchestrator",
    "is_retryable_error",
    "run_with_retry",
]
