"""Bounded retry for remote calls that may fail on a stale access token."""

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from cf_explorer.errors import AccessTokenUnavailableError, InvalidRefreshTokenError

logger = logging.getLogger(__name__)

T = TypeVar("T")

BeforeRetry = Callable[[Exception], Awaitable[None]]


def is_retryable_error(error: BaseException) -> bool:
    """A fresh token cannot fix a dead session or a token that could not be fetched."""
    return not isinstance(error, (InvalidRefreshTokenError, AccessTokenUnavailableError))


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    retry_amount: int,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    before_retry: Optional[BeforeRetry] = None,
    description: str = "operation",
) -> T:
    """
    Await `operation`, retrying at most `retry_amount` times.

    Each retry is preceded by `before_retry`, which is where callers drop the
    cached credential. Errors rejected by `is_retryable`, and the error of the
    last attempt, are re-raised unchanged.

    Args:
        operation: Zero-argument coroutine function; called once per attempt
        retry_amount: Number of retries after the first attempt
        is_retryable: Predicate deciding whether an error may be retried
        before_retry: Awaited with the failing error before each retry
        description: Used in log messages
    """
    retries_left = max(retry_amount, 0)

    while True:
        try:
            return await operation()
        except Exception as e:
            if retries_left <= 0 or not is_retryable(e):
                raise

            logger.info(
                f"{description} failed: {e}. Clearing the cached access token and retrying "
                f"({retries_left} retry attempts remaining)"
            )
            if before_retry is not None:
                await before_retry(e)
            retries_left -= 1
