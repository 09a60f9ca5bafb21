"""
Unit Tests: bounded retry.
"""

from unittest.mock import AsyncMock

import pytest


class TestRunWithRetry:
    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self):
        from cf_explorer.session.retry import run_with_retry

        operation = AsyncMock(return_value="ok")
        before_retry = AsyncMock()

        result = await run_with_retry(operation, retry_amount=1, before_retry=before_retry)

        assert result == "ok"
        operation.assert_awaited_once()
        before_retry.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retries_once_then_succeeds(self):
        from cf_explorer.session.retry import run_with_retry

        error = RuntimeError("401")
        operation = AsyncMock(side_effect=[error, "ok"])
        before_retry = AsyncMock()

        result = await run_with_retry(operation, retry_amount=1, before_retry=before_retry)

        assert result == "ok"
        assert operation.await_count == 2
        before_retry.assert_awaited_once_with(error)

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_last_error(self):
        from cf_explorer.session.retry import run_with_retry

        operation = AsyncMock(side_effect=[RuntimeError("first"), RuntimeError("second")])

        with pytest.raises(RuntimeError, match="second"):
            await run_with_retry(operation, retry_amount=1)

        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_zero_retries(self):
        from cf_explorer.session.retry import run_with_retry

        operation = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await run_with_retry(operation, retry_amount=0)

        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_negative_retry_amount_treated_as_zero(self):
        from cf_explorer.session.retry import run_with_retry

        operation = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await run_with_retry(operation, retry_amount=-3)

        operation.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error_name", ["InvalidRefreshTokenError", "AccessTokenUnavailableError"])
    async def test_non_retryable_errors_raise_immediately(self, error_name):
        from cf_explorer import errors
        from cf_explorer.session.retry import run_with_retry

        error_cls = getattr(errors, error_name)
        error = error_cls() if error_name == "InvalidRefreshTokenError" else error_cls("no token")
        operation = AsyncMock(side_effect=error)
        before_retry = AsyncMock()

        with pytest.raises(error_cls):
            await run_with_retry(operation, retry_amount=3, before_retry=before_retry)

        operation.assert_awaited_once()
        before_retry.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_custom_predicate(self):
        from cf_explorer.session.retry import run_with_retry

        operation = AsyncMock(side_effect=[KeyError("k"), "ok"])

        with pytest.raises(KeyError):
            await run_with_retry(
                operation, retry_amount=2, is_retryable=lambda e: not isinstance(e, KeyError)
            )


def test_is_retryable_error():
    from cf_explorer.errors import InvalidRefreshTokenError, RequestError
    from cf_explorer.session.retry import is_retryable_error

    assert is_retryable_error(RequestError("GET", "/v3/apps", 401)) is True
    assert is_retryable_error(InvalidRefreshTokenError()) is False
