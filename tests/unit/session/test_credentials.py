"""
Unit Tests: CredentialCache.

The gateway is a real CfCliGateway whose `execute` is replaced, so the
environment lock under test is the production one.
"""

import threading
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest


INVALID_REFRESH = (
    "The token expired, was revoked, or the token ID is incorrect. "
    "Please log back in to re-authenticate."
)


def _result(stdout="", stderr="", succeeded=True):
    from cf_explorer.cf_cli.executor import CommandResult

    return CommandResult(
        succeeded=succeeded,
        explanation=None if succeeded else (stderr or "failed"),
        stdout=stdout,
        stderr=stderr,
        exit_code=0 if succeeded else 1,
    )


@pytest.fixture
def gateway(fake_locator, cf_home):
    from cf_explorer.cf_cli.environment import EnvironmentBuilder
    from cf_explorer.cf_cli.gateway import CfCliGateway

    gw = CfCliGateway(fake_locator, EnvironmentBuilder(str(cf_home)))
    gw.execute = MagicMock()
    return gw


def _future_exp(hours=1):
    return int((datetime.now(timezone.utc) + timedelta(hours=hours)).timestamp())


class TestTokenFormatting:
    """Parsing `cf oauth-token` output."""

    def test_strips_scheme_and_newlines(self):
        from cf_explorer.session.credentials import format_token

        assert format_token("bearer abc.def.ghi\n") == "abc.def.ghi"

    def test_decodes_expiry_claim(self, make_jwt):
        from cf_explorer.session.credentials import decode_token_expiry

        expires = decode_token_expiry(make_jwt(1_700_000_000))

        assert expires == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)

    def test_rejects_non_jwt(self):
        from cf_explorer.session.credentials import decode_token_expiry

        with pytest.raises(ValueError):
            decode_token_expiry("not-a-jwt")


class TestGetToken:
    """Refresh, caching and expiry."""

    def test_refreshes_when_empty(self, gateway, make_jwt):
        from cf_explorer.session.credentials import CredentialCache

        token = make_jwt(_future_exp())
        gateway.execute.return_value = _result(f"bearer {token}\n")

        cache = CredentialCache(gateway)

        assert cache.get_token() == token
        gateway.execute.assert_called_once_with(["oauth-token"])

    def test_cached_token_reused(self, gateway, make_jwt):
        from cf_explorer.session.credentials import CredentialCache

        gateway.execute.return_value = _result(f"bearer {make_jwt(_future_exp())}\n")
        cache = CredentialCache(gateway)

        cache.get_token()
        cache.get_token()

        assert gateway.execute.call_count == 1

    def test_expired_token_refreshed(self, gateway, make_jwt):
        """A token is never handed out past its expiry."""
        from cf_explorer.session.credentials import CredentialCache

        old = make_jwt(_future_exp(hours=1))
        new = make_jwt(_future_exp(hours=3))
        gateway.execute.side_effect = [_result(f"bearer {old}"), _result(f"bearer {new}")]

        now = [datetime.now(timezone.utc)]
        cache = CredentialCache(gateway, clock=lambda: now[0])

        assert cache.get_token() == old
        now[0] = now[0] + timedelta(hours=2)
        assert cache.get_token() == new

    def test_invalidate_forces_refresh(self, gateway, make_jwt):
        from cf_explorer.session.credentials import CredentialCache

        gateway.execute.return_value = _result(f"bearer {make_jwt(_future_exp())}")
        cache = CredentialCache(gateway)

        cache.get_token()
        cache.invalidate()

        assert cache.cached is None
        cache.get_token()
        assert gateway.execute.call_count == 2

    def test_failed_refresh_yields_none(self, gateway):
        from cf_explorer.session.credentials import CredentialCache

        gateway.execute.return_value = _result("", "Not logged in.", succeeded=False)

        assert CredentialCache(gateway).get_token() is None

    def test_undecodable_token_yields_none(self, gateway):
        from cf_explorer.session.credentials import CredentialCache

        gateway.execute.return_value = _result("bearer garbage\n")

        assert CredentialCache(gateway).get_token() is None

    def test_invalid_refresh_token_propagates(self, gateway):
        from cf_explorer.errors import InvalidRefreshTokenError
        from cf_explorer.session.credentials import CredentialCache

        gateway.execute.return_value = _result("", INVALID_REFRESH, succeeded=False)
        cache = CredentialCache(gateway)

        with pytest.raises(InvalidRefreshTokenError):
            cache.get_token()

        assert not gateway.environment_lock.locked()

    def test_refresh_runs_inside_environment_lock(self, gateway, make_jwt):
        from cf_explorer.session.credentials import CredentialCache

        held = []

        def execute(args):
            held.append(gateway.environment_lock.held_by_current_thread())
            return _result(f"bearer {make_jwt(_future_exp())}")

        gateway.execute.side_effect = execute

        CredentialCache(gateway).get_token()

        assert held == [True]


class TestConcurrentRefresh:
    """Double-checked locking."""

    def test_concurrent_callers_trigger_one_refresh(self, gateway, make_jwt):
        from cf_explorer.session.credentials import CredentialCache

        token = make_jwt(_future_exp())

        def slow_refresh(args):
            time.sleep(0.05)
            return _result(f"bearer {token}")

        gateway.execute.side_effect = slow_refresh
        cache = CredentialCache(gateway)

        start = threading.Barrier(8)
        results = []

        def worker():
            start.wait()
            results.append(cache.get_token())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert gateway.execute.call_count == 1
        assert results == [token] * 8
