"""
Shared test fixtures for cf-explorer tests.
"""

# Note: the default config.yaml is skipped automatically when pytest is
# running (see config.py); tests that need a file set CF_EXPLORER_CONFIG_FILE.
import os
import pytest
from unittest.mock import MagicMock


@pytest.fixture(autouse=True)
def isolate_settings(tmp_path, monkeypatch):
    """Keep every test away from the user's cf home and environment."""
    from cf_explorer.config import get_settings

    for var in list(os.environ):
        if var.startswith("CF_EXPLORER_") or var in ("CF_EXECUTABLE", "LOG_LEVEL"):
            monkeypatch.delenv(var, raising=False)

    monkeypatch.setenv("CF_EXPLORER_HOME", str(tmp_path / "cf-home"))

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    from cf_explorer.config import get_settings

    return get_settings()


@pytest.fixture
def cf_home(tmp_path):
    return tmp_path / "cf-home"


@pytest.fixture
def fake_locator():
    """Locator that always finds a cf executable."""
    from cf_explorer.cf_cli.availability import CfExecutableLocator

    locator = MagicMock(spec=CfExecutableLocator)
    locator.locate.return_value = "/usr/bin/cf"
    return locator


@pytest.fixture
def make_jwt():
    """Build an unsigned JWT with the given `exp` claim."""
    import base64
    import json

    def _make(exp):
        def encode(data):
            raw = json.dumps(data).encode()
            return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()

        return f"{encode({'alg': 'none'})}.{encode({'exp': exp, 'sub': 'user'})}.sig"

    return _make
