"""
CredentialCache: the bearer token obtained from the cf CLI.

Refreshing a token means running `cf oauth-token`, which reads and may
rewrite the CLI's config under CF_HOME. The refresh therefore shares the
gateway's environment lock, and is double-checked so that a crowd of callers
waiting on an expired token triggers a single refresh.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from cf_explorer.cf_cli.gateway import CfCliGateway, raise_if_invalid_refresh_token

logger = logging.getLogger(__name__)

OAUTH_TOKEN_ARGS = ["oauth-token"]
BEARER_PREFIX = "bearer "


@dataclass(frozen=True)
class Credential:
    token: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


def format_token(raw: str) -> str:
    """Strip line breaks and the scheme prefix from `cf oauth-token` output."""
    token = raw.replace("\r", "").replace("\n", "").strip()
    if token.lower().startswith(BEARER_PREFIX):
        token = token[len(BEARER_PREFIX):]
    return token


def decode_token_expiry(token: str) -> datetime:
    """
    Read the `exp` claim of a JWT without verifying its signature.

    Raises:
        ValueError: if the token is not a JWT with a numeric `exp` claim
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise ValueError("Access token is not a JWT")

    payload = parts[1]
    payload += "=" * (-len(payload) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Access token payload is not decodable: {e}") from e

    exp = claims.get("exp") if isinstance(claims, dict) else None
    if not isinstance(exp, (int, float)) or isinstance(exp, bool):
        raise ValueError("Access token has no expiry claim")

    return datetime.fromtimestamp(exp, tz=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialCache:
    """Caches the current access token and refreshes it on expiry."""

    def __init__(self, gateway: CfCliGateway, clock: Callable[[], datetime] = _utcnow):
        self._gateway = gateway
        self._clock = clock
        self._credential: Optional[Credential] = None

    @property
    def cached(self) -> Optional[Credential]:
        return self._credential

    def _needs_refresh(self) -> bool:
        credential = self._credential
        return credential is None or credential.is_expired(self._clock())

    def get_token(self) -> Optional[str]:
        """
        Return a valid access token, refreshing it if needed.

        Blocking; call through the thread pool from coroutines.

        Returns:
            The token, or None if it could not be obtained

        Raises:
            InvalidRefreshTokenError: if the refresh token is no longer valid
        """
        if self._needs_refresh():
            with self._gateway.environment_lock:
                # Another thread may have refreshed while we waited
                if self._needs_refresh():
                    self._credential = self._refresh()

        credential = self._credential
        return credential.token if credential is not None else None

    def _refresh(self) -> Optional[Credential]:
        result = self._gateway.execute(OAUTH_TOKEN_ARGS)
        raise_if_invalid_refresh_token(result)

        if not result.succeeded:
            logger.error(f"Access token refresh failed: {result.explanation}")
            return None

        token = format_token(result.stdout)
        try:
            expires_at = decode_token_expiry(token)
        except ValueError as e:
            logger.error(f"Something went wrong while renewing the access token: {e}")
            return None

        logger.debug(f"Access token refreshed, expires at {expires_at.isoformat()}")
        return Credential(token=token, expires_at=expires_at)

    def invalidate(self) -> None:
        """Drop the cached token so the next `get_token` refreshes."""
        with self._gateway.environment_lock:
            self._credential = None
