"""
Environment: Environment isolation for the cf CLI.

Every cf invocation gets CF_HOME pointed at a directory owned by the
explorer, so its targeting state never mixes with the user's own cf session.
"""

import logging
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

CF_HOME_VAR = "CF_HOME"
PROXY_VARS = ("HTTPS_PROXY", "https_proxy")


class EnvironmentBuilder:
    """
    Builds the extra environment variables for cf subprocess execution.

    The CF_HOME directory is created on first use. An optional proxy is
    exported the way the cf CLI expects it.
    """

    def __init__(self, cf_home: str, proxy: Optional[str] = None):
        """
        Args:
            cf_home: Directory exported as CF_HOME
            proxy: HTTPS proxy URL for cf's own API calls (optional)
        """
        self._cf_home = str(Path(cf_home).expanduser())
        self._proxy = proxy

    @property
    def cf_home(self) -> str:
        return self._cf_home

    @property
    def proxy(self) -> Optional[str]:
        return self._proxy

    @proxy.setter
    def proxy(self, value: Optional[str]) -> None:
        self._proxy = value

    def build_env(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """
        Build environment variables for one cf invocation.

        Args:
            extra: Caller-supplied variables; CF_HOME cannot be overridden

        Returns:
            Variables to add to the inherited environment
        """
        Path(self._cf_home).mkdir(parents=True, exist_ok=True)

        env: Dict[str, str] = {}
        if self._proxy:
            for var in PROXY_VARS:
                env[var] = self._proxy

        if extra:
            if CF_HOME_VAR in extra:
                logger.warning("Ignoring caller-supplied CF_HOME")
            env.update({k: v for k, v in extra.items() if k != CF_HOME_VAR})

        env[CF_HOME_VAR] = self._cf_home
        return env
