"""
CF CLI Availability: locate the cf executable.

Provides clear error messages with installation instructions.
"""

import logging
import os
import shutil
from typing import Optional

logger = logging.getLogger(__name__)

CF_EXECUTABLE_NAME = "cf"
INSTALL_DOCUMENTATION_URL = "https://docs.cloudfoundry.org/cf-cli/install-go-cli.html"


class CfExecutableLocator:
    """
    Resolves the full path of the cf executable.

    A configured path wins over a PATH lookup. The result of the PATH lookup
    is cached for the lifetime of the locator.
    """

    def __init__(self, configured_path: Optional[str] = None):
        """
        Initialize the locator.

        Args:
            configured_path: Explicit path to the executable (optional)
        """
        self._configured_path = configured_path
        self._cached_path: Optional[str] = None

    def locate(self) -> Optional[str]:
        """
        Find the cf executable.

        Returns:
            Full path to the executable, or None if it cannot be found
        """
        if self._configured_path:
            path = os.path.expanduser(self._configured_path)
            if os.path.isfile(path) and os.access(path, os.X_OK):
                return path
            logger.warning(f"Configured cf executable not usable: {path}")
            return None

        if self._cached_path is None:
            self._cached_path = shutil.which(CF_EXECUTABLE_NAME)
            if self._cached_path is None:
                logger.warning("cf executable not found on PATH")

        return self._cached_path

    def is_available(self) -> bool:
        return self.locate() is not None

    def get_error_message(self) -> str:
        """
        Get a user-friendly error message for a missing executable.

        Returns:
            Error message with installation instructions
        """
        return (
            "Error: the cf CLI is not installed or not in PATH.\n\n"
            f"For installation instructions:\n"
            f"  {INSTALL_DOCUMENTATION_URL}"
        )
