"""cf CLI backend: process execution, environment isolation and trace parsing."""

from .availability import CfExecutableLocator
from .environment import EnvironmentBuilder
from .executor import CommandExecutor, CommandResult, ProcessOutput
from .gateway import CfCliGateway, EnvironmentLock, raise_if_invalid_refresh_token

__all__ = [
    "CfCliGateway",
    "CfExecutableLocator",
    "CommandExecutor",
    "CommandResult",
    "EnvironmentBuilder",
    "EnvironmentLock",
    "ProcessOutput",
    "raise_if_invalid_refresh_token",
]
