"""Runtime and test framework preparation."""

from .bootstrap import EnvironmentBootstrapper, node_archive
from .commands import CommandResult, CommandRunner

__all__ = [
    "EnvironmentBootstrapper",
    "node_archive",
    "CommandResult",
    "CommandRunner",
]
