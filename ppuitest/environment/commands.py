"""
Subprocess wrapper used for git, node, npm and npx.

Child processes get the parent environment plus any runtime directories
prepended to PATH and any per-call variables; the parent's own environment
is never modified.
"""

import os
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

from ..core.logging_config import get_logger


@dataclass
class CommandResult:
    """Outcome of one subprocess invocation."""

    args: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def tail(self, lines: int = 20) -> str:
        """Last lines of combined output, for diagnostics."""
        combined = (self.stdout or "") + (self.stderr or "")
        return "\n".join(combined.strip().splitlines()[-lines:])


@dataclass
class CommandRunner:
    """Runs commands with an extended PATH."""

    extra_path: List[Path] = field(default_factory=list)

    def __post_init__(self):
        self.logger = get_logger(__name__)

    def add_to_path(self, directory: Union[str, Path]) -> None:
        directory = Path(directory)
        if directory not in self.extra_path:
            self.extra_path.insert(0, directory)

    def search_path(self) -> str:
        entries = [str(p) for p in self.extra_path]
        entries.append(os.environ.get("PATH", ""))
        return os.pathsep.join(e for e in entries if e)

    def build_env(self, extra_env: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        env = dict(os.environ)
        env["PATH"] = self.search_path()
        if extra_env:
            env.update(extra_env)
        return env

    def which(self, command: str) -> Optional[str]:
        return shutil.which(command, path=self.search_path())

    def run(
        self,
        args: List[str],
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        capture: bool = True,
    ) -> CommandResult:
        """
        Run a command to completion.

        Args:
            args: Command and arguments
            cwd: Working directory
            env: Extra environment variables for this process only
            capture: Capture output instead of streaming it to the console

        Returns:
            Command result with exit code and captured output

        Raises:
            FileNotFoundError: If the executable cannot be found
        """
        executable = self.which(args[0]) or args[0]
        self.logger.debug(
            f"Running: {' '.join(args)}",
            extra={"metadata": {"cwd": str(cwd) if cwd else None}},
        )

        start_time = time.time()
        completed = subprocess.run(
            [executable, *args[1:]],
            cwd=str(cwd) if cwd else None,
            env=self.build_env(env),
            capture_output=capture,
            text=True,
            check=False,
        )
        duration = time.time() - start_time

        result = CommandResult(
            args=list(args),
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            duration=duration,
        )
        self.logger.debug(
            f"Exited {result.exit_code} after {duration:.2f}s: {' '.join(args)}"
        )
        return result
