"""
Test runner driver.

Stages the caller's tests into the framework checkout and runs one Playwright
invocation scoped to a single browser. The runner's exit code is the result.
"""

import shutil
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from ..core.config import Config
from ..core.exceptions import TestExecutionError
from ..core.logging_config import get_logger, log_performance
from ..core.run_config import Browser, RunConfiguration, TraceMode
from ..environment.commands import CommandRunner
from .models import RESULTS_DIR_NAME, TestRunResult


JSON_REPORT_NAME = f"{RESULTS_DIR_NAME}/results.json"


class TestRunner:
    """Copies tests into the framework and runs Playwright."""

    __test__ = False

    def __init__(self, config: Config, runner: Optional[CommandRunner] = None):
        self.config = config
        self.runner = runner or CommandRunner()
        self.logger = get_logger(__name__)

    def stage_tests(self, source_dir: Path, tests_dir: Path) -> int:
        """
        Copy every file under source_dir into tests_dir, keeping relative paths.

        A missing source directory is created empty and nothing is copied.

        Returns:
            Number of files copied

        Raises:
            TestExecutionError: If copying fails
        """
        source_dir = Path(source_dir)
        tests_dir = Path(tests_dir)

        if not source_dir.exists():
            self.logger.warning(
                f"Test location {source_dir} does not exist; created it empty, no tests staged"
            )
            source_dir.mkdir(parents=True, exist_ok=True)
            return 0

        copied = 0
        try:
            tests_dir.mkdir(parents=True, exist_ok=True)
            for path in sorted(source_dir.rglob("*")):
                if not path.is_file():
                    continue
                destination = tests_dir / path.relative_to(source_dir)
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(path, destination)
                copied += 1
        except OSError as e:
            raise TestExecutionError(f"Failed to stage tests from {source_dir}: {e}")

        if copied == 0:
            self.logger.warning(f"Test location {source_dir} contains no files")
        else:
            self.logger.info(f"Staged {copied} file(s) from {source_dir} into {tests_dir}")
        return copied

    def build_command(self, browser: Browser, trace_mode: TraceMode) -> List[str]:
        """Playwright command line for one browser project."""
        command = [
            "npx",
            "playwright",
            "test",
            f"--project={browser.value}",
            f"--workers={self.config.worker_count}",
            f"--max-failures={self.config.max_failures}",
            "--reporter=list,html,json",
        ]
        if trace_mode != TraceMode.OFF:
            command.append(f"--trace={trace_mode.value}")
        return command

    def run_tests(self, run_config: RunConfiguration, staged_files: int = 0) -> TestRunResult:
        """
        Run the suite and capture the exit code.

        Raises:
            TestExecutionError: If the runner process cannot be started
        """
        command = self.build_command(run_config.browser, run_config.trace_mode)
        env = run_config.to_environment()
        env["PLAYWRIGHT_JSON_OUTPUT_NAME"] = JSON_REPORT_NAME
        env["PLAYWRIGHT_HTML_OPEN"] = "never"

        self.logger.info(
            f"Running tests: {' '.join(command)}",
            extra={
                "metadata": {
                    "browser": run_config.browser.value,
                    "trace": run_config.trace_mode.value,
                    "variables": sorted(env),
                }
            },
        )

        started_at = datetime.now(timezone.utc)
        start_time = time.time()
        try:
            result = self.runner.run(
                command, cwd=self.config.framework_dir, env=env, capture=False
            )
        except OSError as e:
            raise TestExecutionError(
                f"Could not start the test runner: {e}", command=command
            )
        duration = time.time() - start_time

        log_performance(
            self.logger, "test_run", duration, exit_code=result.exit_code
        )
        if result.exit_code == 0:
            self.logger.info("All tests passed")
        else:
            self.logger.error(f"Test run failed with exit code {result.exit_code}")

        return TestRunResult(
            exit_code=result.exit_code,
            command=command,
            duration=duration,
            started_at=started_at,
            staged_files=staged_files,
        )
