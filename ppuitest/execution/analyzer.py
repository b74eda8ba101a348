"""
Failure analysis for a failed test run.

Walks the runner's output folders for result JSON, traces, screenshots,
videos and logs, reading at most a fixed number of each, and reports which
of the known environment variables were set. Purely diagnostic: it never
raises.
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..core.config import Config
from ..core.logging_config import get_logger
from .models import (
    REPORT_DIR_NAME,
    RESULTS_DIR_NAME,
    ArtifactReference,
    ArtifactType,
    FailedTest,
    FailureReport,
)


KNOWN_VARIABLES = [
    "APP_URL",
    "APP_NAME",
    "O365_USERNAME",
    "O365_PASSWORD",
    "TENANT_ID",
    "DYNAMICS_URL",
    "CLIENT_ID",
    "ROLE_NAME",
    "TEAM_NAME",
    "BUSINESS_UNIT_NAME",
]

SUFFIXES = {
    ".json": ArtifactType.RESULT_JSON,
    ".zip": ArtifactType.TRACE,
    ".png": ArtifactType.SCREENSHOT,
    ".jpg": ArtifactType.SCREENSHOT,
    ".jpeg": ArtifactType.SCREENSHOT,
    ".webm": ArtifactType.VIDEO,
    ".mp4": ArtifactType.VIDEO,
    ".log": ArtifactType.LOG,
    ".txt": ArtifactType.LOG,
    ".md": ArtifactType.LOG,
}

EXCERPT_LINES = 40
EXCERPT_CHARS = 2000
ERROR_CHARS = 300


def _first_line(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    line = text.strip().splitlines()[0] if text.strip() else ""
    return line[:ERROR_CHARS] or None


def _excerpt(path: Path) -> str:
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        lines = []
        for index, line in enumerate(f):
            if index >= EXCERPT_LINES:
                lines.append("...")
                break
            lines.append(line.rstrip("\n"))
    return "\n".join(lines)[:EXCERPT_CHARS]


class FailureAnalyzer:
    """Builds a bounded diagnostic summary of a failed run."""

    def __init__(self, config: Config):
        self.config = config
        self.limit = config.artifact_sample_limit
        self.logger = get_logger(__name__)

    def search_roots(self, framework_dir: Path) -> List[Path]:
        return [framework_dir / RESULTS_DIR_NAME, framework_dir / REPORT_DIR_NAME]

    def analyze(
        self,
        framework_dir: Optional[Path] = None,
        environment: Optional[Mapping[str, str]] = None,
    ) -> FailureReport:
        """
        Summarise artifacts left by a failing run.

        Args:
            framework_dir: Framework checkout holding the result folders
            environment: Variables passed to the runner; only presence is reported

        Returns:
            Failure report; partial if discovery hit an error
        """
        framework_dir = Path(framework_dir or self.config.framework_dir)
        report = FailureReport()
        environment = environment or {}
        report.environment_hints = {
            name: bool(environment.get(name)) for name in KNOWN_VARIABLES
        }

        try:
            self._discover(self.search_roots(framework_dir), report)
            self._read_json_results(report)
            self._read_excerpts(report)
        except Exception as e:
            self.logger.warning(f"Failure analysis incomplete: {e}")

        self.logger.info(
            f"Failure analysis found {len(report.artifacts)} artifact(s)",
            extra={
                "metadata": {
                    "screenshots": len(report.get_artifacts_by_type(ArtifactType.SCREENSHOT)),
                    "traces": len(report.get_artifacts_by_type(ArtifactType.TRACE)),
                    "videos": len(report.get_artifacts_by_type(ArtifactType.VIDEO)),
                    "failed_tests": len(report.failed_tests),
                }
            },
        )
        return report

    def _discover(self, roots: Iterable[Path], report: FailureReport) -> None:
        counts: Dict[ArtifactType, int] = {t: 0 for t in ArtifactType}
        for root in roots:
            if not root.exists():
                self.logger.debug(f"No {root.name} folder at {root}")
                continue
            for path in sorted(root.rglob("*")):
                artifact_type = SUFFIXES.get(path.suffix.lower())
                if artifact_type is None or not path.is_file():
                    continue
                counts[artifact_type] += 1
                if counts[artifact_type] > self.limit:
                    continue
                report.artifacts.append(
                    ArtifactReference(
                        artifact_type=artifact_type,
                        file_path=str(path),
                        file_size=path.stat().st_size,
                    )
                )
        report.truncated = {
            t.value: count - self.limit for t, count in counts.items() if count > self.limit
        }

    def _read_json_results(self, report: FailureReport) -> None:
        for artifact in report.get_artifacts_by_type(ArtifactType.RESULT_JSON):
            try:
                with open(artifact.file_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                self.logger.debug(f"Skipping unreadable JSON {artifact.file_path}: {e}")
                continue
            if isinstance(data, dict) and "suites" in data:
                for failed in self._failed_specs(data.get("suites") or []):
                    if len(report.failed_tests) >= self.limit:
                        return
                    report.failed_tests.append(failed)

    def _failed_specs(self, suites: List[Dict[str, Any]]) -> Iterable[FailedTest]:
        for suite in suites:
            for spec in suite.get("specs") or []:
                if spec.get("ok", True):
                    continue
                error = None
                for test in spec.get("tests") or []:
                    for result in test.get("results") or []:
                        message = (result.get("error") or {}).get("message")
                        if message:
                            error = _first_line(message)
                            break
                    if error:
                        break
                yield FailedTest(
                    title=spec.get("title") or "untitled",
                    file=spec.get("file") or suite.get("file"),
                    error=error,
                )
            yield from self._failed_specs(suite.get("suites") or [])

    def _read_excerpts(self, report: FailureReport) -> None:
        for artifact_type in (ArtifactType.RESULT_JSON, ArtifactType.LOG):
            for artifact in report.get_artifacts_by_type(artifact_type):
                try:
                    report.excerpts[artifact.file_path] = _excerpt(Path(artifact.file_path))
                except OSError as e:
                    self.logger.debug(f"Could not read {artifact.file_path}: {e}")
