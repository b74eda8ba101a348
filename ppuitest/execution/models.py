"""
Data models for test execution and artifact discovery.

Defines Pydantic models for the test runner result, discovered artifacts and
the failure summary printed for diagnostics.
"""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


RESULTS_DIR_NAME = "test-results"
REPORT_DIR_NAME = "playwright-report"


class ArtifactType(Enum):
    """Types of test artifacts."""

    RESULT_JSON = "result_json"
    TRACE = "trace"
    SCREENSHOT = "screenshot"
    VIDEO = "video"
    LOG = "log"


class ArtifactReference(BaseModel):
    """A discovered artifact file."""

    model_config = ConfigDict(frozen=True)

    artifact_type: ArtifactType = Field(..., description="Type of artifact")
    file_path: str = Field(..., description="Path to artifact file")
    file_size: int = Field(0, ge=0, description="File size in bytes")

    @property
    def file_name(self) -> str:
        return Path(self.file_path).name


class TestRunResult(BaseModel):
    """Outcome of one test runner invocation."""

    __test__ = False

    model_config = ConfigDict(extra="forbid")

    exit_code: int = Field(..., description="Test runner exit code")
    command: List[str] = Field(default_factory=list, description="Runner command line")
    duration: float = Field(0.0, ge=0, description="Execution duration in seconds")
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    staged_files: int = Field(0, ge=0, description="Number of test files staged")
    artifacts: List[ArtifactReference] = Field(
        default_factory=list, description="Artifacts discovered after a failure"
    )

    @property
    def is_success(self) -> bool:
        return self.exit_code == 0

    def get_artifacts_by_type(self, artifact_type: ArtifactType) -> List[ArtifactReference]:
        return [a for a in self.artifacts if a.artifact_type == artifact_type]

    def get_screenshots(self) -> List[str]:
        return [a.file_path for a in self.get_artifacts_by_type(ArtifactType.SCREENSHOT)]

    def to_summary(self) -> Dict[str, Any]:
        return {
            "exit_code": self.exit_code,
            "duration": self.duration,
            "staged_files": self.staged_files,
            "artifacts_count": len(self.artifacts),
        }


class FailedTest(BaseModel):
    """A failing test extracted from the JSON report."""

    title: str
    file: Optional[str] = None
    error: Optional[str] = None


class FailureReport(BaseModel):
    """Diagnostic summary produced after a failing run."""

    artifacts: List[ArtifactReference] = Field(default_factory=list)
    failed_tests: List[FailedTest] = Field(default_factory=list)
    excerpts: Dict[str, str] = Field(
        default_factory=dict, description="First lines of JSON and log files"
    )
    environment_hints: Dict[str, bool] = Field(
        default_factory=dict, description="Whether each known variable was set"
    )
    truncated: Dict[str, int] = Field(
        default_factory=dict, description="Artifacts not listed per category"
    )

    def get_artifacts_by_type(self, artifact_type: ArtifactType) -> List[ArtifactReference]:
        return [a for a in self.artifacts if a.artifact_type == artifact_type]

    def render(self) -> str:
        """Human-readable summary for the pipeline log."""
        lines = ["Test failure analysis"]
        if self.failed_tests:
            lines.append("Failed tests:")
            for test in self.failed_tests:
                location = f" ({test.file})" if test.file else ""
                lines.append(f"  - {test.title}{location}")
                if test.error:
                    lines.append(f"      {test.error}")
        for artifact_type in ArtifactType:
            found = self.get_artifacts_by_type(artifact_type)
            if not found:
                continue
            lines.append(f"{artifact_type.value} files:")
            lines.extend(f"  - {a.file_path}" for a in found)
            hidden = self.truncated.get(artifact_type.value, 0)
            if hidden:
                lines.append(f"  ... and {hidden} more")
        if not self.artifacts:
            lines.append("No artifacts were found")
        for name, excerpt in self.excerpts.items():
            lines.append(f"--- {name} ---")
            lines.append(excerpt)
        if self.environment_hints:
            lines.append("Environment:")
            for name, present in self.environment_hints.items():
                lines.append(f"  {name}: {'set' if present else 'NOT SET'}")
        return "\n".join(lines)
