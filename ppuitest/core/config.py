"""
Configuration management for the Power Platform UI test task.

Handles environment variables, defaults, and validation of the process-level
settings shared by every component. Task inputs live in run_config.
"""

import os
from typing import Dict, Any
from dataclasses import dataclass, field
from pathlib import Path


VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARN", "ERROR"]
VALID_LOG_FORMATS = ["text", "json", "azure"]


def _running_in_azure_pipelines() -> bool:
    return os.getenv("TF_BUILD", "").lower() == "true"


@dataclass
class Config:
    """Process settings with environment variable support."""

    # Environment detection
    ci_mode: bool = field(default=False)

    # Logging configuration
    log_level: str = field(default="INFO")
    log_format: str = field(default="text")

    # Working directories
    work_dir: Path = field(default_factory=lambda: Path.cwd() / ".ppuitest")
    logs_dir: Path = field(default_factory=lambda: Path.cwd() / ".ppuitest" / "logs")

    # Runtime and test runner settings
    node_version: str = field(default="20.11.1")
    worker_count: int = field(default=2)
    max_failures: int = field(default=5)
    artifact_sample_limit: int = field(default=5)
    framework_tests_subdir: str = field(default="tests")

    def __post_init__(self):
        """Apply environment overrides and normalise values."""
        # CI mode
        azure = _running_in_azure_pipelines()
        ci_env = os.getenv("CI", "").lower() == "true"
        if (ci_env or azure) and self.ci_mode is False:
            self.ci_mode = True

        log_env = os.getenv("PPUITEST_LOG_LEVEL")
        if log_env:
            self.log_level = log_env
        if self.log_level.upper() not in VALID_LOG_LEVELS:
            self.log_level = "INFO"
        else:
            self.log_level = self.log_level.upper()

        # Pipeline log format unless explicitly set otherwise
        format_env = os.getenv("PPUITEST_LOG_FORMAT")
        if format_env and format_env.lower() in VALID_LOG_FORMATS:
            self.log_format = format_env.lower()
        elif self.log_format == "text" and azure:
            self.log_format = "azure"
        elif self.log_format == "text" and self.ci_mode:
            self.log_format = "json"

        work_env = os.getenv("PPUITEST_WORK_DIR")
        if work_env:
            self.work_dir = Path(work_env)
            self.logs_dir = self.work_dir / "logs"

        node_env = os.getenv("PPUITEST_NODE_VERSION")
        if node_env:
            self.node_version = node_env.lstrip("v")

    @property
    def is_ci_mode(self) -> bool:
        """Check if running in a CI environment."""
        return self.ci_mode

    @property
    def debug_enabled(self) -> bool:
        """Check if debug logging is enabled."""
        return self.log_level == "DEBUG"

    @property
    def framework_dir(self) -> Path:
        """Local checkout of the Playwright test framework."""
        return self.work_dir / "framework"

    @property
    def framework_tests_dir(self) -> Path:
        """Directory inside the framework that receives staged tests."""
        return self.framework_dir / self.framework_tests_subdir

    @property
    def tools_dir(self) -> Path:
        """Directory that holds downloaded runtimes."""
        return self.work_dir / "tools"

    def get_log_file_path(self) -> Path:
        """Get the main log file path."""
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        return self.logs_dir / "ppuitest.log"

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for logging."""
        return {
            "ci_mode": self.ci_mode,
            "log_level": self.log_level,
            "log_format": self.log_format,
            "work_dir": str(self.work_dir),
            "logs_dir": str(self.logs_dir),
            "node_version": self.node_version,
            "worker_count": self.worker_count,
            "max_failures": self.max_failures,
            "artifact_sample_limit": self.artifact_sample_limit,
        }

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        ci = (
            os.getenv("CI", "").lower() == "true"
            or _running_in_azure_pipelines()
        )
        log_level = os.getenv("PPUITEST_LOG_LEVEL", "INFO").upper()

        return cls(ci_mode=ci, log_level=log_level)

    def validate(self) -> None:
        """Validate configuration and raise ValidationError if invalid."""
        from .exceptions import ValidationError

        errors = []

        if self.log_level not in VALID_LOG_LEVELS:
            errors.append(
                f"Invalid log level: {self.log_level}. Must be one of {VALID_LOG_LEVELS}"
            )

        if self.log_format not in VALID_LOG_FORMATS:
            errors.append(
                f"Invalid log format: {self.log_format}. Must be one of {VALID_LOG_FORMATS}"
            )

        if self.worker_count < 1:
            errors.append("worker_count must be at least 1")

        if self.max_failures < 1:
            errors.append("max_failures must be at least 1")

        if self.artifact_sample_limit < 1:
            errors.append("artifact_sample_limit must be at least 1")

        if not self.node_version or not self.node_version[0].isdigit():
            errors.append(f"Invalid node version: {self.node_version}")

        if errors:
            message = "Configuration validation failed: " + "; ".join(errors)
            raise ValidationError(
                message,
                validation_type="config",
                violations=errors,
            )
