"""
Unit tests for process settings.

Tests defaults, environment overrides, CI detection and validation.
"""

from pathlib import Path

import pytest

from ppuitest.core.config import Config
from ppuitest.core.exceptions import ValidationError


class TestConfigDefaults:
    """Default values outside any CI system."""

    def test_defaults(self):
        config = Config()

        assert config.ci_mode is False
        assert config.log_level == "INFO"
        assert config.log_format == "text"
        assert config.node_version == "20.11.1"
        assert config.worker_count == 2
        assert config.max_failures == 5
        assert config.artifact_sample_limit == 5
        assert config.work_dir == Path.cwd() / ".ppuitest"

    def test_derived_directories(self, tmp_path):
        config = Config(work_dir=tmp_path, logs_dir=tmp_path / "logs")

        assert config.framework_dir == tmp_path / "framework"
        assert config.framework_tests_dir == tmp_path / "framework" / "tests"
        assert config.tools_dir == tmp_path / "tools"

    def test_log_file_path_creates_directory(self, tmp_path):
        config = Config(work_dir=tmp_path, logs_dir=tmp_path / "logs")

        path = config.get_log_file_path()

        assert path == tmp_path / "logs" / "ppuitest.log"
        assert path.parent.is_dir()


class TestConfigEnvironment:
    """Environment variable overrides."""

    def test_azure_pipelines_enables_ci_and_azure_format(self, monkeypatch):
        monkeypatch.setenv("TF_BUILD", "True")

        config = Config()

        assert config.is_ci_mode
        assert config.log_format == "azure"

    def test_generic_ci_uses_json_format(self, monkeypatch):
        monkeypatch.setenv("CI", "true")

        config = Config()

        assert config.is_ci_mode
        assert config.log_format == "json"

    def test_explicit_log_format_wins(self, monkeypatch):
        monkeypatch.setenv("TF_BUILD", "True")
        monkeypatch.setenv("PPUITEST_LOG_FORMAT", "JSON")

        assert Config().log_format == "json"

    def test_log_level_override(self, monkeypatch):
        monkeypatch.setenv("PPUITEST_LOG_LEVEL", "debug")

        config = Config()

        assert config.log_level == "DEBUG"
        assert config.debug_enabled

    def test_invalid_log_level_falls_back_to_info(self, monkeypatch):
        monkeypatch.setenv("PPUITEST_LOG_LEVEL", "chatty")

        assert Config().log_level == "INFO"

    def test_work_dir_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PPUITEST_WORK_DIR", str(tmp_path / "agent"))

        config = Config()

        assert config.work_dir == tmp_path / "agent"
        assert config.logs_dir == tmp_path / "agent" / "logs"
        assert config.framework_dir == tmp_path / "agent" / "framework"

    def test_node_version_override_strips_prefix(self, monkeypatch):
        monkeypatch.setenv("PPUITEST_NODE_VERSION", "v22.3.0")

        assert Config().node_version == "22.3.0"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CI", "true")
        monkeypatch.setenv("PPUITEST_LOG_LEVEL", "WARN")

        config = Config.from_env()

        assert config.ci_mode is True
        assert config.log_level == "WARN"


class TestConfigValidation:
    """Validation of settings."""

    def test_valid_config_passes(self):
        Config().validate()

    def test_invalid_values_are_all_reported(self):
        config = Config(worker_count=0, max_failures=0)

        with pytest.raises(ValidationError) as exc_info:
            config.validate()

        assert len(exc_info.value.violations) == 2
        assert exc_info.value.validation_type == "config"

    def test_invalid_node_version(self):
        config = Config(node_version="lts")

        with pytest.raises(ValidationError, match="node version"):
            config.validate()

    def test_to_dict(self):
        data = Config().to_dict()

        assert data["log_level"] == "INFO"
        assert data["worker_count"] == 2
        assert isinstance(data["work_dir"], str)
