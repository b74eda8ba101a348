"""
Unit tests for result folder collection.
"""

import shutil

import pytest

from ppuitest.core.exceptions import FileOperationError
from ppuitest.execution.artifacts import ArtifactCollector


@pytest.fixture
def produced_results(config):
    results = config.framework_dir / "test-results"
    results.mkdir(parents=True)
    (results / "results.json").write_text("{}")
    report = config.framework_dir / "playwright-report"
    (report / "data").mkdir(parents=True)
    (report / "index.html").write_text("<html/>")
    (report / "data" / "shot.png").write_bytes(b"png")
    return config.framework_dir


class TestArtifactCollector:
    """Copying results to the output path."""

    def test_copies_both_folders(self, config, produced_results, tmp_path):
        output = tmp_path / "out"

        copied = ArtifactCollector(config).collect(output)

        assert copied == [output / "test-results", output / "playwright-report"]
        assert (output / "test-results" / "results.json").exists()
        assert (output / "playwright-report" / "data" / "shot.png").exists()

    def test_merges_into_existing_output(self, config, produced_results, tmp_path):
        output = tmp_path / "out"
        (output / "test-results").mkdir(parents=True)
        (output / "test-results" / "previous.txt").write_text("keep")

        ArtifactCollector(config).collect(output)

        assert (output / "test-results" / "previous.txt").exists()
        assert (output / "test-results" / "results.json").exists()

    def test_missing_folder_skipped(self, config, tmp_path):
        (config.framework_dir / "test-results").mkdir(parents=True)

        copied = ArtifactCollector(config).collect(tmp_path / "out")

        assert copied == [tmp_path / "out" / "test-results"]

    def test_nothing_produced(self, config, tmp_path):
        assert ArtifactCollector(config).collect(tmp_path / "out") == []

    def test_copy_failure(self, config, produced_results, tmp_path, monkeypatch):
        def fail(*args, **kwargs):
            raise shutil.Error("disk full")

        monkeypatch.setattr("shutil.copytree", fail)

        with pytest.raises(FileOperationError) as exc_info:
            ArtifactCollector(config).collect(tmp_path / "out")

        assert exc_info.value.operation == "copy"
