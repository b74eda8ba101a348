"""
Result folder collection.

Mirrors the runner's raw results and rendered HTML report from the framework
checkout into the caller's output path.
"""

import shutil
import time
from pathlib import Path
from typing import List

from ..core.config import Config
from ..core.exceptions import FileOperationError
from ..core.logging_config import get_logger, log_performance
from .models import REPORT_DIR_NAME, RESULTS_DIR_NAME


class ArtifactCollector:
    """Copies test-results and playwright-report into the output path."""

    FOLDERS = (RESULTS_DIR_NAME, REPORT_DIR_NAME)

    def __init__(self, config: Config):
        self.config = config
        self.logger = get_logger(__name__)

    def collect(self, output_path: Path) -> List[Path]:
        """
        Copy each result folder that exists.

        Args:
            output_path: Destination directory, created if needed

        Returns:
            Destination folders that were written

        Raises:
            FileOperationError: If a copy fails
        """
        output_path = Path(output_path)
        start_time = time.time()
        copied: List[Path] = []

        for name in self.FOLDERS:
            source = self.config.framework_dir / name
            if not source.exists():
                self.logger.warning(f"No {name} folder produced at {source}")
                continue

            destination = output_path / name
            try:
                output_path.mkdir(parents=True, exist_ok=True)
                shutil.copytree(source, destination, dirs_exist_ok=True)
            except (OSError, shutil.Error) as e:
                raise FileOperationError(
                    f"Failed to copy {name} to {destination}: {e}",
                    file_path=str(destination),
                    operation="copy",
                )
            copied.append(destination)
            self.logger.info(f"Copied {name} to {destination}")

        log_performance(
            self.logger, "collect_artifacts", time.time() - start_time, folders=len(copied)
        )
        return copied
