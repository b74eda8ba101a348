"""
Power Platform UI Test Task

Provisions a disposable Playwright test environment for Power Platform apps,
runs the suite against a target application, collects artifacts and manages
the test user's Dataverse security role, team and business unit.
"""

__version__ = "0.1.0"
__author__ = "Power Platform UI Test Team"

from .core.config import Config
from .core.exceptions import UITestTaskError
from .core.logging_config import setup_logging
from .core.run_config import RunConfiguration
from .task import UITestTask

__all__ = [
    "Config",
    "RunConfiguration",
    "UITestTaskError",
    "setup_logging",
    "UITestTask",
]
