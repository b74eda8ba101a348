"""Core components for the Power Platform UI test task."""

from .config import Config
from .exceptions import (
    UITestTaskError,
    ValidationError,
    AuthError,
    ApiError,
    ApplicationUserError,
    NotFoundError,
    RoleAssignmentError,
    BootstrapError,
    TestExecutionError,
    FileOperationError,
)
from .logging_config import setup_logging, register_secret
from .run_config import RunConfiguration, Browser, TraceMode
from .workflow import RunContext, TaskState

__all__ = [
    "Config",
    "RunConfiguration",
    "Browser",
    "TraceMode",
    "UITestTaskError",
    "ValidationError",
    "AuthError",
    "ApiError",
    "ApplicationUserError",
    "NotFoundError",
    "RoleAssignmentError",
    "BootstrapError",
    "TestExecutionError",
    "FileOperationError",
    "setup_logging",
    "register_secret",
    "RunContext",
    "TaskState",
]
