"""
Azure Pipelines logging commands.

The agent scans stdout for ``##vso[...]`` commands; these helpers write them
when the task runs inside a pipeline and do nothing otherwise.
"""

import os
import sys
from enum import Enum
from typing import Optional, TextIO


class IssueType(Enum):
    """Issue kinds understood by task.logissue."""

    WARNING = "warning"
    ERROR = "error"


class TaskResult(Enum):
    """Final task results understood by task.complete."""

    SUCCEEDED = "Succeeded"
    SUCCEEDED_WITH_ISSUES = "SucceededWithIssues"
    FAILED = "Failed"


def is_azure_pipelines() -> bool:
    """Check whether the process runs on an Azure Pipelines agent."""
    return os.getenv("TF_BUILD", "").lower() == "true"


def _escape_data(value: str) -> str:
    return (
        value.replace("%", "%AZP25")
        .replace("\r", "%0D")
        .replace("\n", "%0A")
    )


def _escape_property(value: str) -> str:
    return _escape_data(value).replace("]", "%5D").replace(";", "%3B")


def _emit(command: str, data: str, stream: Optional[TextIO] = None, **properties) -> None:
    props = ";".join(
        f"{key}={_escape_property(str(value))}"
        for key, value in properties.items()
        if value is not None
    )
    header = f"##vso[{command} {props};]" if props else f"##vso[{command}]"
    out = stream or sys.stdout
    out.write(f"{header}{_escape_data(data)}\n")
    out.flush()


def set_secret(value: str, stream: Optional[TextIO] = None) -> None:
    """Ask the agent to mask a value in every subsequent log line."""
    if value and is_azure_pipelines():
        _emit("task.setsecret", value, stream)


def log_issue(kind: IssueType, message: str, stream: Optional[TextIO] = None) -> None:
    """Record a warning or error on the pipeline run summary."""
    if is_azure_pipelines():
        _emit("task.logissue", message, stream, type=kind.value)


def complete_task(
    result: TaskResult, message: str = "", stream: Optional[TextIO] = None
) -> None:
    """Set the task result shown in the pipeline UI."""
    if is_azure_pipelines():
        _emit("task.complete", message, stream, result=result.value)
