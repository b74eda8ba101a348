"""
Test execution components.

Stages tests, runs Playwright, analyses failures and collects result folders.
"""

from .executor import TestRunner
from .analyzer import FailureAnalyzer
from .artifacts import ArtifactCollector
from .models import (
    ArtifactReference,
    ArtifactType,
    FailureReport,
    TestRunResult,
)

__all__ = [
    "TestRunner",
    "FailureAnalyzer",
    "ArtifactCollector",
    "ArtifactReference",
    "ArtifactType",
    "FailureReport",
    "TestRunResult",
]
