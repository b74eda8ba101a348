"""
Run tracking for the Power Platform UI test task.

Handles run ID generation, state transitions and run duration so that every
log line and the final summary can be correlated to one pipeline run.
"""

import os
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field

from .logging_config import get_logger


class TaskState(Enum):
    """Orchestrator states, in execution order."""

    INIT = "init"
    PROVISION_OR_SKIP = "provision_or_skip"
    BOOTSTRAP = "bootstrap"
    STAGE = "stage"
    EXECUTE = "execute"
    COLLECT_ARTIFACTS = "collect_artifacts"
    CLEANUP = "cleanup"
    DONE = "done"


def generate_run_id() -> str:
    """
    Generate a run ID for correlating logs and artifacts.

    Uses the Azure Pipelines build id when available so logs line up with the
    pipeline run; otherwise a date-prefixed random id.
    """
    build_id = os.getenv("BUILD_BUILDID")
    if build_id:
        attempt = os.getenv("SYSTEM_JOBATTEMPT", "1")
        return f"build-{build_id}-{attempt}"

    suffix = uuid.uuid4().hex[:16]
    return f"{datetime.now(timezone.utc).strftime('%Y%m%d')}-{suffix}"


@dataclass
class RunContext:
    """Context information for a single task run."""

    run_id: str = field(default_factory=generate_run_id)
    start_time: float = field(default_factory=time.time)
    current_state: TaskState = TaskState.INIT
    state_history: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.logger = get_logger("ppuitest.workflow")

    @property
    def duration(self) -> float:
        """Get current run duration in seconds."""
        return time.time() - self.start_time

    @property
    def start_timestamp(self) -> str:
        """Get formatted start timestamp."""
        return datetime.fromtimestamp(self.start_time).isoformat()

    @property
    def visited_states(self) -> List[TaskState]:
        return [TaskState(entry["to_state"]) for entry in self.state_history]

    def transition_to(
        self, new_state: TaskState, metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Record a state transition."""
        old_state = self.current_state
        self.current_state = new_state
        self.state_history.append(
            {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "from_state": old_state.value,
                "to_state": new_state.value,
                "metadata": metadata or {},
            }
        )
        self.logger.debug(
            f"State: {old_state.value} -> {new_state.value}",
            extra={"metadata": {"run_id": self.run_id, **(metadata or {})}},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert run context to dictionary."""
        return {
            "run_id": self.run_id,
            "start_time": self.start_timestamp,
            "duration": self.duration,
            "state": self.current_state.value,
            "transitions": len(self.state_history),
            "metadata": self.metadata,
        }
