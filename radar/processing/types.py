"""Types for the task extraction pipeline."""

from dataclasses import dataclass
from enum import Enum


class TaskStatus(str, Enum):
    """Lifecycle state of a tracked task."""

    TODO = "todo"
    WAITING_ON_OTHER = "waiting_on_other"
    WAITING_ON_USER = "waiting_on_user"
    DONE = "done"


@dataclass(frozen=True)
class CandidateTask:
    """An actionable item detected in a message, before the confidence gate."""

    title: str
    status: TaskStatus
    confidence: float  # 0.0 → 1.0, rounded to two decimals

    @property
    def priority(self) -> int:
        """Integer priority stored on the task row (confidence × 10, halves round up)."""
        return int(self.confidence * 10 + 0.5)
