"""Keyword-weighted task extraction from message metadata."""

import re

from radar.mail.types import MessageSummary
from radar.processing.types import CandidateTask, TaskStatus

#: Ordered (pattern, weight) pairs. The strongest matching signal wins.
TASK_KEYWORDS: list[tuple[re.Pattern[str], float]] = [
    (re.compile(r"\b(due|deadline|by\s+\w+)", re.IGNORECASE), 0.9),
    (re.compile(r"\b(follow up|follow-up|check in)", re.IGNORECASE), 0.6),
    (re.compile(r"\b(action required|please (?:send|review|confirm))", re.IGNORECASE), 0.75),
]

DEFAULT_TITLE = "Follow up"


def detect_task_confidence(subject: str, snippet: str) -> float | None:
    """Return the maximum weight among matching keyword patterns, or None."""
    text = f"{subject} {snippet}".lower()
    weights = [weight for pattern, weight in TASK_KEYWORDS if pattern.search(text)]
    if not weights:
        return None
    return max(weights)


def extract_tasks(message: MessageSummary) -> list[CandidateTask]:
    """Return zero or one candidate task for the message."""
    confidence = detect_task_confidence(message.subject, message.snippet)
    if confidence is None:
        return []

    return [
        CandidateTask(
            title=message.subject.strip() or DEFAULT_TITLE,
            status=TaskStatus.TODO,
            confidence=round(confidence, 2),
        )
    ]
