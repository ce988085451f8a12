"""Data types shared across the mailbox modules."""

from dataclasses import dataclass
from datetime import datetime

from radar.rules.types import RuleRecord


@dataclass(frozen=True)
class MessageSummary:
    """Metadata-only view of a Gmail message.

    Built from a ``format=metadata`` fetch (From, Subject, Date headers plus
    snippet); the body is never downloaded.

    ``history_id`` is the mailbox change-sequence id at which the message was
    last modified; the poller folds it into the sync cursor.
    """

    id: str
    thread_id: str
    subject: str
    snippet: str
    sender: str                  # raw From header, e.g. "Jane <jane@x.com>"
    sender_email: str            # lower-cased address only
    sender_domain: str | None
    received_at: datetime
    history_id: str | None = None
    is_vip: bool = False
    rule: RuleRecord | None = None  # VIP rule that promoted the message

    @property
    def text(self) -> str:
        """Lower-cased subject + snippet, the text rules and extractors test."""
        return f"{self.subject} {self.snippet}".lower()
