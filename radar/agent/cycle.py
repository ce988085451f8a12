"""One poll cycle: fetch candidates, upsert threads, gate and persist tasks, advance the cursor."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from radar.mail.gmail_client import AuthorizationError
from radar.mail.redact import safe_log
from radar.mail.retriever import MailboxRetriever
from radar.mail.types import MessageSummary
from radar.processing.extractor import extract_tasks
from radar.rules.types import RuleRecord
from radar.storage.db import RadarDatabase
from radar.storage.models import ProcessingConfig

logger = logging.getLogger(__name__)


class SettingsAccessor(Protocol):
    """Read-through access to the settings the cycle depends on.

    Called at the start of every cycle so edits take effect on the next run.
    """

    def get_vip_list(self) -> list[str]: ...

    def get_processing_config(self) -> ProcessingConfig: ...

    def list_rules(self) -> list[RuleRecord]: ...


#: Builds a retriever bound to a freshly-authorised mailbox client.
#: Called once per cycle so refreshed or re-issued tokens are picked up.
RetrieverFactory = Callable[[], MailboxRetriever]


# ── Cycle summary ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CycleSummary:
    """Counts for one cycle. ``to_log_fields`` is the monitoring contract."""

    processed: int = 0
    new_threads: int = 0
    new_tasks: int = 0
    ask_first: int = 0
    failed: int = 0
    vip_only: bool | None = None
    confidence: float | None = None
    vip_count: int = 0
    history_updated: bool = False
    needs_reauth: bool = False
    error: str | None = None

    @classmethod
    def zero(
        cls,
        config: ProcessingConfig | None,
        vip_count: int,
        *,
        needs_reauth: bool = False,
        error: str | None = None,
    ) -> CycleSummary:
        return cls(
            vip_only=config.vip_only if config else None,
            confidence=config.confidence if config else None,
            vip_count=vip_count,
            needs_reauth=needs_reauth,
            error=error,
        )

    def to_log_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "cycle": "run",
            "processed": self.processed,
            "newThreads": self.new_threads,
            "newTasks": self.new_tasks,
            "askFirst": self.ask_first,
            "vipOnly": self.vip_only,
            "confidence": round(self.confidence, 2) if self.confidence is not None else None,
            "vipCount": self.vip_count,
            "historyUpdated": "yes" if self.history_updated else "no",
            "failed": self.failed,
        }
        if self.error is not None:
            fields["error"] = self.error
        if self.needs_reauth:
            fields["needsReauth"] = True
        return fields


def summarize_message_for_log(message: MessageSummary) -> dict[str, Any]:
    """Fingerprint of a message for log lines; the sender is masked by safe_log."""
    return {
        "threadId": message.thread_id,
        "subject": message.subject or "(no subject)",
        "sender": message.sender,
        "receivedAt": message.received_at.isoformat(),
        "isVip": message.is_vip,
    }


def _history_int(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring non-numeric history id %r", value)
        return None


# ── Poll cycle ─────────────────────────────────────────────────────────────────


class PollCycle:
    """Runs one end-to-end ingestion cycle. ``run()`` never raises.

    Messages are processed strictly one at a time. A failure on one message
    is logged and counted; the rest of the batch still runs, and only the
    history ids of messages that completed feed the cursor.

    Usage::

        cycle = PollCycle(lambda: MailboxRetriever(build_gmail_client(path)), db)
        summary = await cycle.run()
    """

    def __init__(
        self,
        retriever_factory: RetrieverFactory,
        db: RadarDatabase,
        settings: SettingsAccessor | None = None,
    ) -> None:
        self._retriever_factory = retriever_factory
        self._db = db
        self._settings: SettingsAccessor = settings or db

    async def run(self) -> CycleSummary:
        config: ProcessingConfig | None = None
        vip_list: list[str] = []
        try:
            vip_list = self._settings.get_vip_list()
            config = self._settings.get_processing_config()
            rules = self._settings.list_rules()
            summary = await self._run(config, vip_list, rules)
        except AuthorizationError as exc:
            logger.error("Gmail authorization failed: %s — run `radar auth` to re-authorize", exc)
            summary = CycleSummary.zero(config, len(vip_list), needs_reauth=True, error=str(exc))
        except Exception as exc:  # noqa: BLE001
            safe_log(logger, "[poller] cycle error", {"message": str(exc)}, level=logging.ERROR)
            logger.debug("Cycle failure detail", exc_info=True)
            summary = CycleSummary.zero(config, len(vip_list), error=str(exc))

        safe_log(logger, "[poller]", summary.to_log_fields())
        return summary

    # ── Internal ───────────────────────────────────────────────────────────────

    async def _run(
        self,
        config: ProcessingConfig,
        vip_list: list[str],
        rules: list[RuleRecord],
    ) -> CycleSummary:
        cursor = self._db.get_cursor()
        retriever = self._retriever_factory()
        candidates = await retriever.fetch_candidates(
            cursor, vip_list, rules, vip_only=config.vip_only
        )
        if not candidates:
            return CycleSummary.zero(config, len(vip_list))

        new_threads = new_tasks = ask_first = failed = 0
        latest: int | None = None

        for message in candidates:
            try:
                created_thread, created_tasks, gated = self._process_message(message, config)
            except Exception as exc:  # noqa: BLE001
                failed += 1
                logger.error(
                    "Processing failed for message %s: %s", message.id, exc, exc_info=True
                )
                continue

            new_threads += int(created_thread)
            new_tasks += created_tasks
            ask_first += gated

            history_id = _history_int(message.history_id)
            if history_id is not None and (latest is None or history_id > latest):
                latest = history_id

        history_updated = False
        if latest is not None:
            history_updated = self._db.advance_cursor(latest)
            if not history_updated:
                logger.info("Cursor not advanced: %d is not newer than stored value", latest)

        return CycleSummary(
            processed=len(candidates),
            new_threads=new_threads,
            new_tasks=new_tasks,
            ask_first=ask_first,
            failed=failed,
            vip_only=config.vip_only,
            confidence=config.confidence,
            vip_count=len(vip_list),
            history_updated=history_updated,
        )

    def _process_message(
        self, message: MessageSummary, config: ProcessingConfig
    ) -> tuple[bool, int, int]:
        """Upsert the thread and persist gated tasks. Returns (new thread, tasks, ask-first)."""
        thread, is_new = self._db.upsert_thread(message)
        created = ask_first = 0

        for task in extract_tasks(message):
            if task.confidence < config.confidence:
                ask_first += 1
                safe_log(logger, "[poller] ask-first", {
                    "thread": summarize_message_for_log(message),
                    "confidence": task.confidence,
                    "threshold": config.confidence,
                })
                continue

            record = self._db.create_task_if_absent(
                thread.id, task.title, task.status, task.priority
            )
            if record is None:
                logger.debug("Task %r already tracked on thread %s", task.title, thread.external_id)
                continue
            created += 1
            safe_log(logger, "[poller] task created", {
                "taskId": record.id,
                "title": record.title,
                "priority": record.priority,
                "thread": summarize_message_for_log(message),
            })

        return is_new, created, ask_first
