"""SQLite structured storage — threads, tasks, rules, settings and the sync cursor."""

import json
import logging
import sqlite3
import uuid
from pathlib import Path

from radar.mail.types import MessageSummary
from radar.processing.types import TaskStatus
from radar.rules.matcher import normalize_pattern
from radar.rules.types import RuleAction, RuleDraft, RuleRecord, RuleType
from radar.storage.models import ALL_TABLES, ProcessingConfig, TaskRecord, ThreadRecord

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = Path("data/radar.db")

HISTORY_SETTING_KEY = "lastHistoryId"
VIP_SETTING_KEY = "vipList"
CONFIG_SETTING_KEY = "processingConfig"

_THREAD_COLUMNS = (
    "id, external_id, last_message_id, subject, participants, last_message_at, "
    "is_vip, created_at, updated_at"
)
_RULE_COLUMNS = "id, type, pattern, action, unless_contains, notes, confidence, created_at"


class RadarDatabase:
    """Wraps SQLite for the poller's persistent state.

    One connection, used from the poller's event loop or a CLI command. Calls
    block, which is fine at one mailbox's volume (tens of messages a cycle).

    Also serves as the settings accessor handed to the poll cycle: VIP list,
    processing config and rules are read straight from their tables on every
    call, never cached.

    Usage::

        db = RadarDatabase()
        thread, is_new = db.upsert_thread(message)
        db.create_task_if_absent(thread.id, "Send Q1 numbers", TaskStatus.TODO, 9)
    """

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._create_tables()

    def close(self) -> None:
        """Close the underlying database connection."""
        self._conn.close()

    # ── Threads & tasks ─────────────────────────────────────────────────────────

    def upsert_thread(self, message: MessageSummary) -> tuple[ThreadRecord, bool]:
        """Insert or update the thread the message belongs to.

        Returns the stored record and whether this call created it.
        """
        with self._conn:
            is_new = self._conn.execute(
                "SELECT 1 FROM threads WHERE external_id = ?", (message.thread_id,)
            ).fetchone() is None

            self._conn.execute(
                """
                INSERT INTO threads
                    (external_id, last_message_id, subject, participants,
                     last_message_at, is_vip)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(external_id) DO UPDATE SET
                    last_message_id = excluded.last_message_id,
                    subject         = excluded.subject,
                    participants    = excluded.participants,
                    last_message_at = excluded.last_message_at,
                    is_vip          = excluded.is_vip,
                    updated_at      = datetime('now')
                """,
                (
                    message.thread_id,
                    message.id,
                    message.subject,
                    json.dumps([message.sender]),
                    message.received_at.isoformat(),
                    int(message.is_vip),
                ),
            )
        record = self.get_thread(message.thread_id)
        assert record is not None
        return record, is_new

    def get_thread(self, external_id: str) -> ThreadRecord | None:
        """Return the thread row for an external thread id, or None."""
        row = self._conn.execute(
            f"SELECT {_THREAD_COLUMNS} FROM threads WHERE external_id = ?",
            (external_id,),
        ).fetchone()
        return _thread_from_row(row) if row else None

    def count_threads(self) -> int:
        return int(self._conn.execute("SELECT COUNT(*) FROM threads").fetchone()[0])

    def create_task_if_absent(
        self,
        thread_ref: int,
        title: str,
        status: TaskStatus,
        priority: int,
    ) -> TaskRecord | None:
        """Create a task unless one with the same title exists on the thread.

        Returns the new task, or None when it was a duplicate.
        """
        with self._conn:
            cursor = self._conn.execute(
                """
                INSERT INTO tasks (thread_ref, title, status, priority)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(thread_ref, title) DO NOTHING
                """,
                (thread_ref, title, status.value, priority),
            )
        if cursor.rowcount == 0:
            return None
        row = self._conn.execute(
            "SELECT id, thread_ref, title, status, priority, created_at "
            "FROM tasks WHERE id = ?",
            (cursor.lastrowid,),
        ).fetchone()
        return TaskRecord(**dict(row))

    def list_tasks(self, status: TaskStatus | None = None) -> list[TaskRecord]:
        """Return tasks, highest priority first."""
        query = "SELECT id, thread_ref, title, status, priority, created_at FROM tasks"
        params: tuple[str, ...] = ()
        if status is not None:
            query += " WHERE status = ?"
            params = (status.value,)
        rows = self._conn.execute(query + " ORDER BY priority DESC, id", params).fetchall()
        return [TaskRecord(**dict(r)) for r in rows]

    # ── Sync cursor ─────────────────────────────────────────────────────────────

    def get_cursor(self) -> int | None:
        """Return the stored history id, or None before the first advance."""
        raw = self._get_setting(HISTORY_SETTING_KEY)
        if raw is None:
            return None
        try:
            return int(json.loads(raw))
        except (TypeError, ValueError):
            logger.warning("Ignoring unreadable %s value %r", HISTORY_SETTING_KEY, raw)
            return None

    def advance_cursor(self, history_id: int) -> bool:
        """Store ``history_id`` only if it is strictly greater than the current value.

        The read and the write share one transaction so a concurrent writer
        cannot make the cursor go backwards. Returns True if it was written.
        """
        with self._conn:
            self._conn.execute("BEGIN IMMEDIATE")
            row = self._conn.execute(
                "SELECT value FROM settings WHERE key = ?", (HISTORY_SETTING_KEY,)
            ).fetchone()
            if row is not None:
                try:
                    current = int(json.loads(row["value"]))
                except (TypeError, ValueError):
                    current = None
                if current is not None and history_id <= current:
                    return False
            self._set_setting(HISTORY_SETTING_KEY, json.dumps(str(history_id)))
        return True

    # ── Settings ────────────────────────────────────────────────────────────────

    def get_vip_list(self) -> list[str]:
        raw = self._get_setting(VIP_SETTING_KEY)
        if raw is None:
            return []
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            return []
        if not isinstance(value, list):
            return []
        return [entry for entry in value if isinstance(entry, str)]

    def set_vip_list(self, vips: list[str]) -> None:
        cleaned = [v.strip() for v in vips if v.strip()]
        with self._conn:
            self._set_setting(VIP_SETTING_KEY, json.dumps(cleaned))

    def get_processing_config(self) -> ProcessingConfig:
        raw = self._get_setting(CONFIG_SETTING_KEY)
        default = ProcessingConfig()
        if raw is None:
            return default
        try:
            data = json.loads(raw)
            return ProcessingConfig(
                confidence=float(data.get("confidence", default.confidence)),
                vip_only=bool(data.get("vipOnly", default.vip_only)),
            )
        except (AttributeError, TypeError, ValueError):
            logger.warning("Ignoring unreadable %s value %r", CONFIG_SETTING_KEY, raw)
            return default

    def set_processing_config(self, config: ProcessingConfig) -> None:
        confidence = min(1.0, max(0.0, config.confidence))
        with self._conn:
            self._set_setting(
                CONFIG_SETTING_KEY,
                json.dumps({"confidence": confidence, "vipOnly": config.vip_only}),
            )

    # ── Rules ───────────────────────────────────────────────────────────────────

    def create_rule(self, draft: RuleDraft) -> RuleRecord | None:
        """Store one rule. Returns None when an identical rule is already stored."""
        created = self.create_rules_bulk([draft])
        return created[0] if created else None

    def create_rules_bulk(self, drafts: list[RuleDraft]) -> list[RuleRecord]:
        """Insert many rules in a single transaction, skipping duplicates.

        A draft is a duplicate when a stored rule (or an earlier draft in the
        same batch) has the same type, normalised pattern, action, exception
        and notes. Only the rules actually created are returned.
        """
        if not drafts:
            return []
        with self._conn:
            self._conn.execute("BEGIN IMMEDIATE")
            ids = [self._insert_rule(d) for d in drafts]
        created = [i for i in ids if i is not None]
        if len(created) < len(drafts):
            logger.info("Skipped %d duplicate rule(s)", len(drafts) - len(created))
        return [r for r in (self.get_rule(i) for i in created) if r is not None]

    def get_rule(self, rule_id: str) -> RuleRecord | None:
        row = self._conn.execute(
            f"SELECT {_RULE_COLUMNS} FROM rules WHERE id = ?", (rule_id,)
        ).fetchone()
        return _rule_from_row(row) if row else None

    def list_rules(self) -> list[RuleRecord]:
        """Return all rules, newest first."""
        rows = self._conn.execute(
            f"SELECT {_RULE_COLUMNS} FROM rules ORDER BY created_at DESC, rowid DESC"
        ).fetchall()
        return [_rule_from_row(r) for r in rows]

    def delete_rule(self, rule_id: str) -> bool:
        with self._conn:
            cursor = self._conn.execute("DELETE FROM rules WHERE id = ?", (rule_id,))
        return cursor.rowcount > 0

    # ── Private ─────────────────────────────────────────────────────────────────

    def _create_tables(self) -> None:
        with self._conn:
            for ddl in ALL_TABLES:
                self._conn.execute(ddl)

    def _get_setting(self, key: str) -> str | None:
        row = self._conn.execute(
            "SELECT value FROM settings WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def _set_setting(self, key: str, value: str) -> None:
        self._conn.execute(
            """
            INSERT INTO settings (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value      = excluded.value,
                updated_at = datetime('now')
            """,
            (key, value),
        )

    def _insert_rule(self, draft: RuleDraft) -> str | None:
        """Insert ``draft`` unless an identical rule exists. Caller owns the transaction."""
        pattern = normalize_pattern(draft.type, draft.pattern)
        unless_contains = (draft.unless_contains or "").strip() or None
        notes = (draft.notes or "").strip() or None
        existing = self._conn.execute(
            """
            SELECT 1 FROM rules
            WHERE type = ? AND pattern = ? AND action = ?
              AND IFNULL(unless_contains, '') = ? AND IFNULL(notes, '') = ?
            """,
            (draft.type.value, pattern, draft.action.value, unless_contains or "", notes or ""),
        ).fetchone()
        if existing is not None:
            return None

        rule_id = str(uuid.uuid4())
        self._conn.execute(
            """
            INSERT INTO rules
                (id, type, pattern, action, unless_contains, notes, confidence)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                rule_id,
                draft.type.value,
                pattern,
                draft.action.value,
                unless_contains,
                notes,
                draft.confidence,
            ),
        )
        return rule_id


def _thread_from_row(row: sqlite3.Row) -> ThreadRecord:
    d = dict(row)
    d["participants"] = json.loads(d["participants"])
    d["is_vip"] = bool(d["is_vip"])
    return ThreadRecord(**d)


def _rule_from_row(row: sqlite3.Row) -> RuleRecord:
    d = dict(row)
    d["type"] = RuleType(d["type"])
    d["action"] = RuleAction(d["action"])
    return RuleRecord(**d)
