"""SQLite table schemas and typed row types for the storage layer."""

from dataclasses import dataclass


# ── DDL ────────────────────────────────────────────────────────────────────────

_CREATE_SETTINGS = """
CREATE TABLE IF NOT EXISTS settings (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

_CREATE_THREADS = """
CREATE TABLE IF NOT EXISTS threads (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    external_id      TEXT NOT NULL UNIQUE,
    last_message_id  TEXT NOT NULL,
    subject          TEXT,
    participants     TEXT NOT NULL DEFAULT '[]',
    last_message_at  TEXT NOT NULL,
    is_vip           INTEGER NOT NULL DEFAULT 0,
    created_at       TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at       TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

# UNIQUE(thread_ref, title) makes task creation an atomic create-if-absent.
_CREATE_TASKS = """
CREATE TABLE IF NOT EXISTS tasks (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    thread_ref  INTEGER NOT NULL,
    title       TEXT NOT NULL,
    status      TEXT NOT NULL DEFAULT 'todo',
    priority    INTEGER NOT NULL,
    created_at  TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (thread_ref, title),
    FOREIGN KEY (thread_ref) REFERENCES threads(id)
)
"""

_CREATE_RULES = """
CREATE TABLE IF NOT EXISTS rules (
    id               TEXT PRIMARY KEY,
    type             TEXT NOT NULL,
    pattern          TEXT NOT NULL,
    action           TEXT NOT NULL,
    unless_contains  TEXT,
    notes            TEXT,
    confidence       REAL,
    created_at       TEXT NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now'))
)
"""

#: All DDL statements in creation order (respects FK dependencies).
ALL_TABLES: list[str] = [
    _CREATE_SETTINGS,
    _CREATE_THREADS,
    _CREATE_TASKS,
    _CREATE_RULES,
]


# ── Row types ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ThreadRecord:
    """A row from the threads table."""

    id: int
    external_id: str
    last_message_id: str
    subject: str | None
    participants: list[str]
    last_message_at: str
    is_vip: bool
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class TaskRecord:
    """A row from the tasks table."""

    id: int
    thread_ref: int
    title: str
    status: str
    priority: int
    created_at: str


@dataclass(frozen=True)
class ProcessingConfig:
    """Gate settings for the poll cycle, edited by the settings UI."""

    confidence: float = 0.7
    vip_only: bool = True
