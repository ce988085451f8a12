"""Bulk rule import from arbitrary CSV sheets.

A sheet is analysed in two passes: header cells are classified into column
roles, then each data row is turned into rule drafts with the same
heuristics-then-AI parser used for single rules.  Nothing is persisted until
the preview is explicitly applied.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from radar.rules.parser import RuleParser, apply_heuristics
from radar.rules.types import ParseStrategy, RuleAction, RuleDraft, RuleType

if TYPE_CHECKING:
    from radar.rules.types import RuleRecord
    from radar.storage.db import RadarDatabase

logger = logging.getLogger(__name__)


# ── Column roles ───────────────────────────────────────────────────────────────


class ColumnRole(str, Enum):
    RULE = "rule"
    EXCEPTION = "exception"
    NOTES = "notes"
    ACTION = "action"


@dataclass(frozen=True)
class ColumnDescriptor:
    """What one CSV column contributes to each row's rules."""

    index: int
    header: str
    role: ColumnRole
    type_hint: RuleType | None = None
    action_hint: RuleAction | None = None


#: Scanned in order; the first keyword found decides the action.
ACTION_KEYWORDS: list[tuple[str, RuleAction]] = [
    ("suppress", RuleAction.SUPPRESS),
    ("block", RuleAction.SUPPRESS),
    ("exclude", RuleAction.SUPPRESS),
    ("ignore", RuleAction.SUPPRESS),
    ("spam", RuleAction.SUPPRESS),
    ("vip", RuleAction.VIP),
    ("allow", RuleAction.VIP),
    ("include", RuleAction.VIP),
    ("track", RuleAction.VIP),
]

_TYPE_HINTS: list[tuple[re.Pattern[str], RuleType]] = [
    (re.compile(r"email|sender"), RuleType.EMAIL),
    (re.compile(r"domain|host"), RuleType.DOMAIN),
    (re.compile(r"topic|keyword|subject|phrase|pattern"), RuleType.TOPIC),
]

_EXCEPTION_HEADER = re.compile(r"unless|exception|ignore|skip|if not")
_NOTES_HEADER = re.compile(r"note|comment|description|context")
_ACTION_HEADER = re.compile(r"action|type|mode")


def detect_action(text: str | None) -> RuleAction | None:
    """Return the action implied by the first action keyword in ``text``."""
    if not text:
        return None
    lowered = text.lower()
    for keyword, action in ACTION_KEYWORDS:
        if keyword in lowered:
            return action
    return None


def detect_type_hint(header: str) -> RuleType | None:
    lowered = header.lower()
    for pattern, rule_type in _TYPE_HINTS:
        if pattern.search(lowered):
            return rule_type
    return None


def classify_column(index: int, header: str) -> ColumnDescriptor:
    """Map a header cell to its role (exception → notes → action → rule)."""
    lowered = header.lower()
    if _EXCEPTION_HEADER.search(lowered):
        return ColumnDescriptor(index, header, ColumnRole.EXCEPTION)
    if _NOTES_HEADER.search(lowered):
        return ColumnDescriptor(index, header, ColumnRole.NOTES)
    if _ACTION_HEADER.search(lowered):
        return ColumnDescriptor(index, header, ColumnRole.ACTION)
    return ColumnDescriptor(
        index,
        header,
        ColumnRole.RULE,
        type_hint=detect_type_hint(header),
        action_hint=detect_action(header),
    )


# ── CSV splitting ──────────────────────────────────────────────────────────────


def split_csv(text: str) -> list[list[str]]:
    """Split CSV text into rows of trimmed cells.

    Handles quoted fields containing commas and newlines, ``""`` escapes, and
    both ``\\n`` and ``\\r\\n`` line endings.  Rows whose cells are all blank
    are dropped.
    """
    rows: list[list[str]] = []
    row: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    length = len(text)

    def end_row() -> None:
        row.append("".join(current).strip())
        if any(row):
            rows.append(list(row))
        row.clear()
        current.clear()

    while i < length:
        char = text[i]
        if char == '"':
            if in_quotes and i + 1 < length and text[i + 1] == '"':
                current.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            row.append("".join(current).strip())
            current.clear()
        elif char in "\r\n" and not in_quotes:
            if char == "\r" and i + 1 < length and text[i + 1] == "\n":
                i += 1
            end_row()
        else:
            current.append(char)
        i += 1

    end_row()
    return rows


# ── Analysis ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PreviewSource:
    row: int      # 1-based line in the sheet, header included when present
    column: str


@dataclass(frozen=True)
class PreviewEntry:
    id: str
    rule: RuleDraft
    strategy: ParseStrategy
    source: PreviewSource


@dataclass(frozen=True)
class ImportSummary:
    total_rows: int = 0
    total_rules: int = 0
    vip_count: int = 0
    suppress_count: int = 0


@dataclass
class ImportPreview:
    entries: list[PreviewEntry] = field(default_factory=list)
    summary: ImportSummary = field(default_factory=ImportSummary)


def _joined(row: list[str], columns: list[ColumnDescriptor]) -> str | None:
    values = [row[c.index].strip() for c in columns if c.index < len(row) and row[c.index].strip()]
    return "; ".join(values) if values else None


def _row_action_override(row: list[str], columns: list[ColumnDescriptor]) -> RuleAction | None:
    for column in columns:
        if column.index < len(row):
            action = detect_action(row[column.index])
            if action is not None:
                return action
    return None


async def analyze_csv(
    text: str,
    default_action: RuleAction,
    parser: RuleParser,
) -> ImportPreview:
    """Build an import preview for a CSV sheet. Never raises on sheet content."""
    rows = split_csv(text)
    if not rows:
        return ImportPreview()

    columns = [classify_column(i, header) for i, header in enumerate(rows[0])]
    has_header = any(c.role == ColumnRole.RULE for c in columns)
    if has_header:
        data_rows = rows[1:]
    else:
        # No recognisable rule column: read every column of every row as rules.
        data_rows = rows
        width = max(len(r) for r in rows)
        columns = [
            ColumnDescriptor(i, f"Column {i + 1}", ColumnRole.RULE) for i in range(width)
        ]

    exception_cols = [c for c in columns if c.role == ColumnRole.EXCEPTION]
    notes_cols = [c for c in columns if c.role == ColumnRole.NOTES]
    action_cols = [c for c in columns if c.role == ColumnRole.ACTION]
    rule_cols = [c for c in columns if c.role == ColumnRole.RULE]

    entries: list[PreviewEntry] = []
    seen: set[tuple[str, str, str, str, str]] = set()
    vip_count = suppress_count = 0

    for row_index, row in enumerate(data_rows):
        exception = _joined(row, exception_cols)
        combined_exception = exception.lower() if exception else None
        combined_notes = _joined(row, notes_cols)
        row_action = _row_action_override(row, action_cols)

        for column in rule_cols:
            raw = row[column.index].strip() if column.index < len(row) else ""
            if not raw:
                continue

            action = column.action_hint or row_action or default_action
            heuristics = apply_heuristics(raw, action)
            if heuristics.needs_ai:
                result = await parser.parse(raw, action)
                draft, strategy = result.rule, result.strategy
            else:
                draft, strategy = heuristics.rule, ParseStrategy.HEURISTIC

            if column.type_hint and draft.type != column.type_hint:
                draft = draft.with_changes(type=column.type_hint)
            if draft.type == RuleType.DOMAIN:
                draft = draft.with_changes(pattern=draft.pattern.removeprefix("@"))

            draft = draft.with_changes(
                action=action,
                unless_contains=draft.unless_contains or combined_exception,
                notes=draft.notes or combined_notes,
            )

            if draft.dedup_key in seen:
                continue
            seen.add(draft.dedup_key)

            if draft.action == RuleAction.VIP:
                vip_count += 1
            else:
                suppress_count += 1

            entries.append(
                PreviewEntry(
                    id=str(uuid.uuid4()),
                    rule=draft,
                    strategy=strategy,
                    source=PreviewSource(
                        row=row_index + 2 if has_header else row_index + 1,
                        column=column.header,
                    ),
                )
            )

    summary = ImportSummary(
        total_rows=len(data_rows),
        total_rules=len(entries),
        vip_count=vip_count,
        suppress_count=suppress_count,
    )
    logger.info(
        "CSV analysed: rows=%d rules=%d vip=%d suppress=%d",
        summary.total_rows,
        summary.total_rules,
        summary.vip_count,
        summary.suppress_count,
    )
    return ImportPreview(entries=entries, summary=summary)


def apply_preview(db: RadarDatabase, preview: ImportPreview) -> list[RuleRecord]:
    """Persist the preview's rules in one transaction, skipping ones already stored."""
    return db.create_rules_bulk([entry.rule for entry in preview.entries])
