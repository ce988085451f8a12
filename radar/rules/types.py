"""Types for VIP/suppression rules."""

from dataclasses import dataclass, field, replace
from enum import Enum


class RuleType(str, Enum):
    """What part of a message a rule pattern is tested against."""

    EMAIL = "EMAIL"
    DOMAIN = "DOMAIN"
    TOPIC = "TOPIC"


class RuleAction(str, Enum):
    """What happens to a message matching the rule."""

    VIP = "VIP"
    SUPPRESS = "SUPPRESS"


class ParseStrategy(str, Enum):
    """Which mechanism produced a rule draft."""

    HEURISTIC = "heuristic"
    AI = "ai"
    FALLBACK = "fallback"


# ── Drafts ─────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RuleDraft:
    """A parsed, not-yet-persisted rule.

    Produced by the rule parser (single line of text) and the CSV importer
    (one spreadsheet cell). ``confidence`` is None when the parser could not
    judge its own result.
    """

    type: RuleType
    pattern: str
    action: RuleAction
    unless_contains: str | None = None
    notes: str | None = None
    confidence: float | None = None

    def with_changes(self, **changes: object) -> "RuleDraft":
        return replace(self, **changes)  # type: ignore[arg-type]

    @property
    def dedup_key(self) -> tuple[str, str, str, str, str]:
        """Composite key used to drop duplicate rules within one import."""
        return (
            self.type.value,
            self.pattern,
            self.action.value,
            self.unless_contains or "",
            self.notes or "",
        )


@dataclass(frozen=True)
class ParseResult:
    """A rule draft plus the strategy that produced it."""

    rule: RuleDraft
    strategy: ParseStrategy


# ── Stored rules ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RuleRecord:
    """A row from the rules table."""

    id: str
    type: RuleType
    pattern: str
    action: RuleAction
    unless_contains: str | None
    notes: str | None
    confidence: float | None
    created_at: str


@dataclass(frozen=True)
class RuleDecision:
    """Outcome of running a message through the rule set.

    ``suppressed`` wins over everything; ``promoted_by`` is the VIP rule that
    matched first, if any.
    """

    suppressed: bool = False
    promoted_by: RuleRecord | None = None
    skipped: list[RuleRecord] = field(default_factory=list)

    @property
    def promoted(self) -> bool:
        return self.promoted_by is not None
