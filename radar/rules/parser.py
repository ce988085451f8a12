"""Rule parser — fast heuristics first, optional AI completion second."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from radar.llm.completion import CompletionError, TextCompletion
from radar.mail.redact import safe_log
from radar.rules.matcher import normalize_pattern
from radar.rules.prompts import SYSTEM_PROMPT, decode_reply
from radar.rules.types import (
    ParseResult,
    ParseStrategy,
    RuleAction,
    RuleDraft,
    RuleType,
)

logger = logging.getLogger(__name__)

_DOMAIN_ONLY = re.compile(r"^@[^\s@]+$")
_EMAIL_ONLY = re.compile(r"^[^\s@]+@[^\s@]+$")
_EMAIL_EMBEDDED = re.compile(r"[^\s@]+@[^\s@]+")
_WHITESPACE = re.compile(r"\s+")
# Phrases that read as an instruction rather than a bare topic.
_INSTRUCTION = re.compile(
    r"\b(unless|except|suppress|block|ignore|mute|exclude|allow|always|never)\b"
)


@dataclass(frozen=True)
class HeuristicResult:
    rule: RuleDraft
    needs_ai: bool


def apply_heuristics(text: str, default_action: RuleAction) -> HeuristicResult:
    """Classify one line of rule text without any network call.

    First match wins:
      ``@domain``           → DOMAIN, 0.95
      ``local@domain``      → EMAIL, 0.95
      no '@', not phrased as an instruction
                            → TOPIC, 0.9 (0.85 if whitespace was collapsed)
      embedded address      → EMAIL, 0.6, needs AI
      anything else         → TOPIC, no confidence, needs AI

    "Instruction" means wording such as "unless", "suppress" or "block"
    that a bare topic pattern would silently mis-capture.
    """
    trimmed = text.strip()
    lowered = trimmed.lower()

    if not trimmed:
        return HeuristicResult(
            RuleDraft(RuleType.TOPIC, "", default_action, confidence=0.9), needs_ai=False
        )

    if _DOMAIN_ONLY.match(trimmed):
        return HeuristicResult(
            RuleDraft(RuleType.DOMAIN, lowered[1:], default_action, confidence=0.95),
            needs_ai=False,
        )

    if _EMAIL_ONLY.match(trimmed):
        return HeuristicResult(
            RuleDraft(RuleType.EMAIL, lowered, default_action, confidence=0.95),
            needs_ai=False,
        )

    condensed = _WHITESPACE.sub(" ", lowered)

    if "@" not in trimmed and not _INSTRUCTION.search(lowered):
        return HeuristicResult(
            RuleDraft(
                RuleType.TOPIC,
                condensed,
                default_action,
                confidence=0.9 if condensed == lowered else 0.85,
            ),
            needs_ai=False,
        )

    embedded = _EMAIL_EMBEDDED.search(lowered)
    if embedded:
        return HeuristicResult(
            RuleDraft(RuleType.EMAIL, embedded.group(0), default_action, confidence=0.6),
            needs_ai=True,
        )

    return HeuristicResult(
        RuleDraft(RuleType.TOPIC, condensed, default_action),
        needs_ai=True,
    )


class RuleParser:
    """Turns free text into a RuleDraft.

    ``backend`` is optional: without one, inputs the heuristics cannot settle
    come back as the heuristic draft with strategy ``fallback``. Parsing
    never raises.

    Usage::

        parser = RuleParser(build_completion_backend(config))
        result = await parser.parse("@example.com", RuleAction.VIP)
    """

    def __init__(self, backend: TextCompletion | None = None) -> None:
        self._backend = backend

    @property
    def has_backend(self) -> bool:
        return self._backend is not None

    async def parse(self, text: str, default_action: RuleAction = RuleAction.VIP) -> ParseResult:
        heuristics = apply_heuristics(text, default_action)

        if not heuristics.needs_ai:
            return ParseResult(heuristics.rule, ParseStrategy.HEURISTIC)

        if self._backend is None:
            return ParseResult(heuristics.rule, ParseStrategy.FALLBACK)

        try:
            reply = await self._backend.complete(SYSTEM_PROMPT, text.strip())
            data = decode_reply(reply)
        except (CompletionError, ValueError) as exc:
            safe_log(logger, "[rule-parser] ai parse error", {"message": str(exc)},
                     level=logging.WARNING)
            return ParseResult(heuristics.rule, ParseStrategy.FALLBACK)

        return ParseResult(_merge_ai_draft(data, heuristics.rule, text), ParseStrategy.AI)


def _merge_ai_draft(data: dict[str, object], base: RuleDraft, text: str) -> RuleDraft:
    """Overlay the model's fields on the heuristic draft; omitted fields keep ``base``."""
    rule_type = _enum_or(RuleType, data.get("type"), base.type)
    action = _enum_or(RuleAction, data.get("action"), base.action)

    raw_pattern = data.get("pattern")
    pattern = str(raw_pattern) if isinstance(raw_pattern, str) and raw_pattern.strip() else text

    unless = data.get("unless_contains")
    notes = data.get("notes")
    confidence = data.get("confidence")

    return RuleDraft(
        type=rule_type,
        pattern=normalize_pattern(rule_type, pattern),
        action=action,
        unless_contains=str(unless).strip().lower() if unless else base.unless_contains,
        notes=str(notes).strip() if notes else base.notes,
        confidence=(
            min(1.0, max(0.0, float(confidence)))
            if isinstance(confidence, (int, float)) and not isinstance(confidence, bool)
            else base.confidence
        ),
    )


def _enum_or(enum_cls: type, raw: object, default: object) -> object:
    if raw is None:
        return default
    try:
        return enum_cls(str(raw).strip().upper())
    except ValueError:
        return default
