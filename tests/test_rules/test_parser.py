"""Tests for the rule parser — heuristics, AI overlay and fallback."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from radar.llm.completion import CompletionError
from radar.rules.parser import RuleParser, apply_heuristics
from radar.rules.prompts import SYSTEM_PROMPT, decode_reply
from radar.rules.types import ParseStrategy, RuleAction, RuleType


# ── Helpers ────────────────────────────────────────────────────────────────────


def make_backend(reply: str | None = None, error: Exception | None = None) -> MagicMock:
    backend = MagicMock()
    backend.complete = AsyncMock(return_value=reply, side_effect=error)
    return backend


# ── apply_heuristics ───────────────────────────────────────────────────────────


class TestApplyHeuristics:
    def test_domain_only(self) -> None:
        result = apply_heuristics("@Example.com", RuleAction.VIP)
        assert result.needs_ai is False
        assert result.rule.type == RuleType.DOMAIN
        assert result.rule.pattern == "example.com"
        assert result.rule.confidence == 0.95

    def test_email_only(self) -> None:
        result = apply_heuristics("  Jane@Example.com ", RuleAction.SUPPRESS)
        assert result.needs_ai is False
        assert result.rule.type == RuleType.EMAIL
        assert result.rule.pattern == "jane@example.com"
        assert result.rule.action == RuleAction.SUPPRESS

    def test_plain_topic(self) -> None:
        result = apply_heuristics("Quarterly Report", RuleAction.VIP)
        assert result.needs_ai is False
        assert result.rule.type == RuleType.TOPIC
        assert result.rule.pattern == "quarterly report"
        assert result.rule.confidence == 0.9

    def test_topic_with_collapsed_whitespace_is_less_confident(self) -> None:
        result = apply_heuristics("board   meeting", RuleAction.VIP)
        assert result.rule.pattern == "board meeting"
        assert result.rule.confidence == 0.85

    def test_embedded_address_needs_ai(self) -> None:
        result = apply_heuristics("anything from boss@corp.com", RuleAction.VIP)
        assert result.needs_ai is True
        assert result.rule.type == RuleType.EMAIL
        assert result.rule.pattern == "boss@corp.com"
        assert result.rule.confidence == 0.6

    def test_instruction_phrase_needs_ai(self) -> None:
        result = apply_heuristics("suppress newsletters unless urgent", RuleAction.VIP)
        assert result.needs_ai is True
        assert result.rule.type == RuleType.TOPIC
        assert result.rule.pattern == "suppress newsletters unless urgent"
        assert result.rule.confidence is None

    def test_empty_input_is_settled_without_ai(self) -> None:
        result = apply_heuristics("   ", RuleAction.VIP)
        assert result.needs_ai is False
        assert result.rule.pattern == ""


# ── RuleParser.parse ───────────────────────────────────────────────────────────


class TestParse:
    async def test_domain_is_heuristic(self) -> None:
        result = await RuleParser().parse("@example.com", RuleAction.VIP)
        assert result.strategy == ParseStrategy.HEURISTIC
        assert result.rule.type == RuleType.DOMAIN
        assert result.rule.pattern == "example.com"
        assert result.rule.action == RuleAction.VIP
        assert result.rule.confidence == 0.95

    async def test_email_is_heuristic(self) -> None:
        result = await RuleParser().parse("jane@example.com", RuleAction.VIP)
        assert result.strategy == ParseStrategy.HEURISTIC
        assert result.rule.type == RuleType.EMAIL
        assert result.rule.pattern == "jane@example.com"

    async def test_heuristic_path_never_calls_backend(self) -> None:
        backend = make_backend('{"type": "TOPIC"}')
        await RuleParser(backend).parse("@example.com")
        backend.complete.assert_not_called()

    async def test_no_backend_falls_back(self) -> None:
        result = await RuleParser().parse("suppress newsletters unless urgent", RuleAction.VIP)
        assert result.strategy == ParseStrategy.FALLBACK
        assert result.rule is not None
        assert result.rule.pattern == "suppress newsletters unless urgent"

    async def test_ai_result_overlays_heuristic_draft(self) -> None:
        backend = make_backend(
            '{"type": "TOPIC", "pattern": "Newsletters", "action": "SUPPRESS",'
            ' "unless_contains": "Urgent", "notes": "bulk mail", "confidence": 0.8}'
        )
        result = await RuleParser(backend).parse("suppress newsletters unless urgent")

        assert result.strategy == ParseStrategy.AI
        assert result.rule.type == RuleType.TOPIC
        assert result.rule.pattern == "newsletters"
        assert result.rule.action == RuleAction.SUPPRESS
        assert result.rule.unless_contains == "urgent"
        assert result.rule.notes == "bulk mail"
        assert result.rule.confidence == 0.8

    async def test_backend_receives_system_prompt_and_trimmed_text(self) -> None:
        backend = make_backend('{"type": "TOPIC", "pattern": "x"}')
        await RuleParser(backend).parse("  block spam unless invoice  ")
        backend.complete.assert_awaited_once_with(SYSTEM_PROMPT, "block spam unless invoice")

    async def test_omitted_fields_keep_heuristic_values(self) -> None:
        backend = make_backend('{"unless_contains": "urgent"}')
        result = await RuleParser(backend).parse("mail from boss@corp.com", RuleAction.VIP)

        assert result.strategy == ParseStrategy.AI
        assert result.rule.type == RuleType.EMAIL
        assert result.rule.action == RuleAction.VIP
        assert result.rule.confidence == 0.6
        assert result.rule.unless_contains == "urgent"

    async def test_unknown_enum_values_keep_heuristic_values(self) -> None:
        backend = make_backend('{"type": "PERSON", "action": "STAR", "pattern": "boss@corp.com"}')
        result = await RuleParser(backend).parse("mail from boss@corp.com", RuleAction.SUPPRESS)
        assert result.rule.type == RuleType.EMAIL
        assert result.rule.action == RuleAction.SUPPRESS

    async def test_ai_domain_pattern_loses_at_sign(self) -> None:
        backend = make_backend('{"type": "DOMAIN", "pattern": "@Corp.com"}')
        result = await RuleParser(backend).parse("everything at corp.com except hr@corp.com")
        assert result.rule.type == RuleType.DOMAIN
        assert result.rule.pattern == "corp.com"

    async def test_confidence_is_clamped(self) -> None:
        backend = make_backend('{"pattern": "x", "confidence": 7}')
        result = await RuleParser(backend).parse("ignore x please")
        assert result.rule.confidence == 1.0

    async def test_fenced_json_reply_is_accepted(self) -> None:
        backend = make_backend('```json\n{"type": "TOPIC", "pattern": "promo"}\n```')
        result = await RuleParser(backend).parse("block promo mails")
        assert result.strategy == ParseStrategy.AI
        assert result.rule.pattern == "promo"

    async def test_backend_error_falls_back(self) -> None:
        backend = make_backend(error=CompletionError("timeout"))
        result = await RuleParser(backend).parse("suppress newsletters unless urgent")
        assert result.strategy == ParseStrategy.FALLBACK
        assert result.rule.type == RuleType.TOPIC

    async def test_invalid_json_falls_back(self) -> None:
        backend = make_backend("I think this is a topic rule.")
        result = await RuleParser(backend).parse("suppress newsletters unless urgent")
        assert result.strategy == ParseStrategy.FALLBACK


# ── decode_reply ───────────────────────────────────────────────────────────────


class TestDecodeReply:
    def test_plain_object(self) -> None:
        assert decode_reply('{"type": "EMAIL"}') == {"type": "EMAIL"}

    def test_strips_fences(self) -> None:
        assert decode_reply('```\n{"a": 1}\n```') == {"a": 1}

    def test_rejects_non_object(self) -> None:
        with pytest.raises(ValueError):
            decode_reply("[1, 2]")
