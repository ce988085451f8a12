"""Rule normalisation and matching against incoming message metadata."""

import logging
from collections.abc import Iterable

from radar.mail.redact import safe_log
from radar.rules.types import RuleAction, RuleDecision, RuleRecord, RuleType

logger = logging.getLogger(__name__)


def normalize_pattern(rule_type: RuleType, pattern: str) -> str:
    """Trim and lower-case a pattern; domains are stored without a leading '@'."""
    cleaned = pattern.strip().lower()
    if rule_type == RuleType.DOMAIN:
        cleaned = cleaned.removeprefix("@")
    return cleaned


def format_rule_pattern(rule: RuleRecord) -> str:
    """Human-readable pattern: domains are shown with their '@' prefix."""
    if rule.type == RuleType.DOMAIN:
        return f"@{rule.pattern}"
    return rule.pattern


def match_rule(
    rule: RuleRecord,
    sender_email: str,
    sender_domain: str | None,
    text: str,
) -> bool:
    """Return True if the rule's pattern matches the message.

    ``sender_email`` and ``text`` must already be lower-cased.
    """
    if rule.type == RuleType.EMAIL:
        return sender_email == rule.pattern
    if rule.type == RuleType.DOMAIN:
        return sender_domain == rule.pattern
    return rule.pattern in text


def evaluate_rules(
    rules: Iterable[RuleRecord],
    sender_email: str,
    sender_domain: str | None,
    text: str,
) -> RuleDecision:
    """Walk the rules in order; the first match without a triggered exception decides."""
    skipped: list[RuleRecord] = []
    for rule in rules:
        if not match_rule(rule, sender_email, sender_domain, text):
            continue

        if rule.unless_contains and rule.unless_contains.lower() in text:
            skipped.append(rule)
            safe_log(logger, "[rules] skipped", {
                "ruleId": rule.id,
                "rule": format_rule_pattern(rule),
                "exception": rule.unless_contains,
            })
            continue

        exception_state = (
            f"{rule.unless_contains} exception not found"
            if rule.unless_contains
            else "no exception"
        )
        if rule.action == RuleAction.SUPPRESS:
            safe_log(logger, "[rules] suppress", {
                "ruleId": rule.id,
                "rule": format_rule_pattern(rule),
                "exceptionState": exception_state,
            })
            return RuleDecision(suppressed=True, skipped=skipped)

        safe_log(logger, "[rules] promote", {
            "ruleId": rule.id,
            "rule": format_rule_pattern(rule),
            "exceptionState": exception_state,
        })
        return RuleDecision(promoted_by=rule, skipped=skipped)

    return RuleDecision(skipped=skipped)
