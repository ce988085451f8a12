"""Mailbox retriever — turns a sync cursor into the minimal set of candidate messages."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence
from typing import Protocol

from radar.mail.gmail_client import AuthorizationError, GmailError
from radar.mail.redact import safe_log
from radar.mail.types import MessageSummary
from radar.processing.extractor import detect_task_confidence
from radar.rules.matcher import evaluate_rules
from radar.rules.types import RuleRecord

logger = logging.getLogger(__name__)

#: Recent-window fallback bounds.
WINDOW_DAYS = 7
WINDOW_MAX_RESULTS = 25


class MailboxAPI(Protocol):
    """The read operations the retriever needs from the mailbox."""

    async def list_history_message_ids(self, start_history_id: str) -> list[str]: ...

    async def list_recent_message_ids(self, days: int = ..., max_results: int = ...) -> list[str]: ...

    async def get_message_summary(self, message_id: str) -> MessageSummary | None: ...


class MailboxRetriever:
    """Fetches candidate messages and keeps only the ones worth processing.

    Candidate ids come from the incremental change log when a cursor exists.
    When there is no cursor, or the log yields nothing (history ids expire
    server-side), a bounded recent-window listing is used instead.

    Each candidate is fetched as metadata only, then:
      1. dropped if a SUPPRESS rule matches (and its exception phrase is absent)
      2. kept if the sender contains a VIP pattern or a VIP rule matched
      3. otherwise kept only when ``vip_only`` is off and the text carries a
         task keyword signal

    A failed metadata fetch skips only that message. Listing errors and
    AuthorizationError propagate; the latter must reach the poller untouched.
    """

    def __init__(self, mailbox: MailboxAPI) -> None:
        self._mailbox = mailbox

    async def collect_candidate_ids(self, cursor: int | None) -> list[str]:
        ids: list[str] = []
        if cursor is not None:
            ids = await self._mailbox.list_history_message_ids(str(cursor))

        if not ids:
            ids = await self._mailbox.list_recent_message_ids(
                days=WINDOW_DAYS, max_results=WINDOW_MAX_RESULTS
            )
            logger.debug("Window scan returned %d id(s)", len(ids))
        return list(dict.fromkeys(ids))

    async def fetch_candidates(
        self,
        cursor: int | None,
        vip_patterns: Sequence[str],
        rules: Sequence[RuleRecord] = (),
        vip_only: bool = True,
    ) -> list[MessageSummary]:
        """Return the surviving summaries, each with its history id attached."""
        message_ids = await self.collect_candidate_ids(cursor)
        if not message_ids:
            return []

        vips = list(dict.fromkeys(p.strip().lower() for p in vip_patterns if p.strip()))
        include_keywords = not vip_only

        summaries: list[MessageSummary] = []
        vip_matches = keyword_matches = rule_promotions = rule_suppressions = 0
        fetch_failures = 0

        for message_id in message_ids:
            try:
                summary = await self._mailbox.get_message_summary(message_id)
            except AuthorizationError:
                raise
            except GmailError as exc:
                fetch_failures += 1
                logger.warning("Skipping message %s: %s", message_id, exc)
                continue
            if summary is None:
                continue

            text = summary.text
            decision = evaluate_rules(rules, summary.sender_email, summary.sender_domain, text)
            if decision.suppressed:
                rule_suppressions += 1
                continue
            if decision.promoted:
                rule_promotions += 1

            base_vip = any(vip in summary.sender_email for vip in vips)
            keyword_hit = include_keywords and (
                detect_task_confidence(summary.subject, summary.snippet) is not None
            )

            if not (base_vip or decision.promoted or keyword_hit):
                continue

            if base_vip:
                vip_matches += 1
            elif keyword_hit and not decision.promoted:
                keyword_matches += 1

            summaries.append(
                dataclasses.replace(
                    summary,
                    is_vip=base_vip or decision.promoted,
                    rule=decision.promoted_by,
                )
            )

        safe_log(logger, "[gmail]", {
            "processed": len(message_ids),
            "vipMatches": vip_matches,
            "keywordMatches": keyword_matches,
            "rulePromotions": rule_promotions,
            "ruleSuppressions": rule_suppressions,
            "includeKeywordMatches": include_keywords,
            "fetchFailures": fetch_failures,
        })
        return summaries
