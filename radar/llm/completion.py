"""Text-completion backend used by the rule parser's AI fallback."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import anthropic
from anthropic import AsyncAnthropic

if TYPE_CHECKING:
    from radar.config import RadarConfig

logger = logging.getLogger(__name__)

_MAX_TOKENS = 512


class CompletionError(Exception):
    """Raised when the completion backend fails, times out or returns nothing."""


@runtime_checkable
class TextCompletion(Protocol):
    """Interface for a black-box ``complete(system, user) -> text`` service."""

    async def complete(self, system: str, user: str) -> str:
        ...


class AnthropicCompletion:
    """TextCompletion backed by the Anthropic Messages API.

    The client is constructed with an explicit request timeout; a timeout is
    reported as CompletionError like any other failure so callers can fall
    back without special-casing it.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout: float,
        client: AsyncAnthropic | None = None,
    ) -> None:
        self._model = model
        self._client = client or AsyncAnthropic(
            api_key=api_key, timeout=timeout, max_retries=0
        )

    async def complete(self, system: str, user: str) -> str:
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=_MAX_TOKENS,
                system=system,
                messages=[{"role": "user", "content": user}],
            )
        except anthropic.APIError as exc:
            raise CompletionError(f"{type(exc).__name__}: {exc}") from exc

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        if not text.strip():
            raise CompletionError(
                f"Empty completion (stop_reason={response.stop_reason!r})"
            )
        return text


def build_completion_backend(config: RadarConfig) -> TextCompletion | None:
    """Return an Anthropic backend, or None when no API key is configured."""
    if not config.anthropic_api_key:
        logger.info("ANTHROPIC_API_KEY not set — rule parsing will use heuristics only")
        return None
    return AnthropicCompletion(
        api_key=config.anthropic_api_key,
        model=config.rule_parser_model,
        timeout=config.rule_parser_timeout,
    )
