"""Redacted structured logging — e-mail addresses never reach the log verbatim."""

import json
import logging
import re
from typing import Any

_EMAIL_RE = re.compile(r"([A-Za-z0-9._%+-]+)@([A-Za-z0-9.-]+)")


def mask_email(text: str) -> str:
    """Mask every address in ``text``: ``jane.doe@x.com`` → ``ja***@x.com``."""
    return _EMAIL_RE.sub(lambda m: f"{m.group(1)[:2]}***@{m.group(2)}", text)


def redact_value(value: Any) -> Any:
    """Recursively mask addresses in strings, lists, tuples and dicts."""
    if isinstance(value, str):
        return mask_email(value)
    if isinstance(value, (list, tuple)):
        return [redact_value(v) for v in value]
    if isinstance(value, dict):
        return {k: redact_value(v) for k, v in value.items()}
    return value


def safe_log(
    logger: logging.Logger,
    prefix: str,
    data: dict[str, Any],
    level: int = logging.INFO,
) -> None:
    """Log ``prefix`` followed by ``data`` as compact JSON, addresses masked."""
    if not logger.isEnabledFor(level):
        return
    payload = json.dumps(redact_value(data), default=str, ensure_ascii=False)
    logger.log(level, "%s %s", prefix, payload)
