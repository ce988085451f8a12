"""System instruction and reply decoding for AI-assisted rule parsing."""

import json
import re
from typing import Any

#: Constrains the model to a single JSON object with enumerated values.
SYSTEM_PROMPT = """You convert natural language VIP/suppression instructions into strict JSON.
- Only respond with a single JSON object.
- "type" must be one of: EMAIL, DOMAIN, TOPIC.
- "pattern" should be normalized (emails lower-case, domains without leading @).
- "action" must be VIP or SUPPRESS.
- If the instruction includes an exception phrase ("unless"), capture it in "unless_contains" as lowercase text.
- Provide short "notes" when helpful.
- "confidence" should be a float between 0 and 1 reflecting parsing certainty.
- If unsure, set type to TOPIC, pattern to the core phrase, and confidence <= 0.4."""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def decode_reply(text: str) -> dict[str, Any]:
    """Parse the model reply into a dict, tolerating Markdown code fences.

    Raises:
        ValueError: if the reply is not a JSON object.
    """
    cleaned = _FENCE_RE.sub("", text.strip()).strip()
    data = json.loads(cleaned)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data
