"""Process configuration read from the environment (and .env via python-dotenv)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 180
DEFAULT_RULE_PARSER_MODEL = "claude-haiku-4-5-20251001"
DEFAULT_RULE_PARSER_TIMEOUT_SECONDS = 15.0


def _env_number(name: str, default: float) -> float:
    """Parse a numeric env var, falling back to ``default`` on garbage."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s %r; defaulting to %s", name, raw, default)
        return default


@dataclass
class RadarConfig:
    """Paths, intervals and credentials for the poller and the CLI."""

    db_path: Path = field(default_factory=lambda: Path("data/radar.db"))
    poll_interval: int = DEFAULT_POLL_INTERVAL_SECONDS
    token_path: Path = field(default_factory=lambda: Path("token.json"))
    credentials_path: Path = field(default_factory=lambda: Path("credentials.json"))
    anthropic_api_key: str = ""
    rule_parser_model: str = DEFAULT_RULE_PARSER_MODEL
    rule_parser_timeout: float = DEFAULT_RULE_PARSER_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> RadarConfig:
        """Build RadarConfig from environment variables."""
        return cls(
            db_path=Path(os.environ.get("RADAR_DB_PATH", "data/radar.db")),
            poll_interval=int(
                _env_number("POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS)
            ),
            token_path=Path(os.environ.get("GOOGLE_TOKEN_PATH", "token.json")),
            credentials_path=Path(
                os.environ.get("GOOGLE_CREDENTIALS_PATH", "credentials.json")
            ),
            anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
            rule_parser_model=os.environ.get("RULE_PARSER_MODEL", DEFAULT_RULE_PARSER_MODEL),
            rule_parser_timeout=_env_number(
                "RULE_PARSER_TIMEOUT_SECONDS", DEFAULT_RULE_PARSER_TIMEOUT_SECONDS
            ),
        )
