"""
Runtime configuration for Practice Autopilot.

Every setting is read from the environment once, at process start, by
``load_settings()``. The resulting ``Settings`` object is handed to
``build_context()`` and never consulted through module globals.

Environment variables:
    ANTHROPIC_API_KEY                 completion service key
    AUTOPILOT_MODEL_CONTENT           model for briefs, drafts, rewrites
    AUTOPILOT_MODEL_REVIEW            model for compliance review / replies
    SE_RANKING_API_KEY                keyword research API key
    GOOGLE_CLIENT_ID                  OAuth client id
    GOOGLE_CLIENT_SECRET              OAuth client secret
    GOOGLE_REDIRECT_URI               OAuth redirect uri
    AUTOPILOT_ENCRYPTION_KEY          Fernet key (or passphrase) for tokens at rest
    AUTOPILOT_DATA_DIR                datastore directory (default ./data)
    CRON_SECRET                       bearer secret for the weekly trigger
    AUTOPILOT_AGENT_KEY               X-Agent-Key for manual agent triggers
    AUTOPILOT_LOG_LEVEL               logging level (default INFO)
    AUTOPILOT_MAX_RATE_LIMIT_RETRIES  ceiling on 429 retries per request
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

MODEL_SONNET = "claude-sonnet-4-20250514"
MODEL_HAIKU = "claude-haiku-4-5-20251001"

DEFAULT_MAX_RATE_LIMIT_RETRIES = 20

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


@dataclass
class Settings:
    """Process-wide settings. Construct via ``load_settings()`` or directly in tests."""
    anthropic_api_key: str = ""
    model_content: str = MODEL_SONNET
    model_review: str = MODEL_HAIKU
    se_ranking_api_key: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = ""
    encryption_key: str = ""
    data_dir: Path = field(default_factory=lambda: Path("data"))
    cron_secret: str = ""
    agent_key: str = ""
    log_level: str = "INFO"
    max_rate_limit_retries: Optional[int] = DEFAULT_MAX_RATE_LIMIT_RETRIES


def _int_env(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    if raw.lower() in ("none", "unbounded"):
        return None
    return int(raw)


def load_settings() -> Settings:
    """Build ``Settings`` from environment variables."""
    return Settings(
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
        model_content=os.getenv("AUTOPILOT_MODEL_CONTENT", MODEL_SONNET),
        model_review=os.getenv("AUTOPILOT_MODEL_REVIEW", MODEL_HAIKU),
        se_ranking_api_key=os.getenv("SE_RANKING_API_KEY", ""),
        google_client_id=os.getenv("GOOGLE_CLIENT_ID", ""),
        google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET", ""),
        google_redirect_uri=os.getenv("GOOGLE_REDIRECT_URI", ""),
        encryption_key=os.getenv("AUTOPILOT_ENCRYPTION_KEY", ""),
        data_dir=Path(os.getenv("AUTOPILOT_DATA_DIR", "data")),
        cron_secret=os.getenv("CRON_SECRET", ""),
        agent_key=os.getenv("AUTOPILOT_AGENT_KEY", ""),
        log_level=os.getenv("AUTOPILOT_LOG_LEVEL", "INFO").upper(),
        max_rate_limit_retries=_int_env(
            "AUTOPILOT_MAX_RATE_LIMIT_RETRIES", DEFAULT_MAX_RATE_LIMIT_RETRIES
        ),
    )


def configure_logging(level: str = "INFO") -> None:
    """Attach the standard stream handler to the ``autopilot`` logger tree."""
    root = logging.getLogger("autopilot")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
        root.addHandler(handler)
