"""Environment-driven settings for the classifier chain and label application."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_PRIMARY_MODEL = "claude-haiku-4-5-20251001"
DEFAULT_SECONDARY_MODEL = "gpt-4o-mini"
DEFAULT_BATCH_SIZE = 10


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s %r; defaulting to %d", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s %r; defaulting to %s", name, raw, default)
        return default


@dataclass(frozen=True)
class ClassifierConfig:
    """API keys and tuning knobs for a bulk classification run.

    A provider counts as configured when its API key is non-empty; the
    orchestrator skips unconfigured providers under ``auto``.
    """

    anthropic_api_key: str = ""
    openai_api_key: str = ""
    primary_model: str = DEFAULT_PRIMARY_MODEL
    secondary_model: str = DEFAULT_SECONDARY_MODEL
    batch_size: int = DEFAULT_BATCH_SIZE
    label_retries: int = 3
    label_retry_delay: float = 1.0

    @property
    def primary_configured(self) -> bool:
        return bool(self.anthropic_api_key)

    @property
    def secondary_configured(self) -> bool:
        return bool(self.openai_api_key)

    @classmethod
    def from_env(cls) -> ClassifierConfig:
        """Build ClassifierConfig from environment variables."""
        return cls(
            anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
            openai_api_key=os.environ.get("OPENAI_API_KEY", ""),
            primary_model=os.environ.get("MAILSORT_PRIMARY_MODEL", DEFAULT_PRIMARY_MODEL),
            secondary_model=os.environ.get("MAILSORT_SECONDARY_MODEL", DEFAULT_SECONDARY_MODEL),
            batch_size=_env_int("MAILSORT_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            label_retries=max(1, _env_int("MAILSORT_LABEL_RETRIES", 3)),
            label_retry_delay=max(0.0, _env_float("MAILSORT_LABEL_RETRY_DELAY", 1.0)),
        )
