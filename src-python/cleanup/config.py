"""Cleanup engine configuration via environment variables (``CLEANUP_*``)."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings

from cleanup.detection import detection_config as dc
from cleanup.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_ENV_FILE = Path(__file__).resolve().parent / ".env"


class CleanupSettings(BaseSettings):
    """Engine-wide settings — loaded once at import."""

    # ── Precedence ──
    shield_dedup_iou_threshold: float = Field(default=dc.SHIELD_DEDUP_IOU_THRESHOLD, ge=0.5, le=1.0)
    critical_overlap_warn: float = Field(default=dc.CRITICAL_OVERLAP_WARN, ge=0.0, le=1.0)
    critical_overlap_block_apply: float = Field(default=dc.CRITICAL_OVERLAP_BLOCK_APPLY, ge=0.0, le=1.0)

    # ── Multi-page ──
    content_variance_threshold: float = Field(default=dc.CONTENT_VARIANCE_THRESHOLD, ge=0.0)

    # ── Apply mode ──
    min_auto_confidence: float = Field(default=dc.MIN_AUTO_CONFIDENCE, ge=0.0, le=1.0)

    # ── Persistence ──
    database_url: str = "sqlite+aiosqlite:///./cleanup_rules.db"
    fail_open_rule_lookup: bool = False  # degrade rule lookup errors to [] + warning

    # Logging
    log_format: str = "text"  # "json" for one object per line
    log_level: str = "INFO"   # DEBUG, INFO, WARNING, ERROR

    model_config = {"env_prefix": "CLEANUP_", "env_file": str(_ENV_FILE)}

    @model_validator(mode="after")
    def _check_overlap_thresholds(self) -> "CleanupSettings":
        if not self.critical_overlap_warn < self.critical_overlap_block_apply:
            raise ValueError(
                "critical_overlap_warn must be below critical_overlap_block_apply "
                f"(got {self.critical_overlap_warn} >= {self.critical_overlap_block_apply})"
            )
        return self


def load_settings(**overrides) -> CleanupSettings:
    """Build settings from the environment plus explicit overrides.

    Raises:
        ConfigurationError: if any value is out of range.
    """
    try:
        return CleanupSettings(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid cleanup settings: {exc}") from exc


settings = load_settings()


def get_settings() -> CleanupSettings:
    return settings
