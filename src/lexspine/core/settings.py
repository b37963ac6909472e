"""Settings for the compliance and migration pipeline.

Manifesto:
    Thresholds that decide whether data may be migrated (issue budget,
    readiness threshold) and execution defaults (delay, stop-on-error)
    should be explicit, validated, and environment-driven rather than
    constants buried in the validator and executor.

    - **Pydantic validation:** Type-checked at startup, not runtime
    - **Environment-driven:** Reads ``LEXSPINE_*`` env vars and .env files
    - **Sensible defaults:** Works out of the box for development

Examples:
    >>> from lexspine.core.settings import LexSpineSettings
    >>> LexSpineSettings().max_issue_budget
    20

Tags:
    settings, configuration, pydantic, environment, lexspine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LexSpineSettings(BaseSettings):
    """Process-wide defaults for validation and migration runs.

    Fields
    ──────
    log_level            : Structlog log level
    json_logs            : Force JSON (True) or console (False); None auto-detects
    database_url         : SQLAlchemy URL of the lexical store
    max_issue_budget     : Weighted issue count that maps to a score of 0
    readiness_threshold  : Minimum mean score for a system-wide "ready" verdict
    max_entities         : Default cap on entities per validation run
    batch_delay_seconds  : Pause between migration batches
    stop_on_error        : Abort and roll back on the first failed recommendation
    rule_catalog_path    : Optional YAML/JSON rule catalog replacing the default
    custom_rules_path    : JSON file holding operator-authored migration rules
    """

    model_config = SettingsConfigDict(
        env_prefix="LEXSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Storage ──────────────────────────────────────────────────
    database_url: str = "sqlite:///lexspine.db"

    # ── Validation ───────────────────────────────────────────────
    max_issue_budget: int = Field(default=20, gt=0)
    readiness_threshold: int = Field(default=95, ge=0, le=100)
    max_entities: int = Field(default=50, gt=0)

    # ── Execution ────────────────────────────────────────────────
    batch_delay_seconds: float = Field(default=1.0, ge=0)
    stop_on_error: bool = True

    # ── Rules ────────────────────────────────────────────────────
    rule_catalog_path: Path | None = None
    custom_rules_path: Path = Field(
        default_factory=lambda: Path.home() / ".lexspine" / "custom_rules.json",
        description="Operator-authored migration rules",
    )


@lru_cache(maxsize=1)
def get_settings() -> LexSpineSettings:
    """Return the cached process settings (``get_settings.cache_clear()`` to reload)."""
    return LexSpineSettings()


__all__ = ["LexSpineSettings", "get_settings"]
