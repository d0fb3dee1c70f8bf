"""Unified configuration schema for tracker-sync.

Defines Pydantic models for the config file structure, with dedicated
sections for sync behaviour and logging.

Usage:
    from tracker_sync.config_schema import UnifiedConfig, build_config

    raw = load_hierarchical_config(root)
    unified = build_config(raw)
    settings = unified.sync
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .paths import DEFAULT_REMOTE, SYNC_BRANCH
from .validators import validate_branch_name, validate_remote_name

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class SyncSettings(BaseModel):
    """Sync engine settings.

    Every field has a default, so ``SyncSettings()`` is always valid.
    """

    branch: str = Field(default=SYNC_BRANCH, description="Sync branch name")
    remote: str = Field(default=DEFAULT_REMOTE, description="Remote to sync with")
    max_push_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Push attempts before giving up on non-fast-forward (1-10)",
    )
    git_timeout: float = Field(
        default=60,
        ge=1,
        le=3600,
        description="Timeout in seconds for each git command (1-3600)",
    )
    auto_repair: bool = Field(
        default=True,
        description="Repair a prunable or corrupted worktree during sync",
    )
    auto_save_outbox: bool = Field(
        default=True,
        description="Save unpushed issues to the outbox when a push fails",
    )
    import_outbox: bool = Field(
        default=True,
        description="Import and clear a pending outbox after a successful sync",
    )

    model_config = {"frozen": True}

    @field_validator("branch")
    @classmethod
    def _check_branch(cls, value: str) -> str:
        is_valid, message = validate_branch_name(value)
        if not is_valid:
            raise ValueError(message)
        return value

    @field_validator("remote")
    @classmethod
    def _check_remote(cls, value: str) -> str:
        is_valid, message = validate_remote_name(value)
        if not is_valid:
            raise ValueError(message)
        return value


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = Field(default="text", description="Log format")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level configuration aggregating all sections."""

    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults; unknown top-level keys are ignored
    with a warning.
    """
    if not raw_data:
        return UnifiedConfig()

    known = set(UnifiedConfig.model_fields)
    unknown = sorted(set(raw_data) - known)
    if unknown:
        logger.warning("Ignoring unknown config section(s): %s", ", ".join(unknown))

    return UnifiedConfig(**{k: v for k, v in raw_data.items() if k in known})
