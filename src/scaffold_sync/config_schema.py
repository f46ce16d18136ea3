"""Unified configuration schema for scaffold_sync.

Defines Pydantic models for the unified config structure with dedicated
sections for the release source, update behaviour, the regression harness,
and logging.

Usage:
    from scaffold_sync.config_schema import (
        UnifiedConfig, build_config,
    )

    raw = load_hierarchical_config()
    unified = build_config(raw)
    retention = unified.update.backup_retention
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class SourceConfig(BaseModel):
    """Where upstream releases come from.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    url: str | None = Field(default=None, description="Release index URL")
    directory: str | None = Field(
        default=None, description="Local directory of releases"
    )
    token: str | None = Field(
        default=None, description="Bearer token for the release index"
    )
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    timeout: float = Field(
        default=60.0, gt=0, description="Read timeout in seconds"
    )
    request_interval: float = Field(
        default=0.0,
        ge=0,
        description="Minimum delay between release requests in seconds",
    )

    model_config = {"frozen": True}


class UpdateConfig(BaseModel):
    """Update engine behaviour."""

    state_dir: str = Field(
        default=".scaffold_sync",
        description="Manifest and journal directory, relative to the project",
    )
    backup_dir: str | None = Field(
        default=None,
        description="Backup snapshot directory (default: <state_dir>/backups)",
    )
    backup_retention: int = Field(
        default=5,
        ge=1,
        le=1000,
        description="Snapshots kept before pruning is offered",
    )
    conflict_line_threshold: int = Field(
        default=100,
        ge=1,
        description="Files with more lines get a diff artifact instead of markers",
    )

    model_config = {"frozen": True}


class HarnessConfig(BaseModel):
    """Upgrade-path regression harness limits."""

    concurrency: int = Field(default=4, ge=1, le=64)
    timeout_seconds: float = Field(default=300.0, gt=0)
    min_free_mb: int = Field(default=50, ge=0)

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: str = Field(default="text", description="text or json")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    source: SourceConfig = Field(default_factory=SourceConfig)
    update: UpdateConfig = Field(default_factory=UpdateConfig)
    harness: HarnessConfig = Field(default_factory=HarnessConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully: anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)

