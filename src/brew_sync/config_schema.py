"""Unified configuration schema for brew-sync.

Defines Pydantic models for the unified config structure with dedicated
sections for the remote store, the sync pass, and logging.  Includes
adapter functions producing the runtime ``RemoteConfig`` and
``SyncOptions``.

Usage:
    from brew_sync.config_schema import (
        UnifiedConfig, build_config, to_remote_config, to_sync_options,
    )

    raw = load_hierarchical_config()
    unified = build_config(raw)
    remote = to_remote_config(unified, cli_overrides={"url": "https://..."})
    options = to_sync_options(unified, {"dry_run": True})
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

from .config import RemoteConfig, load_config
from .sync.backup import DEFAULT_MAX_BACKUPS
from .sync.models import ConflictStrategy, SyncDirection, SyncOptions

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class RemoteSection(BaseModel):
    """Remote store connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    backend: str | None = Field(
        default=None, description="Remote backend: webdav or s3"
    )
    url: str | None = Field(default=None, description="WebDAV server URL")
    username: str | None = Field(default=None, description="WebDAV username")
    password: str | None = Field(default=None, description="WebDAV password")
    remote_root: str | None = Field(
        default=None,
        description="Directory (WebDAV) or key prefix (S3) holding documents",
    )
    bucket: str | None = Field(default=None, description="S3 bucket")
    region: str | None = Field(default=None, description="S3 region")
    endpoint: str | None = Field(
        default=None, description="Custom S3-compatible endpoint URL"
    )
    access_key_id: str | None = Field(default=None, description="S3 key id")
    secret_access_key: str | None = Field(
        default=None, description="S3 secret key"
    )
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    connect_timeout: float | None = Field(
        default=None, gt=0, description="Connect timeout in seconds"
    )
    read_timeout: float | None = Field(
        default=None, gt=0, description="Read timeout in seconds"
    )

    model_config = {"frozen": True}


class SyncSection(BaseModel):
    """Sync pass settings.

    Attributes:
        local_root: Directory holding the exported data documents.
        state_dir: Directory for the local baseline and device id.
        patterns: Globs selecting which local files are documents.
        conflict_strategy: Default conflict policy.
        direction: Default pass direction (full, upload or download).
        include: Only sync document ids matching these globs.
        exclude: Never sync document ids matching these globs.
        resolve_delete_conflicts: Let strategies resolve delete-vs-edit.
        max_workers: Concurrent remote operations (1-16).
        max_delete_ratio: Warn above this share of deletes.
        max_delete_count: Warn above this number of deletes.
        ignore_fields: Top-level JSON fields excluded from fingerprints.
        max_backups: Remote backups kept per uploaded document; 0 disables.
    """

    local_root: str = Field(default="data", description="Document directory")
    state_dir: str = Field(
        default=".brew_sync/state", description="Sync state directory"
    )
    patterns: list[str] = Field(default_factory=lambda: ["*.json"])
    conflict_strategy: ConflictStrategy = Field(
        default=ConflictStrategy.MANUAL,
        description="local-wins, remote-wins, newest-wins or manual",
    )
    direction: SyncDirection = Field(
        default=SyncDirection.FULL,
        description="full (three-way), upload or download",
    )
    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    resolve_delete_conflicts: bool = False
    max_workers: int = Field(
        default=4,
        ge=1,
        le=16,
        description="Maximum concurrent remote operations (1-16)",
    )
    max_delete_ratio: float = Field(default=0.3, ge=0.0, le=1.0)
    max_delete_count: int = Field(default=100, ge=0)
    ignore_fields: list[str] = Field(
        default_factory=lambda: ["exportDate"],
        description="Volatile top-level fields ignored when fingerprinting",
    )
    max_backups: int = Field(
        default=DEFAULT_MAX_BACKUPS,
        ge=0,
        le=100,
        description="Backups kept per document under backups/ (0 disables)",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    remote: RemoteSection = Field(default_factory=RemoteSection)
    sync: SyncSection = Field(default_factory=SyncSection)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


def remote_fallbacks(unified: UnifiedConfig) -> dict[str, Any]:
    """Return the non-``None`` remote values as ``load_config`` fallbacks."""
    return {
        k: v
        for k, v in unified.remote.model_dump().items()
        if v is not None
    }


def to_remote_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> RemoteConfig:
    """Resolve the ``RemoteConfig`` for *unified*, applying CLI overrides
    and environment variables on top.

    The precedence applied here is:
        CLI override > env var > unified config value > built-in default

    Args:
        unified: The unified config produced by ``build_config()``.
        cli_overrides: Optional dict of CLI argument values keyed by
            ``RemoteConfig`` field name.

    Returns:
        Validated ``RemoteConfig``.

    Raises:
        ValueError: If the resolved settings are incomplete or invalid.
    """
    return load_config(
        cli_overrides=cli_overrides,
        yaml_fallbacks=remote_fallbacks(unified),
    )


def to_sync_options(
    unified: UnifiedConfig,
    overrides: dict | None = None,
) -> SyncOptions:
    """Build ``SyncOptions`` from the ``sync`` section.

    Args:
        unified: The unified config.
        overrides: CLI values (``conflict_strategy``, ``direction``,
            ``include``, ``exclude``, ``dry_run``, ``max_workers``);
            ``None`` and empty values are ignored.
    """
    section = unified.sync
    values: dict[str, Any] = {
        "conflict_strategy": section.conflict_strategy,
        "direction": section.direction,
        "include": list(section.include),
        "exclude": list(section.exclude),
        "resolve_delete_conflicts": section.resolve_delete_conflicts,
        "max_workers": section.max_workers,
        "max_delete_ratio": section.max_delete_ratio,
        "max_delete_count": section.max_delete_count,
        "max_backups": section.max_backups,
    }
    for key, value in (overrides or {}).items():
        if value is None or value == []:
            continue
        values[key] = value
    return SyncOptions(**values)
