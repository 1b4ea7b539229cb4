"""Unified configuration schema for docsync.

Defines Pydantic models for the config structure with dedicated sections
for sync policy, background scheduling, retry behaviour and logging.

Usage:
    from docsync.config_loader import load_hierarchical_config
    from docsync.config_schema import build_config

    raw = load_hierarchical_config()
    config = build_config(raw)
    config.policy.conflict_policy  # ConflictPolicy.LAST_WRITE_WINS
"""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigValidationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Policy enums
# ---------------------------------------------------------------------------


class ConflictPolicy(str, Enum):
    """How to resolve a document changed on both sides."""

    LAST_WRITE_WINS = "last-write-wins"
    PREFER_REMOTE = "prefer-remote"
    PREFER_LOCAL = "prefer-local"
    MERGE = "merge"


class DeleteHandling(str, Enum):
    """What to do locally when the remote document is deleted or trashed."""

    ARCHIVE = "archive"
    IGNORE = "ignore"
    SYNC = "sync"


class CrossDomainPolicy(str, Enum):
    """What to do with a linked identifier the session cannot resolve."""

    SKIP = "skip"
    WARN = "warn"
    AUTO_RELINK = "auto-relink"


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class PolicyConfig(BaseModel):
    """Reconciliation policy.

    ``detect_remote_moves`` only has an effect when ``sync_moves`` is also
    enabled.
    """

    conflict_policy: ConflictPolicy = Field(
        default=ConflictPolicy.LAST_WRITE_WINS,
        description="Resolution policy for documents changed on both sides",
    )
    sync_moves: bool = Field(
        default=True, description="Propagate moves/renames between sides"
    )
    detect_remote_moves: bool = Field(
        default=False,
        description="Compare remote derived paths against the folder mapping",
    )
    delete_handling: DeleteHandling = Field(
        default=DeleteHandling.ARCHIVE,
        description="Local action taken when a remote document disappears",
    )
    archive_retention_days: int = Field(
        default=30,
        ge=0,
        description="Days archived files are kept (pruning is external)",
    )
    cross_domain_policy: CrossDomainPolicy = Field(
        default=CrossDomainPolicy.AUTO_RELINK,
        description="Handling of identifiers that do not resolve remotely",
    )
    base_folder: str = Field(
        default="",
        description="Local folder prefix mirrored onto the remote root",
    )
    document_extension: str = Field(
        default=".md", description="Extension of synced local documents"
    )
    exclude: list[str] = Field(
        default_factory=list,
        description="Glob patterns of local paths never synced",
    )
    archive_folder: str = Field(
        default=".trash",
        description="Local folder receiving archived documents",
    )

    model_config = {"frozen": True}


class BackgroundConfig(BaseModel):
    """Background sync scheduling."""

    enabled: bool = Field(default=False, description="Run background sync")
    poll_interval: float = Field(
        default=60.0, gt=0, description="Seconds between periodic passes"
    )
    debounce: float = Field(
        default=1.0,
        ge=0,
        description="Seconds a queued path must stay quiet before syncing",
    )
    max_consecutive_failures: int = Field(
        default=3,
        ge=1,
        description="Failures after which a document is parked",
    )
    max_backoff: float = Field(
        default=300.0,
        gt=0,
        description="Upper bound of the periodic interval after failures",
    )

    model_config = {"frozen": True}


class RetryConfig(BaseModel):
    """Retry/backoff for transient remote failures."""

    max_attempts: int = Field(default=4, ge=1, le=20)
    initial_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    jitter: float = Field(
        default=0.1,
        ge=0,
        le=1,
        description="Fractional random spread applied to each delay",
    )
    max_parallel_requests: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Bound on concurrent independent sub-requests",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str | None = Field(
        default=None,
        description="Log level; unset means WARNING in background mode, else INFO",
    )
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level configuration.

    Every section has sensible defaults, so ``UnifiedConfig()``
    (zero-config) is always valid.
    """

    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    background: BackgroundConfig = Field(default_factory=BackgroundConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully -- anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.

    Raises:
        ConfigValidationError: If any value fails validation.
    """
    if not raw_data:
        return UnifiedConfig()

    try:
        return UnifiedConfig(**raw_data)
    except PydanticValidationError as exc:
        logger.error("Invalid configuration: %s", exc)
        raise ConfigValidationError(
            f"Invalid configuration: {exc.error_count()} error(s)",
            context={"errors": exc.errors(include_url=False)},
        ) from exc
