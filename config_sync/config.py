"""Configuration objects for config-sync."""

from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
import tempfile

FIELD_MANAGER = "configsync"
DEFAULT_CACHE_DIR = Path(tempfile.gettempdir()) / "config-sync-cache"


@dataclass
class SourceControllerConfig:
    """Configuration for resolving sources."""

    cache_dir: Path = DEFAULT_CACHE_DIR
    """Root directory of the shared git repository cache."""

    git_timeout: float = 120.0
    """Seconds allowed for a clone, fetch and checkout of one repository."""


@dataclass
class ApplyConfig:
    """Configuration for applying manifests to a target."""

    dry_run: bool = True
    """Validate each document with a server-side dry-run before applying it."""

    field_manager: str = FIELD_MANAGER
    """Field manager identity that owns the applied fields."""


@dataclass
class ControllerConfig:
    """Configuration for the ConfigSync reconciler."""

    default_refresh_interval: timedelta = field(
        default_factory=lambda: timedelta(minutes=10)
    )
    """Requeue delay used when a ConfigSync has no refreshInterval."""


@dataclass
class RunnerConfig:
    """Configuration for running reconciliations continuously."""

    initial_backoff: timedelta = field(default_factory=lambda: timedelta(seconds=5))
    """Delay before retrying a failed reconciliation."""

    max_backoff: timedelta = field(default_factory=lambda: timedelta(minutes=5))
    """Upper bound of the exponential retry delay."""
