"""Controller that reconciles ConfigSync resources."""

from .controller import ConfigSyncController, ReconcileResult
from .runner import SyncRunner

__all__ = [
    "ConfigSyncController",
    "ReconcileResult",
    "SyncRunner",
]
