"""ConfigSync controller module.

A reconciliation pass brings the targets of one ConfigSync in line with its
source:

1. Resolve the source to a local directory and a revision.
2. Apply every target in order unless the revision was already applied.
3. Record the outcome as the `Degraded` condition along with the synced
   revision and persist the status.
4. Compute when the next pass should run from the refresh interval.

Errors are recorded on the resource before they are returned to the caller.
A ConfigSync without exactly one source or with an invalid refresh interval
can't make progress until it is edited, so those are recorded without
returning an error or asking for another pass.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from pathlib import Path

from config_sync.apply import ManifestApplier
from config_sync.cluster import Cluster
from config_sync.conditions import DEGRADED, ConditionStatus, format_time
from config_sync.config import ControllerConfig
from config_sync.context import trace_context
from config_sync.duration import parse_duration
from config_sync.exceptions import (
    ConfigSyncException,
    InvalidRefreshIntervalError,
    InvalidSourceError,
)
from config_sync.manifest import ConfigSync
from config_sync.source_controller import SourceArtifact, SourceResolver

_LOGGER = logging.getLogger(__name__)

APPLY_SUCCEEDED = "ApplySucceeded"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of a successful reconciliation pass."""

    requeue_after: timedelta | None = None
    """Delay before the next pass, or None if no timed pass is needed."""


class ConfigSyncController:
    """Reconciles ConfigSync resources."""

    def __init__(
        self,
        cluster: Cluster,
        resolver: SourceResolver,
        applier: ManifestApplier,
        config: ControllerConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize ConfigSyncController."""
        self._cluster = cluster
        self._resolver = resolver
        self._applier = applier
        self._config = config
        self._clock = clock

    async def reconcile(self, config_sync: ConfigSync) -> ReconcileResult:
        """Run one reconciliation pass, updating the status of the resource.

        Raises:
            ConfigSyncException: If the source could not be fetched, a target
                could not be applied or the status could not be persisted. The
                failure is recorded on the resource first.
        """
        with trace_context(f"Reconcile '{config_sync.namespaced_name}'"):
            try:
                artifact = await self._resolver.resolve(config_sync)
            except InvalidSourceError as err:
                await self._record_failure(config_sync, err)
                return ReconcileResult()
            except ConfigSyncException as err:
                await self._record_failure(config_sync, err)
                raise
            try:
                return await self._sync(config_sync, artifact)
            finally:
                artifact.cleanup()

    async def _sync(
        self, config_sync: ConfigSync, artifact: SourceArtifact
    ) -> ReconcileResult:
        status = config_sync.status
        targets = config_sync.spec.targets
        if artifact.revision == status.source_revision:
            _LOGGER.info(
                "%s is already at revision %s, skipping apply",
                config_sync.resource_id,
                artifact.revision,
            )
        else:
            try:
                for target in targets:
                    await self._applier.apply_target(Path(artifact.local_path), target)
            except ConfigSyncException as err:
                await self._record_failure(config_sync, err)
                raise

        requeue_after: timedelta | None = None
        try:
            requeue_after = self._refresh_interval(config_sync)
        except InvalidRefreshIntervalError as err:
            _LOGGER.error("%s: %s", config_sync.resource_id, err)
            degraded = (ConditionStatus.TRUE, err.reason, str(err))
        else:
            degraded = (
                ConditionStatus.FALSE,
                APPLY_SUCCEEDED,
                f"Applied revision {artifact.revision} to {len(targets)} targets",
            )

        now = self._clock()
        status.conditions.set(DEGRADED, *degraded, now)
        status.last_synced_time = format_time(now)
        status.applied_target_count = len(targets)
        status.source_revision = artifact.revision

        await self._cluster.update_status(config_sync)
        _LOGGER.info(
            "Reconciled %s at revision %s", config_sync.resource_id, artifact.revision
        )
        return ReconcileResult(requeue_after=requeue_after)

    def _refresh_interval(self, config_sync: ConfigSync) -> timedelta:
        """Return the delay until the next pass.

        Raises:
            InvalidRefreshIntervalError: If the interval can't be parsed or is
                not positive.
        """
        if not (value := config_sync.spec.refresh_interval):
            return self._config.default_refresh_interval
        try:
            interval = parse_duration(value)
        except ValueError as err:
            raise InvalidRefreshIntervalError(
                f"Invalid refreshInterval '{value}': {err}"
            ) from err
        if interval <= timedelta(0):
            raise InvalidRefreshIntervalError(
                f"Invalid refreshInterval '{value}': must be positive"
            )
        return interval

    async def _record_failure(
        self, config_sync: ConfigSync, err: ConfigSyncException
    ) -> None:
        """Record an error as the Degraded condition and persist the status."""
        _LOGGER.error("Reconciliation of %s failed: %s", config_sync.resource_id, err)
        config_sync.status.conditions.set(
            DEGRADED, ConditionStatus.TRUE, err.reason, str(err), self._clock()
        )
        await self._cluster.update_status(config_sync)
