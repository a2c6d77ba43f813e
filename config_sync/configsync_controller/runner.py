"""Runs reconciliation passes continuously.

Each ConfigSync gets one task that reconciles it, waits for the requested
delay and reconciles it again. Failed passes are retried with an exponential
backoff. A task ends when no further pass is requested or the resource was
deleted.
"""

import asyncio
from datetime import timedelta
from functools import partial
import logging

from config_sync.cluster import Cluster
from config_sync.config import RunnerConfig
from config_sync.exceptions import ClusterException, ConfigSyncException
from config_sync.manifest import ConfigSync, NamedResource

from .controller import ConfigSyncController

_LOGGER = logging.getLogger(__name__)


class SyncRunner:
    """Tracks one reconciliation task per ConfigSync."""

    def __init__(
        self,
        cluster: Cluster,
        controller: ConfigSyncController,
        config: RunnerConfig,
        refresh: bool = True,
    ) -> None:
        """Initialize SyncRunner.

        Args:
            cluster: Cluster the resources are re-read from between passes.
            controller: The reconciler.
            config: Retry settings.
            refresh: Re-read the resource from the cluster before every pass,
                otherwise the same object is reconciled again.
        """
        self._cluster = cluster
        self._controller = controller
        self._config = config
        self._refresh = refresh
        self._tasks: dict[NamedResource, asyncio.Task[None]] = {}

    def start(
        self, config_sync: ConfigSync, refresh: bool | None = None
    ) -> asyncio.Task[None]:
        """Start reconciling a ConfigSync, unless it is already running.

        Args:
            config_sync: The resource to reconcile.
            refresh: Overrides whether this resource is re-read from the
                cluster between passes.
        """
        resource_id = config_sync.resource_id
        if (task := self._tasks.get(resource_id)) is not None and not task.done():
            _LOGGER.debug("%s is already running", resource_id)
            return task
        task = asyncio.create_task(
            self._run(config_sync, self._refresh if refresh is None else refresh),
            name=str(resource_id),
        )
        self._tasks[resource_id] = task
        task.add_done_callback(partial(self._task_done, resource_id))
        return task

    def _task_done(self, resource_id: NamedResource, task: asyncio.Task[None]) -> None:
        if self._tasks.get(resource_id) is task:
            del self._tasks[resource_id]

    def get_num_active_tasks(self) -> int:
        """Get the number of running reconciliation tasks."""
        return len(self._tasks)

    async def block_till_done(self) -> None:
        """Wait for all running tasks to complete."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()))

    async def close(self) -> None:
        """Cancel all running tasks and wait for them to finish."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _next_backoff(self, backoff: timedelta | None) -> timedelta:
        if backoff is None:
            return self._config.initial_backoff
        return min(backoff * 2, self._config.max_backoff)

    async def _run(self, config_sync: ConfigSync, refresh: bool) -> None:
        resource_id = config_sync.resource_id
        backoff: timedelta | None = None
        current: ConfigSync | None = config_sync
        while current is not None:
            try:
                result = await self._controller.reconcile(current)
            except ConfigSyncException as err:
                backoff = self._next_backoff(backoff)
                _LOGGER.warning(
                    "Reconciliation of %s failed, retrying in %s: %s",
                    resource_id,
                    backoff,
                    err,
                )
                delay = backoff
            else:
                backoff = None
                if result.requeue_after is None:
                    _LOGGER.info("%s needs no further reconciliation", resource_id)
                    return
                _LOGGER.debug(
                    "Next reconciliation of %s in %s", resource_id, result.requeue_after
                )
                delay = result.requeue_after
            await asyncio.sleep(delay.total_seconds())
            current = await self._reload(current, refresh)
        _LOGGER.info("%s was deleted, stopping", resource_id)

    async def _reload(
        self, config_sync: ConfigSync, refresh: bool
    ) -> ConfigSync | None:
        """Return the latest version of the resource, or None if deleted."""
        if not refresh:
            return config_sync
        try:
            return await self._cluster.get_config_sync(config_sync.resource_id)
        except ClusterException as err:
            _LOGGER.warning(
                "Unable to read %s, reusing the previous version: %s",
                config_sync.resource_id,
                err,
            )
            return config_sync
