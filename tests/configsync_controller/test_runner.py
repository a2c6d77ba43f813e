"""Tests for running reconciliations continuously."""

from collections.abc import Callable
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from config_sync.cluster import InMemoryCluster
from config_sync.config import RunnerConfig
from config_sync.configsync_controller import (
    ConfigSyncController,
    ReconcileResult,
    SyncRunner,
)
from config_sync.exceptions import SourceFetchError
from config_sync.manifest import ConfigSync

MakeConfigSync = Callable[..., ConfigSync]

CONFIG = RunnerConfig(
    initial_backoff=timedelta(milliseconds=1),
    max_backoff=timedelta(milliseconds=4),
)


@pytest.fixture(name="config_sync")
def config_sync_fixture(
    cluster: InMemoryCluster, make_config_sync: MakeConfigSync
) -> ConfigSync:
    """A ConfigSync stored in the cluster."""
    config_sync = make_config_sync({"configMapRef": {"name": "manifests"}})
    cluster.add_object(config_sync)
    return config_sync


def _controller(*results: ReconcileResult | Exception) -> AsyncMock:
    controller = AsyncMock(spec=ConfigSyncController)
    controller.reconcile.side_effect = list(results)
    return controller


async def test_stops_without_requeue(
    cluster: InMemoryCluster, config_sync: ConfigSync
) -> None:
    """Test the task ends when no further pass is requested."""
    controller = _controller(
        ReconcileResult(requeue_after=timedelta(milliseconds=1)),
        ReconcileResult(requeue_after=None),
    )
    runner = SyncRunner(cluster, controller, CONFIG)
    runner.start(config_sync)
    assert runner.get_num_active_tasks() == 1
    await runner.block_till_done()
    assert runner.get_num_active_tasks() == 0
    assert controller.reconcile.await_count == 2


async def test_retries_with_backoff(
    cluster: InMemoryCluster,
    config_sync: ConfigSync,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Test failed passes are retried with an increasing delay."""
    delays: list[float] = []
    sleep = AsyncMock(side_effect=delays.append)
    monkeypatch.setattr("asyncio.sleep", sleep)

    error = SourceFetchError("unreachable")
    controller = _controller(
        error,
        error,
        error,
        error,
        ReconcileResult(requeue_after=timedelta(seconds=30)),
        error,
        ReconcileResult(requeue_after=None),
    )
    runner = SyncRunner(cluster, controller, CONFIG)
    await runner.start(config_sync)
    assert delays == [0.001, 0.002, 0.004, 0.004, 30.0, 0.001]


async def test_stops_when_deleted(
    cluster: InMemoryCluster, config_sync: ConfigSync
) -> None:
    """Test the task ends when the resource is gone."""
    controller = _controller(ReconcileResult(requeue_after=timedelta(milliseconds=1)))
    cluster.remove_object(config_sync.resource_id)
    runner = SyncRunner(cluster, controller, CONFIG)
    await runner.start(config_sync)
    assert controller.reconcile.await_count == 1


async def test_refresh_disabled(
    cluster: InMemoryCluster, config_sync: ConfigSync
) -> None:
    """Test the same object is reconciled again when not refreshed."""
    controller = _controller(
        ReconcileResult(requeue_after=timedelta(milliseconds=1)),
        ReconcileResult(requeue_after=None),
    )
    cluster.remove_object(config_sync.resource_id)
    runner = SyncRunner(cluster, controller, CONFIG, refresh=False)
    await runner.start(config_sync)
    assert [call.args[0] for call in controller.reconcile.await_args_list] == [
        config_sync,
        config_sync,
    ]


async def test_refreshed_object_is_reconciled(
    cluster: InMemoryCluster, config_sync: ConfigSync
) -> None:
    """Test the latest version of the resource is used for the next pass."""
    controller = _controller(
        ReconcileResult(requeue_after=timedelta(milliseconds=1)),
        ReconcileResult(requeue_after=None),
    )
    config_sync.spec.refresh_interval = "1h"
    runner = SyncRunner(cluster, controller, CONFIG)
    await runner.start(config_sync)
    second = controller.reconcile.await_args_list[1].args[0]
    assert second is not config_sync
    assert second.spec.refresh_interval == "1h"


async def test_start_twice(cluster: InMemoryCluster, config_sync: ConfigSync) -> None:
    """Test only one task runs per resource."""
    controller = _controller(ReconcileResult(requeue_after=timedelta(hours=1)))
    runner = SyncRunner(cluster, controller, CONFIG)
    task = runner.start(config_sync)
    assert runner.start(config_sync) is task
    assert runner.get_num_active_tasks() == 1
    await runner.close()
    assert task.cancelled()


async def test_refresh_per_resource(
    cluster: InMemoryCluster, config_sync: ConfigSync
) -> None:
    """Test a resource can opt out of being re-read from the cluster."""
    controller = _controller(
        ReconcileResult(requeue_after=timedelta(milliseconds=1)),
        ReconcileResult(requeue_after=None),
    )
    runner = SyncRunner(cluster, controller, CONFIG)
    await runner.start(config_sync, refresh=False)
    assert [call.args[0] for call in controller.reconcile.await_args_list] == [
        config_sync,
        config_sync,
    ]
