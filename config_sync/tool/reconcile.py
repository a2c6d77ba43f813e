"""config-sync reconcile action."""

from argparse import (
    ArgumentParser,
    _SubParsersAction as SubParsersAction,
    BooleanOptionalAction,
)
from datetime import timedelta
import logging
import pathlib
import sys
from typing import cast

from config_sync.apply import ManifestApplier
from config_sync.cluster.kube import KubernetesCluster
from config_sync.conditions import DEGRADED
from config_sync.config import (
    FIELD_MANAGER,
    ApplyConfig,
    ControllerConfig,
    RunnerConfig,
)
from config_sync.configsync_controller import ConfigSyncController, SyncRunner
from config_sync.exceptions import InputException
from config_sync.manifest import (
    CONFIG_SYNC_KIND,
    DEFAULT_NAMESPACE,
    ConfigSync,
    NamedResource,
)
from config_sync.source_controller import SourceResolver

from . import selector

_LOGGER = logging.getLogger(__name__)


class ReconcileAction:
    """config-sync reconcile action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "reconcile",
                help="Reconcile ConfigSync resources against a cluster",
                description="""Fetch the source of each ConfigSync and apply its
                    manifests to the targets in the cluster of the current kube
                    context, then record the result in the ConfigSync status.""",
            ),
        )
        args.add_argument(
            "-f",
            "--file",
            dest="files",
            type=pathlib.Path,
            action="append",
            default=[],
            help="YAML file with ConfigSync documents to reconcile",
        )
        args.add_argument(
            "--name",
            type=str,
            help="Name of a ConfigSync in the cluster to reconcile",
        )
        args.add_argument(
            "--namespace",
            "-n",
            type=str,
            default=DEFAULT_NAMESPACE,
            help="Namespace of the ConfigSync given by --name",
        )
        args.add_argument(
            "--watch",
            type=bool,
            action=BooleanOptionalAction,
            default=False,
            help="Keep reconciling at the refresh interval until interrupted",
        )
        args.add_argument(
            "--kubeconfig",
            type=str,
            help="Path to the kubeconfig file, defaults to the standard locations",
        )
        args.add_argument(
            "--context",
            type=str,
            help="The kubeconfig context to use",
        )
        args.add_argument(
            "--dry-run",
            type=bool,
            action=BooleanOptionalAction,
            default=True,
            help="Validate each document with a server-side dry-run before applying",
        )
        args.add_argument(
            "--field-manager",
            type=str,
            default=FIELD_MANAGER,
            help="Field manager that owns the applied fields",
        )
        args.add_argument(
            "--default-refresh-interval",
            type=selector.duration,
            default=timedelta(minutes=10),
            help="Refresh interval of a ConfigSync without refreshInterval",
        )
        selector.add_source_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        files: list[pathlib.Path],
        name: str | None,
        namespace: str,
        watch: bool,
        kubeconfig: str | None,
        context: str | None,
        dry_run: bool,
        field_manager: str,
        default_refresh_interval: timedelta,
        cache_dir: pathlib.Path,
        git_timeout: float,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        if not files and not name:
            raise InputException("One of --file or --name is required")

        cluster = KubernetesCluster.from_kubeconfig(kubeconfig, context)
        # Each ConfigSync with whether it is re-read from the cluster when watching
        config_syncs: list[tuple[ConfigSync, bool]] = []
        if files:
            config_syncs.extend(
                (obj, False)
                for obj in await selector.load_objects(files)
                if isinstance(obj, ConfigSync)
            )
        if name:
            resource_id = NamedResource(CONFIG_SYNC_KIND, namespace, name)
            if (config_sync := await cluster.get_config_sync(resource_id)) is None:
                raise InputException(f"{resource_id} not found")
            config_syncs.append((config_sync, True))
        if not config_syncs:
            raise InputException("No ConfigSync objects found in the input files")

        controller = ConfigSyncController(
            cluster,
            SourceResolver(
                cluster, selector.build_source_config(cache_dir, git_timeout)
            ),
            ManifestApplier(
                cluster, ApplyConfig(dry_run=dry_run, field_manager=field_manager)
            ),
            ControllerConfig(default_refresh_interval=default_refresh_interval),
        )

        if not watch:
            for config_sync, _ in config_syncs:
                result = await controller.reconcile(config_sync)
                _print_result(config_sync, result.requeue_after)
            return

        runner = SyncRunner(cluster, controller, RunnerConfig())
        for config_sync, refresh in config_syncs:
            runner.start(config_sync, refresh=refresh)
        try:
            await runner.block_till_done()
        finally:
            await runner.close()


def _print_result(config_sync: ConfigSync, requeue_after: timedelta | None) -> None:
    status = config_sync.status
    condition = status.conditions.get(DEGRADED)
    reason = condition.reason if condition else "Unknown"
    next_run = str(requeue_after) if requeue_after is not None else "never"
    print(
        f"{config_sync.namespaced_name}: {reason} "
        f"revision={status.source_revision} targets={status.applied_target_count} "
        f"next={next_run}",
        file=sys.stdout,
    )
