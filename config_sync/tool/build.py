"""config-sync build action."""

from argparse import (
    ArgumentParser,
    _SubParsersAction as SubParsersAction,
)
import logging
import pathlib
from typing import cast

import yaml

from config_sync.apply import render_target
from config_sync.cluster import InMemoryCluster
from config_sync.exceptions import InputException
from config_sync.manifest import ConfigSync
from config_sync.source_controller import SourceResolver

from . import selector

_LOGGER = logging.getLogger(__name__)


class BuildAction:
    """config-sync build action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "build",
                help="Build the objects a ConfigSync would apply",
                description="""Resolve the source of each ConfigSync without a
                    cluster and print the sanitized documents that would be
                    applied to every target. ConfigMap and Secret sources are
                    read from the input files.""",
            ),
        )
        args.add_argument(
            "-f",
            "--file",
            dest="files",
            type=pathlib.Path,
            action="append",
            required=True,
            help="YAML file with ConfigSync documents to build",
        )
        args.add_argument(
            "--objects",
            type=pathlib.Path,
            action="append",
            default=[],
            help="YAML file with ConfigMap and Secret objects used as sources",
        )
        args.add_argument(
            "--output-file",
            type=str,
            default="/dev/stdout",
            help="Output file for the results of the command",
        )
        selector.add_source_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        files: list[pathlib.Path],
        objects: list[pathlib.Path],
        output_file: str,
        cache_dir: pathlib.Path,
        git_timeout: float,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        cluster = InMemoryCluster()
        config_syncs: list[ConfigSync] = []
        for obj in await selector.load_objects(files + objects):
            if isinstance(obj, ConfigSync):
                config_syncs.append(obj)
            else:
                cluster.add_object(obj)
        if not config_syncs:
            raise InputException("No ConfigSync objects found in the input files")

        resolver = SourceResolver(
            cluster, selector.build_source_config(cache_dir, git_timeout)
        )
        with open(output_file, "w") as output:
            for config_sync in config_syncs:
                artifact = await resolver.resolve(config_sync)
                try:
                    for target in config_sync.spec.targets:
                        docs = [
                            obj
                            async for obj in render_target(
                                pathlib.Path(artifact.local_path), target
                            )
                        ]
                        _LOGGER.info(
                            "Built %d documents for %s target %s/%s",
                            len(docs),
                            config_sync.namespaced_name,
                            target.namespace,
                            target.name,
                        )
                        output.write(
                            f"# {config_sync.namespaced_name} -> "
                            f"{target.type} {target.namespace}/{target.name} "
                            f"@ {artifact.revision}\n"
                        )
                        if docs:
                            output.write(
                                yaml.dump_all(docs, sort_keys=False, explicit_start=True)
                            )
                finally:
                    artifact.cleanup()
