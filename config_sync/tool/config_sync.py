"""Command line tool for reconciling and rendering ConfigSync resources."""

import argparse
import asyncio
import logging
import sys
import traceback
from typing import Any

import yaml

from config_sync.context import TraceFilter
from config_sync.exceptions import ConfigSyncException
from . import build, reconcile

_LOGGER = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname)s:%(name)s:[%(trace)s] %(message)s"


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for syncing manifests from a source into a cluster.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    reconcile.ReconcileAction.register(subparsers)
    build.BuildAction.register(subparsers)
    return parser


def main() -> None:
    """config-sync command line tool main entry point."""

    def str_presenter(dumper: yaml.Dumper, data: Any) -> Any:
        """Represent multi-line yaml strings as you'd expect.

        See https://github.com/yaml/pyyaml/issues/240
        """
        return dumper.represent_scalar(
            "tag:yaml.org,2002:str", data, style="|" if data.count("\n") > 0 else None
        )

    yaml.add_representer(str, str_presenter)

    parser = _make_parser()
    args = parser.parse_args()

    if args.log_level:
        handler = logging.StreamHandler()
        handler.addFilter(TraceFilter())
        logging.basicConfig(level=args.log_level, format=LOG_FORMAT, handlers=[handler])

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except ConfigSyncException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("config-sync error: ", err, file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
