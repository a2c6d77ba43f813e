"""Library for common command line flags and loading of input files."""

from argparse import ArgumentParser, ArgumentTypeError
from datetime import timedelta
import logging
import pathlib

from config_sync.config import DEFAULT_CACHE_DIR, SourceControllerConfig
from config_sync.duration import parse_duration
from config_sync.manifest import BaseManifest, read_documents

_LOGGER = logging.getLogger(__name__)


def duration(value: str) -> timedelta:
    """Argument type for a positive duration such as `30s` or `10m`."""
    try:
        result = parse_duration(value)
    except ValueError as err:
        raise ArgumentTypeError(str(err)) from err
    if result <= timedelta(0):
        raise ArgumentTypeError(f"Duration must be positive: '{value}'")
    return result


def add_source_flags(args: ArgumentParser) -> None:
    """Add flags that control how sources are fetched."""
    args.add_argument(
        "--cache-dir",
        type=pathlib.Path,
        default=DEFAULT_CACHE_DIR,
        help="Directory where git repositories are cached between runs",
    )
    args.add_argument(
        "--git-timeout",
        type=float,
        default=SourceControllerConfig.git_timeout,
        help="Seconds allowed for syncing a git repository",
    )


def build_source_config(
    cache_dir: pathlib.Path, git_timeout: float
) -> SourceControllerConfig:
    """Create the source configuration from the command line flags."""
    return SourceControllerConfig(cache_dir=cache_dir, git_timeout=git_timeout)


async def load_objects(paths: list[pathlib.Path]) -> list[BaseManifest]:
    """Load the objects in the given YAML files, in order."""
    objects: list[BaseManifest] = []
    for path in paths:
        objects.extend(await read_documents(path))
    _LOGGER.debug("Loaded %d objects from %d files", len(objects), len(paths))
    return objects
