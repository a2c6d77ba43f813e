"""Library for applying the manifests of a source to a target.

The manifests are read from the `*.yaml` and `*.yml` files directly in the
source directory, in file name order. Each file may hold several documents
separated by `---` lines. Every document is stripped of the fields managed by
the API server and then applied with a server-side apply.

When validation is enabled, every document is first applied as a dry-run and
the real apply only happens when the server accepted it.
"""

from collections.abc import AsyncGenerator
import copy
import logging
from pathlib import Path
from typing import Any

import aiofiles
import yaml

from .cluster import Cluster
from .config import ApplyConfig
from .context import trace_context
from .exceptions import (
    ApplyFailedError,
    ApplyValidationError,
    ClusterException,
    ManifestParseError,
)
from .manifest import TargetRef

__all__ = [
    "ManifestApplier",
    "render_target",
    "sanitize",
    "split_documents",
    "manifest_files",
]

_LOGGER = logging.getLogger(__name__)

MANIFEST_SUFFIXES = (".yaml", ".yml")
DOCUMENT_SEPARATOR = "\n---"

# Fields set by the API server that must not be part of an apply request
SERVER_MANAGED_FIELDS = (
    "managedFields",
    "resourceVersion",
    "uid",
    "creationTimestamp",
    "generation",
    "selfLink",
)


def manifest_files(local_dir: Path) -> list[Path]:
    """Return the manifest files directly within a directory sorted by name."""
    return sorted(
        (
            path
            for path in local_dir.iterdir()
            if path.suffix in MANIFEST_SUFFIXES and path.is_file()
        ),
        key=lambda path: path.name,
    )


def split_documents(content: str) -> list[str]:
    """Split the content of a manifest file into documents.

    This is a literal split on lines starting with `---`, so a multi-line
    string containing such a line is split as well.
    """
    return [
        document
        for part in content.split(DOCUMENT_SEPARATOR)
        if (document := part.strip())
    ]


def _strip_metadata(value: Any) -> None:
    if isinstance(value, dict):
        for key, child in value.items():
            if key == "metadata" and isinstance(child, dict):
                for field in SERVER_MANAGED_FIELDS:
                    child.pop(field, None)
            _strip_metadata(child)
    elif isinstance(value, list):
        for item in value:
            _strip_metadata(item)


def sanitize(obj: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of an object without server managed fields.

    The top level `status` is removed along with the server managed fields of
    every `metadata` mapping, including the ones in nested templates.
    """
    result = copy.deepcopy(obj)
    result.pop("status", None)
    _strip_metadata(result)
    return result


def _parse_document(document: str, source: str) -> dict[str, Any] | None:
    try:
        obj = yaml.safe_load(document)
    except yaml.YAMLError as err:
        raise ManifestParseError(f"Unable to parse document in {source}: {err}") from err
    if obj is None:
        # Only comments
        return None
    if not isinstance(obj, dict):
        raise ManifestParseError(
            f"Document in {source} is not an object: {type(obj).__name__}"
        )
    return obj


async def _documents(
    local_dir: Path, target: TargetRef
) -> AsyncGenerator[tuple[str, dict[str, Any]], None]:
    for path in manifest_files(local_dir):
        async with aiofiles.open(path, encoding="utf-8") as manifest_file:
            content = await manifest_file.read()
        documents = split_documents(content)
        _LOGGER.debug("Read %d documents from %s", len(documents), path.name)
        for document in documents:
            if (obj := _parse_document(document, path.name)) is None:
                continue
            if target.namespace:
                metadata = obj.setdefault("metadata", {})
                if not isinstance(metadata, dict):
                    raise ManifestParseError(
                        f"Document in {path.name} has invalid metadata"
                    )
                metadata["namespace"] = target.namespace
            yield path.name, sanitize(obj)


async def render_target(
    local_dir: Path, target: TargetRef
) -> AsyncGenerator[dict[str, Any], None]:
    """Yield the objects that would be applied to a target.

    Raises:
        ManifestParseError: If a document is not a valid object.
    """
    async for _, obj in _documents(local_dir, target):
        yield obj


def _describe(obj: dict[str, Any]) -> str:
    metadata = obj.get("metadata") or {}
    name = metadata.get("name", "<unnamed>")
    if namespace := metadata.get("namespace"):
        name = f"{namespace}/{name}"
    return f"{obj.get('kind', '<unknown>')}/{name}"


class ManifestApplier:
    """Applies the manifests in a local directory to the cluster."""

    def __init__(self, cluster: Cluster, config: ApplyConfig) -> None:
        """Initialize ManifestApplier."""
        self._cluster = cluster
        self._config = config

    async def apply_target(self, local_dir: Path, target: TargetRef) -> int:
        """Apply every document in the directory to a target.

        The first failing document stops the target.

        Returns:
            The number of documents applied.

        Raises:
            ManifestParseError: If a document is not a valid object.
            ApplyValidationError: If the server rejected the dry-run.
            ApplyFailedError: If the server rejected the apply.
        """
        count = 0
        with trace_context(f"Target '{target.namespace}/{target.name}'"):
            async for source, obj in _documents(local_dir, target):
                resource = _describe(obj)
                if self._config.dry_run:
                    try:
                        await self._cluster.apply(
                            obj,
                            field_manager=self._config.field_manager,
                            dry_run=True,
                        )
                    except ClusterException as err:
                        raise ApplyValidationError(
                            f"Dry-run apply of {resource} from {source} failed: {err}"
                        ) from err
                try:
                    await self._cluster.apply(
                        obj, field_manager=self._config.field_manager
                    )
                except ClusterException as err:
                    raise ApplyFailedError(
                        f"Apply of {resource} from {source} failed: {err}"
                    ) from err
                _LOGGER.debug("Applied %s from %s", resource, source)
                count += 1
        _LOGGER.info(
            "Applied %d documents to target %s/%s (%s)",
            count,
            target.namespace,
            target.name,
            target.type,
        )
        return count
