"""ConfigMap and Secret sources.

The keys of the object are written as files into a fresh temporary directory
that is removed at the end of the reconciliation. The revision is a digest of
the content that does not depend on the order of the keys.
"""

import functools
import hashlib
import logging
import os
from pathlib import Path
from shutil import rmtree
import tempfile

import aiofiles

from config_sync.cluster import Cluster
from config_sync.exceptions import (
    ClusterException,
    SourceFetchError,
    SourceNotFoundError,
)
from config_sync.manifest import SECRET_KIND, ConfigMapRef, NamedResource, SecretRef

from .artifact import ContentArtifact

_LOGGER = logging.getLogger(__name__)

CONFIG_MAP_FILE_MODE = 0o644
SECRET_FILE_MODE = 0o600


def config_map_revision(data: dict[str, str]) -> str:
    """Return the content identifier of ConfigMap data.

    Each key in sorted order contributes `key\\nvalue\\n` to a SHA-256 digest.
    """
    digest = hashlib.sha256()
    for key in sorted(data):
        digest.update(f"{key}\n{data[key]}\n".encode("utf-8"))
    return digest.hexdigest()


def secret_revision(data: dict[str, bytes]) -> str:
    """Return the content identifier of decoded Secret data.

    Values are length prefixed and hex encoded so arbitrary bytes can't make
    two different Secrets collide.
    """
    digest = hashlib.sha256()
    for key in sorted(data):
        value = data[key]
        digest.update(f"{key}\n{len(value)}\n{value.hex()}\n".encode("utf-8"))
    return digest.hexdigest()


def _check_key(resource_id: NamedResource, key: str) -> None:
    if not key or key in (".", "..") or "/" in key or "\0" in key:
        raise SourceFetchError(f"{resource_id} has invalid file name key '{key}'")


async def _write_files(path: Path, entries: dict[str, bytes], mode: int) -> None:
    opener = functools.partial(os.open, mode=mode)
    for key, value in entries.items():
        async with aiofiles.open(path / key, "wb", opener=opener) as content_file:
            await content_file.write(value)


async def _read_entries(
    cluster: Cluster, resource_id: NamedResource
) -> tuple[dict[str, bytes], str, int]:
    """Return the file contents, revision and file mode of a source object."""
    try:
        if resource_id.kind == SECRET_KIND:
            if (secret := await cluster.get_secret(resource_id)) is not None:
                return dict(secret.data), secret_revision(secret.data), SECRET_FILE_MODE
        elif (config_map := await cluster.get_config_map(resource_id)) is not None:
            entries = {
                key: value.encode("utf-8") for key, value in config_map.data.items()
            }
            return entries, config_map_revision(config_map.data), CONFIG_MAP_FILE_MODE
    except ClusterException as err:
        raise SourceFetchError(f"Failed to read {resource_id}: {err}") from err
    raise SourceNotFoundError(f"{resource_id} not found")


async def materialize(
    cluster: Cluster, ref: ConfigMapRef | SecretRef, namespace: str
) -> ContentArtifact:
    """Write the content of a ConfigMap or Secret into a temporary directory.

    Args:
        cluster: The cluster holding the object.
        ref: Reference to the object.
        namespace: Namespace used when the reference has none.

    Raises:
        SourceNotFoundError: If the object does not exist.
        SourceFetchError: If the object can't be read or written to disk.
    """
    resource_id = ref.resource_id(namespace)
    entries, revision, mode = await _read_entries(cluster, resource_id)

    for key in entries:
        _check_key(resource_id, key)

    local_path = Path(
        tempfile.mkdtemp(prefix=f"config-sync-{resource_id.kind.lower()}-")
    )
    try:
        await _write_files(local_path, entries, mode)
    except OSError as err:
        rmtree(local_path, ignore_errors=True)
        raise SourceFetchError(f"Failed to write {resource_id}: {err}") from err
    except BaseException:
        rmtree(local_path, ignore_errors=True)
        raise
    _LOGGER.debug(
        "Wrote %d files of %s to %s", len(entries), resource_id, local_path
    )
    return ContentArtifact(
        resource_id=resource_id,
        revision=revision,
        local_path=str(local_path),
    )
