"""Artifact representation."""

from dataclasses import dataclass
import logging
from shutil import rmtree

from config_sync.manifest import NamedResource

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class SourceArtifact:
    """Base class for resolved sources.

    The local path holds the manifests of the source and is treated as read
    only input by the applier.
    """

    revision: str
    """Content identifier of the source state."""

    local_path: str
    """Local filesystem path of the directory holding the manifests."""

    ephemeral: bool = False
    """The directory belongs to a single reconciliation and must be removed."""

    def cleanup(self) -> None:
        """Remove the local directory if it is owned by this artifact."""
        if not self.ephemeral:
            return
        _LOGGER.debug("Removing source directory %s", self.local_path)
        rmtree(self.local_path, ignore_errors=True)


@dataclass(frozen=True, kw_only=True)
class GitArtifact(SourceArtifact):
    """Git artifact.

    The local path references a directory within the shared repository cache
    at the checked out commit. It is reused across reconciliations.
    """

    url: str
    """URL of the git repository, for informational/logging purposes."""

    repo_path: str
    """Root of the cached working tree."""


@dataclass(frozen=True, kw_only=True)
class ContentArtifact(SourceArtifact):
    """Artifact for a ConfigMap or Secret source.

    Each key of the object is written as a file into a fresh directory.
    """

    resource_id: NamedResource
    """The ConfigMap or Secret the content was read from."""

    ephemeral: bool = True
