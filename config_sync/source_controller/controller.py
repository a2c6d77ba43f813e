"""Source Controller module.

This controller resolves the source of a ConfigSync into a local directory of
manifests and a revision identifying the content.

Supported Source Types:
    - git: A repository kept in a shared on-disk cache
    - configMapRef: A ConfigMap whose keys become files
    - secretRef: A Secret whose keys become files
"""

import logging

from config_sync.cluster import Cluster
from config_sync.config import SourceControllerConfig
from config_sync.context import trace_context
from config_sync.manifest import ConfigSync, GitSource

from .artifact import SourceArtifact
from .cache import get_repository_cache
from .content import materialize
from .git import fetch_git

_LOGGER = logging.getLogger(__name__)


class SourceResolver:
    """Resolves the source of a ConfigSync to a SourceArtifact."""

    def __init__(self, cluster: Cluster, config: SourceControllerConfig) -> None:
        """Initialize SourceResolver."""
        self._cluster = cluster
        self._config = config
        self._cache = get_repository_cache(config.cache_dir)

    async def resolve(self, config_sync: ConfigSync) -> SourceArtifact:
        """Fetch the source of a ConfigSync.

        The caller must call `cleanup` on the returned artifact when done.

        Raises:
            InvalidSourceError: If not exactly one source is populated.
            SourceFetchError: If the source could not be fetched.
        """
        source = config_sync.spec.source.selected()
        with trace_context(f"Source '{config_sync.namespaced_name}'"):
            if isinstance(source, GitSource):
                artifact: SourceArtifact = await fetch_git(
                    source,
                    config_sync.namespace,
                    self._cluster,
                    self._cache,
                    self._config.git_timeout,
                )
            else:
                artifact = await materialize(
                    self._cluster, source, config_sync.namespace
                )
        _LOGGER.info(
            "Resolved source of %s at revision %s",
            config_sync.resource_id,
            artifact.revision,
        )
        return artifact
