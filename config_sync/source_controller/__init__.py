"""Source controller for resolving ConfigSync sources."""

from .artifact import SourceArtifact, GitArtifact, ContentArtifact
from .cache import RepositoryCache, get_repository_cache
from .controller import SourceResolver

__all__ = [
    "SourceResolver",
    "SourceArtifact",
    "GitArtifact",
    "ContentArtifact",
    "RepositoryCache",
    "get_repository_cache",
]
