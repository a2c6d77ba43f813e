"""Cache management for git repositories."""

from collections.abc import Generator
import contextlib
from functools import cache
import logging
from pathlib import Path
import threading

from slugify import slugify

from config_sync.exceptions import GitError

_LOGGER = logging.getLogger(__name__)

# Any run of characters that is not a letter or digit becomes one separator
_KEY_DISALLOWED_PATTERN = r"[^a-zA-Z0-9]+"


class RepositoryCache:
    """Cache manager for git repositories.

    Each repository URL owns one working directory below the cache root that
    is reused by every ConfigSync referencing the URL. Access to a working
    directory is serialized with a lock per cache key. The locks are held by
    the thread running the git commands so they stay held until the commands
    finish even when the caller gave up waiting.
    """

    def __init__(self, cache_dir: Path) -> None:
        """Initialize the cache manager."""
        self._cache_dir = cache_dir
        self._locks: dict[str, threading.Lock] = {}
        self._locks_lock = threading.Lock()

    @property
    def cache_dir(self) -> Path:
        """Root directory of the cache."""
        return self._cache_dir

    @staticmethod
    def cache_key(url: str) -> str:
        """Return the sanitized form of a repository URL used as directory name.

        Raises:
            GitError: If nothing usable remains of the URL.
        """
        key = slugify(
            url,
            separator="_",
            lowercase=False,
            regex_pattern=_KEY_DISALLOWED_PATTERN,
        )
        if not key:
            raise GitError(f"Invalid repository URL '{url}'")
        return key

    def repo_path(self, url: str) -> Path:
        """Return the working directory for a repository URL."""
        return self._cache_dir / self.cache_key(url)

    def _lock(self, key: str) -> threading.Lock:
        with self._locks_lock:
            if (lock := self._locks.get(key)) is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextlib.contextmanager
    def locked(self, url: str) -> Generator[Path, None, None]:
        """Hold the lock of a repository and yield its working directory."""
        key = self.cache_key(url)
        lock = self._lock(key)
        if not lock.acquire(blocking=False):
            _LOGGER.debug("Waiting for repository cache %s", key)
            lock.acquire()
        try:
            self._cache_dir.mkdir(parents=True, exist_ok=True)
            yield self._cache_dir / key
        finally:
            lock.release()


@cache
def get_repository_cache(cache_dir: Path) -> RepositoryCache:
    """Get the RepositoryCache shared by everything using the cache root."""
    return RepositoryCache(cache_dir)
