"""Git repository controller.

A repository is cloned once into the cache and then fetched and checked out
on every reconciliation. A cached repository that can not be opened or
fetched is removed and cloned again from scratch.
"""

import asyncio
import logging
from pathlib import Path
from shutil import rmtree

import git

from config_sync.cluster import Cluster
from config_sync.exceptions import (
    GitError,
    RepositoryCacheCorruptedError,
    SourceFetchError,
)
from config_sync.manifest import GitSource

from .artifact import GitArtifact
from .auth import GitAuth, build_auth
from .cache import RepositoryCache

_LOGGER = logging.getLogger(__name__)

MAX_SYNC_ATTEMPTS = 2

# Never block waiting for credentials on a terminal
_BASE_ENV = {"GIT_TERMINAL_PROMPT": "0"}


class _CacheUnusable(Exception):
    """The cached working directory can't be opened or fetched."""


def _error_detail(err: git.GitCommandError) -> str:
    if stderr := str(err.stderr or "").strip():
        return stderr
    return str(err)


def _clone(
    url: str,
    repo_path: Path,
    branch: str | None,
    env: dict[str, str],
    timeout: float,
) -> git.Repo:
    if repo_path.exists():
        _LOGGER.debug("Removing incomplete repository at %s", repo_path)
        rmtree(repo_path)
    _LOGGER.info("Cloning repository %s to %s", url, repo_path)
    options = ["--single-branch", "--branch", branch] if branch else []
    # A stalled clone is killed once the timeout passes
    try:
        git.Git().clone(
            *options,
            "--",
            url,
            str(repo_path),
            env=env,
            kill_after_timeout=timeout,
        )
    except git.GitCommandError as err:
        raise GitError(f"Clone of {url} failed: {_error_detail(err)}") from err
    return git.Repo(str(repo_path))


def _open_and_fetch(repo_path: Path, env: dict[str, str], timeout: float) -> git.Repo:
    try:
        repo = git.Repo(str(repo_path))
    except (git.InvalidGitRepositoryError, git.NoSuchPathError) as err:
        raise _CacheUnusable(f"unable to open repository: {err}") from err
    _LOGGER.info("Fetching repository at %s", repo_path)
    try:
        with repo.git.custom_environment(**env):
            repo.remote("origin").fetch(
                tags=True, force=True, kill_after_timeout=timeout
            )
    except (git.GitCommandError, ValueError) as err:
        repo.close()
        detail = _error_detail(err) if isinstance(err, git.GitCommandError) else err
        raise _CacheUnusable(f"fetch failed: {detail}") from err
    return repo


def _checkout(
    repo: git.Repo, revision: str | None, branch: str | None, fetched: bool
) -> None:
    """Move the working tree to the requested state.

    A revision wins over a branch. Without either, a freshly cloned repository
    is already at the remote default branch while a fetched one is moved to it.
    """
    try:
        if revision:
            _LOGGER.info("Checking out revision %s", revision)
            repo.git.checkout("--force", revision)
        elif branch:
            _LOGGER.info("Checking out branch %s", branch)
            repo.git.checkout("--force", "-B", branch, f"origin/{branch}")
        elif fetched:
            repo.git.checkout("--force", "--detach", "origin/HEAD")
    except git.GitCommandError as err:
        ref = revision or branch or "origin/HEAD"
        raise GitError(f"Checkout of {ref} failed: {_error_detail(err)}") from err


def _sync_once(
    url: str,
    repo_path: Path,
    revision: str | None,
    branch: str | None,
    env: dict[str, str],
    timeout: float,
) -> str:
    if (repo_path / ".git").exists():
        repo = _open_and_fetch(repo_path, env, timeout)
        fetched = True
    else:
        repo = _clone(url, repo_path, branch, env, timeout)
        fetched = False
    with repo:
        _checkout(repo, revision, branch, fetched)
        return repo.head.commit.hexsha


def sync_repository(
    cache: RepositoryCache,
    url: str,
    *,
    revision: str | None = None,
    branch: str | None = None,
    auth: GitAuth,
    timeout: float,
) -> tuple[str, Path]:
    """Bring the cached working tree of a repository to the requested state.

    This blocks on git subprocesses and is meant to run in a worker thread.

    Returns:
        The checked out commit id and the working tree path.

    Raises:
        GitError: If a clone or checkout fails.
        RepositoryCacheCorruptedError: If the cache stays unusable after it was
            removed and cloned again.
    """
    with cache.locked(url) as repo_path, auth.environment() as auth_env:
        env = {**_BASE_ENV, **auth_env}
        for attempt in range(1, MAX_SYNC_ATTEMPTS + 1):
            try:
                commit = _sync_once(url, repo_path, revision, branch, env, timeout)
            except _CacheUnusable as err:
                _LOGGER.warning(
                    "Cached repository %s is unusable (attempt %d): %s",
                    repo_path,
                    attempt,
                    err,
                )
                rmtree(repo_path, ignore_errors=True)
                last_error = err
                continue
            _LOGGER.debug("Repository %s is at %s", url, commit)
            return commit, repo_path
    raise RepositoryCacheCorruptedError(
        f"Repository cache for {url} is unusable after recreating it: {last_error}"
    ) from last_error


def manifest_dir(repo_path: Path, path: str | None) -> Path:
    """Return the directory of a repository holding the manifests.

    Raises:
        SourceFetchError: If the path leaves the working tree or is not a
            directory.
    """
    if not path:
        return repo_path
    root = repo_path.resolve()
    candidate = (root / path.lstrip("/")).resolve()
    if not candidate.is_relative_to(root):
        raise SourceFetchError(f"Path '{path}' is outside of the repository")
    if not candidate.is_dir():
        raise SourceFetchError(f"Path '{path}' is not a directory in the repository")
    return candidate


async def fetch_git(
    source: GitSource,
    namespace: str,
    cluster: Cluster,
    cache: RepositoryCache,
    timeout: float,
) -> GitArtifact:
    """Fetch a Git repository using the cache.

    Args:
        source: The git source of a ConfigSync.
        namespace: Namespace of the ConfigSync, used for the credentials.
        cluster: The cluster holding the credentials Secret.
        cache: The shared repository cache.
        timeout: Seconds allowed for the whole git sync.

    Raises:
        SourceFetchError: If credentials, git operations or the path fail.
    """
    auth = await build_auth(
        cluster, source.auth_method, source.auth_secret_ref, namespace
    )
    try:
        async with asyncio.timeout(timeout):
            commit, repo_path = await asyncio.to_thread(
                sync_repository,
                cache,
                source.repo_url,
                revision=source.revision,
                branch=source.branch,
                auth=auth,
                timeout=timeout,
            )
    except TimeoutError as err:
        raise GitError(
            f"Sync of {source.repo_url} did not finish within {timeout}s"
        ) from err
    return GitArtifact(
        url=source.repo_url,
        revision=commit,
        repo_path=str(repo_path),
        local_path=str(manifest_dir(repo_path, source.path)),
    )
