"""Shared fixtures for config-sync tests."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import git
import pytest

from config_sync.cluster import InMemoryCluster
from config_sync.manifest import ConfigSync

CommitFiles = Callable[[dict[str, str], str], str]


@pytest.fixture(name="cluster")
def cluster_fixture() -> InMemoryCluster:
    """Create an empty in-memory cluster."""
    return InMemoryCluster()


@pytest.fixture(name="cache_dir")
def cache_dir_fixture(tmp_path: Path) -> Path:
    """Root directory of the repository cache for a test."""
    return tmp_path / "cache"


@pytest.fixture(name="upstream_repo")
def upstream_repo_fixture(tmp_path: Path) -> git.Repo:
    """Create a local git repository that plays the remote."""
    repo_path = tmp_path / "upstream"
    repo_path.mkdir()
    repo = git.Repo.init(repo_path, initial_branch="main")
    repo.config_writer().set_value("user", "name", "myusername").release()
    repo.config_writer().set_value("user", "email", "myemail").release()
    repo.config_writer().set_value("commit", "gpgsign", "false").release()
    return repo


@pytest.fixture(name="upstream_url")
def upstream_url_fixture(upstream_repo: git.Repo) -> str:
    """URL of the upstream repository."""
    return f"file://{upstream_repo.working_tree_dir}"


@pytest.fixture(name="commit_files")
def commit_files_fixture(upstream_repo: git.Repo) -> CommitFiles:
    """Return a function that commits files to the upstream repository."""

    def commit(files: dict[str, str], message: str) -> str:
        root = Path(str(upstream_repo.working_tree_dir))
        for name, content in files.items():
            path = root / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        upstream_repo.git.add(".")
        upstream_repo.git.commit(m=message)
        return upstream_repo.head.commit.hexsha

    return commit


MakeConfigSync = Callable[..., ConfigSync]


@pytest.fixture(name="make_config_sync")
def make_config_sync_fixture() -> MakeConfigSync:
    """Return a function that builds a ConfigSync in namespace `apps`."""

    def make(source: dict[str, Any], **spec: Any) -> ConfigSync:
        doc = {
            "apiVersion": "configs.example.io/v1alpha1",
            "kind": "ConfigSync",
            "metadata": {"name": "example", "namespace": "apps"},
            "spec": {
                "source": source,
                "targets": [
                    {"namespace": "target-ns", "name": "app", "type": "ConfigMap"}
                ],
                **spec,
            },
        }
        return ConfigSync.parse_doc(doc)

    return make
