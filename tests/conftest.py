"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pygit2
import pytest

from dionysius.config import ConfigTree
from dionysius.config.schema import Config

SIGNATURE = pygit2.Signature("Test User", "test@example.com")


class RepoBuilder:
    """Build small git repositories with pygit2."""

    def __init__(self, path: Path):
        path.mkdir(parents=True, exist_ok=True)
        self.path = path
        self.repo = pygit2.init_repository(str(path), initial_head="main")

    def commit(self, ref: str = "refs/heads/main", message: str = "init", parents=None):
        """Commit the index (with a README) to ``ref`` and return the new oid."""
        readme = self.path / "README"
        readme.write_text(f"{message}\n")
        self.repo.index.add("README")
        self.repo.index.write()
        tree = self.repo.index.write_tree()
        if parents is None:
            target = self.repo.references.get(ref)
            parents = [target.target] if target is not None else []
        return self.repo.create_commit(
            ref, SIGNATURE, SIGNATURE, message, tree, parents
        )

    def branch(self, name: str, oid) -> None:
        self.repo.create_branch(name, self.repo[oid])

    def remote_branch(self, remote: str, name: str, oid) -> None:
        if remote not in [r.name for r in self.repo.remotes]:
            self.repo.remotes.create(remote, f"/nonexistent/{remote}.git")
        self.repo.references.create(f"refs/remotes/{remote}/{name}", oid)

    def track(self, local: str, remote_branch: str) -> None:
        self.repo.branches.local[local].upstream = self.repo.branches.remote[
            remote_branch
        ]


@pytest.fixture
def make_repo():
    """Return a factory creating a committed repository at a path."""

    def factory(path: Path) -> RepoBuilder:
        builder = RepoBuilder(path)
        builder.commit()
        return builder

    return factory


@pytest.fixture
def clean_repo(tmp_path, make_repo):
    """A repository with a single committed branch and no remote."""
    return make_repo(tmp_path / "clean-repo")


@pytest.fixture
def empty_tree(tmp_path):
    """Config tree with built-in defaults rooted at ``tmp_path``."""
    return ConfigTree.from_config(Config(), tmp_path)


@pytest.fixture
def sample_config_toml():
    """Return a sample valid TOML configuration string."""
    return """
[global]
workers = 2
command_timeout = 600
backend = "git"
exclude_list = ["node_modules/", "target/"]

[global.git]
remote = "origin"
on_unsave = "ignore"
collapse_tracking = false

[global.borg]
target = "/mnt/backup/borg"
compression = "lz4"

[global.rsync]
target = "/mnt/backup/mirror"
delete = true

[[directories]]
path = "work/parent"
require_sub = true
exclude_list = ["build/"]

[[directories]]
path = "documents"
backend = "borg"
exclude_inherit = false
exclude_list = ["*.tmp"]

[directories.borg]
target = "ssh://nas/./documents"
"""


@pytest.fixture
def minimal_config_toml():
    """Return a minimal valid TOML configuration string."""
    return """
[[directories]]
path = "photos"
backend = "rsync"

[directories.rsync]
target = "/mnt/mirror"
"""


@pytest.fixture
def config_file(tmp_path, sample_config_toml):
    """Create a temporary config file with sample content."""
    config_path = tmp_path / "config.toml"
    config_path.write_text(sample_config_toml)
    return config_path
