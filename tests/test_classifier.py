"""Tests for directory tree classification."""

import os
from unittest import mock

import pytest

from dionysius.config.resolver import ConfigTree
from dionysius.config.schema import (
    Backend,
    Config,
    ConfigNode,
    DirectoryEntry,
    GlobalConfig,
)
from dionysius.core.classifier import TaskClassifier
from dionysius.core.models import Verdict
from dionysius.core.repository import BranchState
from dionysius.core.walk import WalkError


def make_tree(root, directories=(), cli_excludes=(), defaults=None):
    global_config = GlobalConfig()
    if defaults is not None:
        global_config.defaults = defaults
    config = Config(global_config=global_config, directories=list(directories))
    return ConfigTree.from_config(config, root, cli_excludes)


def classify(root, tree, command="git", **kwargs):
    return TaskClassifier(root, tree, command=command, **kwargs).classify()


@pytest.fixture
def scenario(tmp_path, make_repo):
    """Root with a clean repo, a divergent repo, a hidden dir and a parent repo."""
    root = tmp_path / "root"
    make_repo(root / "clean-repo")
    divergent = make_repo(root / "divergent-repo")
    divergent.commit("refs/heads/unrelated", "unrelated root", parents=[])
    (root / ".hidden").mkdir()
    make_repo(root / "parent")
    (root / "parent" / "child-excluded").mkdir()
    return root


class TestEndToEnd:
    """The full walk over a mixed tree."""

    def test_scenario_with_central_config(self, scenario):
        """Test each verdict with require_sub and the exclude from the command line."""
        tree = make_tree(
            scenario,
            directories=[DirectoryEntry("parent", ConfigNode(require_sub=True))],
            cli_excludes=["parent/child-excluded"],
        )
        result = classify(scenario, tree)
        nodes = result.by_path()

        assert nodes["clean-repo"].verdict is Verdict.TASK_EMITTED
        assert nodes["clean-repo"].task is not None
        assert nodes["divergent-repo"].verdict is Verdict.WARN_DIVERGENT
        assert nodes["divergent-repo"].task is None
        assert nodes[".hidden"].verdict is Verdict.EXCLUDED
        assert nodes["parent"].verdict is Verdict.WARN_REQUIRE_SUB
        assert nodes["parent"].task is not None
        assert nodes["parent"].task.verdict is Verdict.WARN_REQUIRE_SUB
        assert nodes["parent/child-excluded"].verdict is Verdict.EXCLUDED
        assert nodes["."].verdict is Verdict.CONTAINER

    def test_scenario_with_local_config(self, scenario):
        """Test the same outcome when parent carries its own dionysius.toml."""
        (scenario / "parent" / "dionysius.toml").write_text(
            'require_sub = true\nexclude_list = ["child-excluded"]\n'
        )
        result = classify(scenario, make_tree(scenario))
        nodes = result.by_path()

        assert nodes["parent"].verdict is Verdict.WARN_REQUIRE_SUB
        assert nodes["parent"].task is not None
        assert nodes["parent/child-excluded"].verdict is Verdict.EXCLUDED
        assert "directory" in nodes["parent/child-excluded"].reason

    def test_discovery_order(self, scenario):
        """Test that results come in pre-order with children sorted by name."""
        tree = make_tree(
            scenario,
            directories=[DirectoryEntry("parent", ConfigNode(require_sub=True))],
        )
        result = classify(scenario, tree)
        assert [n.display_path for n in result.nodes] == [
            ".",
            ".hidden",
            "clean-repo",
            "divergent-repo",
            "parent",
            "parent/child-excluded",
        ]
        assert [n.index for n in result.nodes] == sorted(n.index for n in result.nodes)

    def test_tasks_in_discovery_order(self, scenario):
        result = classify(scenario, make_tree(scenario))
        assert [t.display_path for t in result.tasks] == ["clean-repo", "parent"]


class TestWalk:
    """Tests for the walk phase."""

    def test_search_hidden(self, scenario):
        """Test that hidden directories are walked on request."""
        nodes = classify(scenario, make_tree(scenario), search_hidden=True).by_path()
        assert nodes[".hidden"].verdict is Verdict.CONTAINER

    def test_hidden_excluded_without_rules(self, tmp_path):
        """Test that the hidden policy needs no patterns."""
        (tmp_path / ".cache").mkdir()
        nodes = classify(tmp_path, make_tree(tmp_path)).by_path()
        assert nodes[".cache"].verdict is Verdict.EXCLUDED
        assert nodes[".cache"].reason == "hidden"

    def test_repository_not_walked(self, clean_repo, tmp_path):
        """Test that a repository's subdirectories are not classified."""
        (clean_repo.path / "src" / "pkg").mkdir(parents=True)
        nodes = classify(tmp_path, make_tree(tmp_path)).by_path()
        assert "clean-repo/src" not in nodes

    def test_nested_containers_recursed(self, tmp_path, make_repo):
        make_repo(tmp_path / "a" / "b" / "repo")
        nodes = classify(tmp_path, make_tree(tmp_path)).by_path()
        assert nodes["a"].verdict is Verdict.CONTAINER
        assert nodes["a/b"].verdict is Verdict.CONTAINER
        assert nodes["a/b/repo"].verdict is Verdict.TASK_EMITTED

    def test_negation_reincludes_directory(self, tmp_path, make_repo):
        make_repo(tmp_path / "vendor-keep")
        make_repo(tmp_path / "vendor-old")
        tree = make_tree(tmp_path, cli_excludes=["vendor-*", "!vendor-keep"])
        nodes = classify(tmp_path, tree).by_path()
        assert nodes["vendor-keep"].verdict is Verdict.TASK_EMITTED
        assert nodes["vendor-old"].verdict is Verdict.EXCLUDED

    def test_broken_symlink_excluded_with_warning(self, tmp_path):
        """Test that a dangling link is excluded and warned about."""
        os.symlink(tmp_path / "gone", tmp_path / "dangling")
        nodes = classify(tmp_path, make_tree(tmp_path)).by_path()
        assert nodes["dangling"].verdict is Verdict.EXCLUDED
        assert nodes["dangling"].warnings

    def test_directory_symlink_not_followed(self, tmp_path, make_repo):
        make_repo(tmp_path / "real")
        os.symlink(tmp_path / "real", tmp_path / "link")
        nodes = classify(tmp_path, make_tree(tmp_path)).by_path()
        assert nodes["link"].verdict is Verdict.EXCLUDED
        assert nodes["real"].verdict is Verdict.TASK_EMITTED

    @pytest.mark.skipif(os.geteuid() == 0, reason="root can read anything")
    def test_unreadable_directory(self, tmp_path):
        """Test that a directory that cannot be listed is excluded with a warning."""
        locked = tmp_path / "locked"
        locked.mkdir()
        locked.chmod(0)
        try:
            nodes = classify(tmp_path, make_tree(tmp_path)).by_path()
        finally:
            locked.chmod(0o755)
        assert nodes["locked"].verdict is Verdict.EXCLUDED
        assert nodes["locked"].warnings

    def test_invalid_local_config(self, tmp_path, make_repo):
        """Test that a broken dionysius.toml skips only its directory."""
        make_repo(tmp_path / "bad")
        make_repo(tmp_path / "good")
        (tmp_path / "bad" / "dionysius.toml").write_text("require_sub = [")
        nodes = classify(tmp_path, make_tree(tmp_path)).by_path()
        assert nodes["bad"].verdict is Verdict.SKIPPED
        assert nodes["bad"].warnings
        assert nodes["good"].verdict is Verdict.TASK_EMITTED

    def test_missing_root(self, tmp_path):
        with pytest.raises(WalkError):
            TaskClassifier(tmp_path / "missing", make_tree(tmp_path))


class TestInspection:
    """Tests for the inspection phase."""

    def test_uninspectable_repository(self, tmp_path):
        """Test that a corrupt repository is skipped, not fatal."""
        (tmp_path / "broken" / ".git").mkdir(parents=True)
        nodes = classify(tmp_path, make_tree(tmp_path)).by_path()
        assert nodes["broken"].verdict is Verdict.SKIPPED
        assert nodes["broken"].reason == "uninspectable"
        assert nodes["broken"].warnings

    def test_unsaved_changes_interrupt(self, tmp_path, make_repo):
        """Test that on_unsave = interrupt skips dirty repositories."""
        repo = make_repo(tmp_path / "wip")
        (repo.path / "draft.txt").write_text("draft")
        defaults = ConfigNode(backend=Backend.GIT, sections={"git": {"on_unsave": "interrupt"}})
        nodes = classify(tmp_path, make_tree(tmp_path, defaults=defaults)).by_path()
        assert nodes["wip"].verdict is Verdict.SKIPPED
        assert nodes["wip"].reason == "unsaved changes"

    def test_detached_head_skipped(self, tmp_path, make_repo):
        repo = make_repo(tmp_path / "detached")
        repo.repo.set_head(repo.repo.head.target)
        nodes = classify(tmp_path, make_tree(tmp_path)).by_path()
        assert nodes["detached"].verdict is Verdict.SKIPPED
        assert nodes["detached"].reason == "detached HEAD"

    def test_diverged_from_upstream_skipped(self, tmp_path):
        """Test that a single branch off its upstream is skipped, not divergent."""
        (tmp_path / "drifted" / ".git").mkdir(parents=True)
        state = BranchState(
            local=frozenset({"main"}),
            remote={"origin": frozenset({"main"})},
            tracking={"main": "origin/main"},
            current="main",
            ahead=1,
            behind=1,
        )
        result = classify(
            tmp_path, make_tree(tmp_path), inspector=mock.Mock(return_value=state)
        )
        node = result.by_path()["drifted"]
        assert node.verdict is Verdict.SKIPPED
        assert node.reason == "diverged from upstream"
        assert node.warnings == ("main is 1 ahead and 1 behind origin/main",)
        assert node.task is None

    def test_divergent_subtree_dropped(self, tmp_path, make_repo):
        """Test that nothing below a divergent repository is reported."""
        outer = make_repo(tmp_path / "outer")
        outer.commit("refs/heads/unrelated", "unrelated root", parents=[])
        make_repo(tmp_path / "outer" / "inner")
        tree = make_tree(
            tmp_path, directories=[DirectoryEntry("outer", ConfigNode(require_sub=True))]
        )
        nodes = classify(tmp_path, tree).by_path()
        assert nodes["outer"].verdict is Verdict.WARN_DIVERGENT
        assert "outer/inner" not in nodes

    def test_collapse_tracking_passed_to_inspector(self, tmp_path):
        """Test that the inspector runs on the pool with the configured option."""
        (tmp_path / "a" / ".git").mkdir(parents=True)
        (tmp_path / "b" / ".git").mkdir(parents=True)
        inspector = mock.Mock(
            return_value=BranchState(local=frozenset({"main"}), current="main")
        )
        defaults = ConfigNode(
            backend=Backend.GIT, sections={"git": {"collapse_tracking": False}}
        )
        result = classify(
            tmp_path,
            make_tree(tmp_path, defaults=defaults),
            workers=2,
            inspector=inspector,
        )
        assert inspector.call_count == 2
        for call in inspector.call_args_list:
            assert call.kwargs == {"collapse_tracking": False}
        assert [t.display_path for t in result.tasks] == ["a", "b"]


class TestRequireSub:
    """Tests for the require_sub check."""

    def test_satisfied(self, tmp_path, make_repo):
        """Test a parent whose children are all push-able."""
        make_repo(tmp_path / "mono")
        make_repo(tmp_path / "mono" / "one")
        make_repo(tmp_path / "mono" / "two")
        tree = make_tree(
            tmp_path, directories=[DirectoryEntry("mono", ConfigNode(require_sub=True))]
        )
        nodes = classify(tmp_path, tree).by_path()
        assert nodes["mono"].verdict is Verdict.TASK_EMITTED
        assert nodes["mono/one"].verdict is Verdict.TASK_EMITTED
        assert nodes["mono/two"].verdict is Verdict.TASK_EMITTED

    def test_plain_child_inside_unit(self, tmp_path, make_repo):
        """Test that a plain subdirectory of a unit is not push-able."""
        make_repo(tmp_path / "mono")
        (tmp_path / "mono" / "docs" / "deep").mkdir(parents=True)
        tree = make_tree(
            tmp_path, directories=[DirectoryEntry("mono", ConfigNode(require_sub=True))]
        )
        nodes = classify(tmp_path, tree).by_path()
        assert nodes["mono"].verdict is Verdict.WARN_REQUIRE_SUB
        assert "docs" in nodes["mono"].reason
        assert nodes["mono/docs"].verdict is Verdict.SKIPPED
        assert "mono/docs/deep" not in nodes

    def test_container_warns_without_task(self, tmp_path, make_repo):
        """Test a plain directory with require_sub and a failing child."""
        make_repo(tmp_path / "group" / "ok")
        (tmp_path / "group" / "loose").mkdir()
        tree = make_tree(
            tmp_path, directories=[DirectoryEntry("group", ConfigNode(require_sub=True))]
        )
        nodes = classify(tmp_path, tree).by_path()
        assert nodes["group"].verdict is Verdict.WARN_REQUIRE_SUB
        assert nodes["group"].task is None
        assert nodes["group/ok"].verdict is Verdict.TASK_EMITTED

    def test_divergent_child_fails_requirement(self, tmp_path, make_repo):
        make_repo(tmp_path / "mono")
        child = make_repo(tmp_path / "mono" / "child")
        child.commit("refs/heads/unrelated", "unrelated root", parents=[])
        tree = make_tree(
            tmp_path, directories=[DirectoryEntry("mono", ConfigNode(require_sub=True))]
        )
        nodes = classify(tmp_path, tree).by_path()
        assert nodes["mono/child"].verdict is Verdict.WARN_DIVERGENT
        assert nodes["mono"].verdict is Verdict.WARN_REQUIRE_SUB
        assert nodes["mono"].task is not None


class TestBackendSelection:
    """Tests for subcommand selection and non-git backends."""

    @pytest.fixture
    def mixed(self, tmp_path, make_repo):
        make_repo(tmp_path / "code")
        (tmp_path / "docs" / "letters").mkdir(parents=True)
        (tmp_path / "docs" / "cache").mkdir()
        (tmp_path / "photos").mkdir()
        directories = [
            DirectoryEntry(
                "docs",
                ConfigNode(
                    backend=Backend.BORG,
                    exclude_list=["cache/"],
                    sections={"borg": {"target": "/mnt/borg", "extra_exclude_mode": []}},
                ),
            ),
            DirectoryEntry("photos", ConfigNode(backend=Backend.RSYNC)),
        ]
        return tmp_path, make_tree(tmp_path, directories=directories)

    def test_push_git_skips_other_backends(self, mixed):
        root, tree = mixed
        nodes = classify(root, tree, command="git").by_path()
        assert nodes["code"].verdict is Verdict.TASK_EMITTED
        assert nodes["docs"].verdict is Verdict.SKIPPED
        assert "not selected" in nodes["docs"].reason
        assert "docs/letters" not in nodes

    def test_push_borg(self, mixed):
        root, tree = mixed
        nodes = classify(root, tree, command="borg").by_path()
        assert nodes["code"].verdict is Verdict.SKIPPED
        assert nodes["docs"].verdict is Verdict.TASK_EMITTED
        assert nodes["docs"].task.backend is Backend.BORG
        assert nodes["docs"].task.commands[0].program == "borg"

    def test_trigger_uses_each_backend(self, mixed):
        """Test that trigger selects every unit and reports missing targets."""
        root, tree = mixed
        nodes = classify(root, tree, command="trigger").by_path()
        assert nodes["code"].task.backend is Backend.GIT
        assert nodes["docs"].task.backend is Backend.BORG
        assert nodes["photos"].verdict is Verdict.SKIPPED
        assert nodes["photos"].reason == "rsync backend has no target"

    def test_explicit_git_backend_without_repository(self, tmp_path):
        (tmp_path / "notes").mkdir()
        tree = make_tree(
            tmp_path, directories=[DirectoryEntry("notes", ConfigNode(backend=Backend.GIT))]
        )
        nodes = classify(tmp_path, tree).by_path()
        assert nodes["notes"].verdict is Verdict.SKIPPED
        assert nodes["notes"].reason == "not a git repository"
