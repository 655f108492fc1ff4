"""
Tests for the GitManager primitives used by the resolver and the sync engine.
"""

from pathlib import Path

import pytest
from git.exc import GitCommandError

from gitmeta.git_manager import GitManager
from gitmeta.models import GitRepositoryError

from conftest import SHA_1, SHA_2, commit_in


class TestDiscovery:
    """Test repository discovery."""

    def test_from_subdirectory(self, meta):
        nested = meta.path / "a" / "b"
        nested.mkdir(parents=True)

        gm = GitManager(nested)
        assert gm.working_dir.resolve() == meta.path.resolve()

    def test_without_parent_search(self, meta):
        nested = meta.path / "a"
        nested.mkdir()

        with pytest.raises(GitRepositoryError):
            GitManager(nested, search_parent_directories=False).repo

    def test_outside_any_repository(self, tmp_path):
        lonely = tmp_path / "lonely"
        lonely.mkdir()

        with pytest.raises(GitRepositoryError):
            GitManager(lonely, search_parent_directories=False).repo


class TestCommits:
    """Test commit resolution."""

    def test_resolve_commit(self, meta):
        gm = GitManager(meta.path)
        head = meta.repo.head.commit.hexsha
        assert gm.resolve_commit("HEAD") == head
        assert gm.head_commit() == head

    def test_resolve_unknown(self, meta):
        with pytest.raises(GitRepositoryError):
            GitManager(meta.path).resolve_commit("no-such-ref")

    def test_branch_tip(self, meta):
        sha = meta.repo.head.commit.hexsha
        meta.branch("other", sha)
        gm = GitManager(meta.path)

        assert gm.branch_tip("other") == sha
        with pytest.raises(GitRepositoryError):
            gm.branch_tip("missing")

    def test_unborn_head(self, make_repo):
        gm = GitManager(make_repo("empty").path)
        assert gm.head_commit() is None
        assert gm.head_gitlinks() == {}

    def test_first_parent(self, meta):
        root = meta.repo.head.commit.hexsha
        second = meta.commit("second")
        gm = GitManager(meta.path)

        assert gm.first_parent(second) == root
        assert gm.first_parent(root) is None

    def test_commit_exists(self, meta):
        gm = GitManager(meta.path)
        assert gm.commit_exists(meta.repo.head.commit.hexsha)
        assert not gm.commit_exists(SHA_1)


class TestGitlinks:
    """Test reading gitlink entries from trees and the index."""

    def test_tree_ignores_regular_files(self, meta):
        meta.write("README.md", "hello\n")
        meta.stage_gitlink("libs/x", SHA_1)
        meta.commit("x")

        assert GitManager(meta.path).gitlinks_at("HEAD") == {"libs/x": SHA_1}

    def test_index_entries(self, meta):
        meta.stage_gitlink("x", SHA_1)
        meta.stage_gitlink("y", SHA_2)

        gm = GitManager(meta.path)
        assert gm.index_gitlinks() == {"x": SHA_1, "y": SHA_2}
        assert gm.head_gitlinks() == {}

    def test_no_index_file(self, meta):
        meta.stage_gitlink("x", SHA_1)
        meta.commit("x")
        (meta.path / ".git" / "index").unlink()

        gm = GitManager(meta.path)
        assert gm.index_gitlinks() is None
        assert gm.head_gitlinks() == {"x": SHA_1}


class TestGitmodules:
    """Test reading `.gitmodules` at each level."""

    def test_absent(self, meta):
        gm = GitManager(meta.path)
        assert gm.gitmodules_at("HEAD") is None
        assert gm.gitmodules_in_index() is None
        assert gm.gitmodules_in_worktree() is None

    def test_levels(self, meta):
        meta.set_gitmodules({"a": "https://example.com/a-head.git"})
        meta.commit("gitmodules")
        meta.set_gitmodules({"a": "https://example.com/a-index.git"})
        (meta.path / ".gitmodules").write_text(
            '[submodule "a"]\n\tpath = a\n\turl = https://example.com/a-worktree.git\n'
        )

        gm = GitManager(meta.path)
        assert gm.gitmodules_at("HEAD") == {"a": "https://example.com/a-head.git"}
        assert gm.gitmodules_in_index() == {"a": "https://example.com/a-index.git"}
        assert gm.gitmodules_in_worktree() == {"a": "https://example.com/a-worktree.git"}

    def test_name_differs_from_path(self, meta):
        (meta.path / ".gitmodules").write_text(
            '[submodule "lib.core"]\n\tpath = libs/core\n\turl = ../core.git\n'
        )

        assert GitManager(meta.path).gitmodules_in_worktree() == {"libs/core": "../core.git"}
        assert GitManager(meta.path).gitmodules_in_worktree("name") == {"libs/core": "lib.core"}

    def test_no_submodule_sections(self, meta):
        (meta.path / ".gitmodules").write_text("")

        assert GitManager(meta.path).gitmodules_in_worktree() == {}


class TestWorkingState:
    """Test remotes, cleanliness and checkout helpers on an opened submodule."""

    def _opened(self, meta, child):
        sub = meta.open_submodule("z", child.path)
        return sub, GitManager(Path(sub.working_dir), search_parent_directories=False)

    def test_dirty_paths(self, meta, child):
        sub, gm = self._opened(meta, child)
        assert gm.is_index_clean()

        (Path(sub.working_dir) / "README.md").write_text("edited\n")
        (Path(sub.working_dir) / "untracked.txt").write_text("new\n")

        assert not gm.is_index_clean()
        assert gm.get_dirty_paths() == ["README.md"]

    def test_remote_url(self, meta, child, tmp_path):
        sub, gm = self._opened(meta, child)
        assert gm.get_remote_url("origin") == str(child.path)
        assert gm.get_remote_url("upstream") is None

        gm.set_remote_url("upstream", str(tmp_path / "up"))
        assert gm.get_remote_url("upstream") == str(tmp_path / "up")

    def test_commit_referenced(self, meta, child):
        sub, gm = self._opened(meta, child)
        sub.git.checkout("--detach")
        orphan = commit_in(sub, "local.txt", "work\n")

        assert gm.is_commit_referenced(child.repo.head.commit.hexsha)
        assert not gm.is_commit_referenced(orphan)

    def test_checkout_detached(self, meta, child):
        sub, gm = self._opened(meta, child)
        first = sub.head.commit.hexsha
        commit_in(sub, "local.txt", "work\n")

        gm.checkout_detached(first)

        assert gm.is_detached()
        assert gm.head_commit() == first

    def test_unresolved_merge_is_not_clean(self, meta, child):
        sub, gm = self._opened(meta, child)
        base = sub.head.commit.hexsha
        ours = sub.active_branch.name
        commit_in(sub, "README.md", "ours\n")
        sub.git.checkout("-b", "theirs", base)
        commit_in(sub, "README.md", "theirs\n")
        sub.git.checkout(ours)

        with pytest.raises(GitCommandError):
            sub.git.merge("theirs")

        assert sub.git.ls_files("-u")
        assert not gm.is_index_clean()
        assert gm.get_dirty_paths() == ["README.md"]


class TestSubmoduleUrls:
    """Test resolution of relative `.gitmodules` URLs."""

    def test_absolute_url_unchanged(self, meta):
        gm = GitManager(meta.path)
        assert gm.resolve_submodule_url("https://example.com/lib.git") == "https://example.com/lib.git"
        assert gm.resolve_submodule_url("/srv/git/lib.git") == "/srv/git/lib.git"

    def test_relative_to_working_directory(self, meta, child):
        gm = GitManager(meta.path)
        assert gm.resolve_submodule_url("../child") == (meta.path.parent / "child").as_posix()
        assert gm.resolve_submodule_url("./libs/x") == (meta.path / "libs" / "x").as_posix()

    def test_relative_to_origin(self, meta):
        meta.repo.create_remote("origin", "https://example.com/org/meta.git")
        gm = GitManager(meta.path)

        assert gm.resolve_submodule_url("../lib.git") == "https://example.com/org/lib.git"
        assert gm.resolve_submodule_url("../../other/lib.git") == "https://example.com/other/lib.git"
        assert gm.resolve_submodule_url("./lib") == "https://example.com/org/meta.git/lib"

    def test_relative_to_scp_like_origin(self, meta):
        meta.repo.create_remote("origin", "git@example.com:meta.git")

        assert GitManager(meta.path).resolve_submodule_url("../lib.git") == "git@example.com:lib.git"

    def test_single_non_origin_remote(self, meta):
        meta.repo.create_remote("upstream", "https://example.com/org/meta")

        assert GitManager(meta.path).resolve_submodule_url("../lib") == "https://example.com/org/lib"
