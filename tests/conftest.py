"""
Shared fixtures: small builders for real meta-repositories and their submodules.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import pytest
from git import Repo


# Gitlink targets do not have to exist in any object store
SHA_1 = "1" * 40
SHA_2 = "2" * 40
SHA_3 = "3" * 40


def configure_identity(repo: Repo) -> None:
    with repo.config_writer() as cw:
        cw.set_value("user", "name", "Test Author")
        cw.set_value("user", "email", "test@example.com")
        cw.set_value("commit", "gpgsign", "false")


class RepoBuilder:
    """Builds repository states commit by commit through porcelain git calls."""

    def __init__(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)
        self.path = path
        self.repo = Repo.init(path)
        configure_identity(self.repo)

    def commit(self, message: str = "commit") -> str:
        self.repo.git.commit("--allow-empty", "-m", message)
        return self.repo.head.commit.hexsha

    def write(self, rel_path: str, content: str) -> None:
        target = self.path / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
        self.repo.git.add("--", rel_path)

    def stage_gitlink(self, name: str, sha: str) -> None:
        self.repo.git.update_index("--add", "--cacheinfo", f"160000,{sha},{name}")

    def unstage(self, name: str) -> None:
        self.repo.git.update_index("--force-remove", name)

    def set_gitmodules(self, urls: Dict[str, str]) -> None:
        lines = []
        for name, url in urls.items():
            lines.extend([f'[submodule "{name}"]', f"\tpath = {name}", f"\turl = {url}"])
        self.write(".gitmodules", "\n".join(lines) + "\n")

    def branch(self, name: str, sha: str) -> None:
        self.repo.create_head(name, sha)

    def open_submodule(self, name: str, url: Path) -> Repo:
        """Materialize submodule `name` by cloning `url` into the working tree."""
        sub = Repo.clone_from(str(url), str(self.path / name))
        configure_identity(sub)
        return sub


@pytest.fixture
def make_repo(tmp_path: Path):
    def _make(name: str) -> RepoBuilder:
        return RepoBuilder(tmp_path / name)

    return _make


@pytest.fixture
def meta(make_repo) -> RepoBuilder:
    """A meta-repository with one empty root commit."""
    builder = make_repo("meta")
    builder.commit("root")
    return builder


@pytest.fixture
def child(make_repo) -> RepoBuilder:
    """A child repository with one commit that submodules can point at."""
    builder = make_repo("child")
    builder.write("README.md", "# child\n")
    builder.commit("Initial commit in child")
    return builder


def commit_in(repo: Repo, filename: str, content: str, message: Optional[str] = None) -> str:
    """Append to a file inside an opened submodule and commit it."""
    path = Path(repo.working_dir) / filename
    with open(path, "a") as f:
        f.write(content)
    repo.git.add("--", filename)
    repo.git.commit("-m", message or content.strip())
    return repo.head.commit.hexsha
