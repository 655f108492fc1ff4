"""
Git repository access and mutation primitives.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union
from git import Repo, InvalidGitRepositoryError, NoSuchPathError
from git.exc import BadName, BadObject, GitCommandError

from .models import GitRepositoryError


logger = logging.getLogger(__name__)


GITLINK_MODE = "160000"
GITMODULES = ".gitmodules"
DEFAULT_REMOTE = "origin"


def _split_z(output: str) -> List[str]:
    """Split NUL-terminated porcelain output into its non-empty records."""
    return [item for item in output.split("\0") if item]


class GitManager:
    """Manages Git operations for a meta-repository or one of its submodules."""

    def __init__(self, repo_path: Optional[Path] = None, search_parent_directories: bool = True) -> None:
        """Initialize Git manager with optional repository path.

        Args:
            repo_path: Directory of the repository (defaults to the current directory)
            search_parent_directories: Walk up from `repo_path` until a repository is
                found. Submodule handles pass False so that a closed submodule never
                resolves to the enclosing meta-repository.
        """
        self.repo_path = Path(repo_path or Path.cwd()).resolve()
        self.search_parent_directories = search_parent_directories
        self._repo: Optional[Repo] = None

    @property
    def repo(self) -> Repo:
        """Get the Git repository instance."""
        if self._repo is None:
            self._repo = self._discover_repository()
        return self._repo

    @property
    def working_dir(self) -> Path:
        return Path(self.repo.working_dir)

    @property
    def git_dir(self) -> Path:
        return Path(self.repo.git_dir)

    def _discover_repository(self) -> Repo:
        """Discover the Git repository from current or specified path."""
        search_path = self.repo_path

        if not self.search_parent_directories:
            try:
                return Repo(search_path)
            except (InvalidGitRepositoryError, NoSuchPathError) as e:
                raise GitRepositoryError(f"No Git repository found at {search_path}") from e

        logger.debug(f"Discovering repository in: {search_path}")
        # Walk up the directory tree to find a Git repository
        while search_path != search_path.parent:
            try:
                repo = Repo(search_path)
                logger.debug(f"Found Git repository at: {search_path}")
                return repo
            except (InvalidGitRepositoryError, NoSuchPathError):
                search_path = search_path.parent

        raise GitRepositoryError(
            f"No Git repository found at {self.repo_path} or any parent directory"
        )

    # --- Commit and ref resolution ---
    def resolve_commit(self, commitish: Union[str, object]) -> str:
        """Return the full commit id for a commit-ish (sha, branch, tag, 'HEAD', Commit)."""
        try:
            return self.repo.commit(str(commitish)).hexsha
        except (BadName, BadObject, ValueError) as e:
            raise GitRepositoryError(f"Cannot resolve '{commitish}' to a commit in {self.repo_path}") from e

    def branch_tip(self, branch_name: str) -> str:
        """Return the commit id at the tip of a local branch."""
        try:
            return self.repo.heads[branch_name].commit.hexsha
        except IndexError as e:
            raise GitRepositoryError(f"Branch '{branch_name}' does not exist in {self.repo_path}") from e

    def head_commit(self) -> Optional[str]:
        """Return the HEAD commit id, or None while HEAD is unborn."""
        if not self.repo.head.is_valid():
            return None
        return self.repo.head.commit.hexsha

    def first_parent(self, commitish: str) -> Optional[str]:
        """Return the first parent of a commit, or None for a root commit."""
        parents = self.repo.commit(self.resolve_commit(commitish)).parents
        return parents[0].hexsha if parents else None

    def is_detached(self) -> bool:
        return self.repo.head.is_detached

    def commit_exists(self, sha: str) -> bool:
        """Return True if `sha` names a commit present in the local object store."""
        try:
            self.repo.git.cat_file("-e", f"{sha}^{{commit}}")
            return True
        except GitCommandError:
            return False

    def _object_exists(self, spec: str) -> bool:
        try:
            self.repo.git.cat_file("-e", spec)
            return True
        except GitCommandError:
            return False

    # --- Gitlink entries ---
    def gitlinks_at(self, commitish: str) -> Dict[str, str]:
        """Return {path: target sha} for every gitlink in the tree of `commitish`."""
        sha = self.resolve_commit(commitish)
        try:
            output = self.repo.git.ls_tree("-r", "-z", sha)
        except GitCommandError as e:
            raise GitRepositoryError(f"Failed to read tree of {sha[:8]}: {e}") from e

        gitlinks: Dict[str, str] = {}
        for record in _split_z(output):
            # Expected format: "160000 commit <sha>\t<path>"
            meta, _, path = record.partition("\t")
            parts = meta.split()
            if len(parts) >= 3 and parts[0] == GITLINK_MODE:
                gitlinks[path] = parts[2]
        logger.debug(f"Read {len(gitlinks)} gitlink(s) at {sha[:8]} in {self.repo_path}")
        return gitlinks

    def head_gitlinks(self) -> Dict[str, str]:
        """Gitlinks of the HEAD commit, empty while HEAD is unborn."""
        head = self.head_commit()
        if head is None:
            return {}
        return self.gitlinks_at(head)

    @property
    def index_path(self) -> Path:
        return self.git_dir / "index"

    def has_index(self) -> bool:
        return self.index_path.exists()

    def index_gitlinks(self) -> Optional[Dict[str, str]]:
        """Return {path: target sha} for gitlinks staged in the index.

        Returns None when the repository has no index file at all. For unmerged
        paths the "ours" stage (2) is reported.
        """
        if not self.has_index():
            return None
        try:
            output = self.repo.git.ls_files("-s", "-z")
        except GitCommandError as e:
            raise GitRepositoryError(f"Failed to read index of {self.repo_path}: {e}") from e

        gitlinks: Dict[str, str] = {}
        for record in _split_z(output):
            # Expected format: "160000 <sha> <stage>\t<path>"
            meta, _, path = record.partition("\t")
            parts = meta.split()
            if len(parts) < 3 or parts[0] != GITLINK_MODE:
                continue
            if parts[2] == "0" or (parts[2] == "2" and path not in gitlinks):
                gitlinks[path] = parts[1]
        return gitlinks

    # --- .gitmodules ---
    # Entries are keyed by path. `field` selects the value: "url", or "name"
    # for the section name that git uses in `submodule.<name>.*` config keys.
    def gitmodules_at(self, commitish: str, field: str = "url") -> Optional[Dict[str, str]]:
        """Return {path: value} from `.gitmodules` in a commit, or None if it has none."""
        spec = f"{self.resolve_commit(commitish)}:{GITMODULES}"
        if not self._object_exists(spec):
            return None
        return self._read_gitmodules("--blob", spec, field=field)

    def gitmodules_in_index(self, field: str = "url") -> Optional[Dict[str, str]]:
        spec = f":{GITMODULES}"
        if not self.has_index() or not self._object_exists(spec):
            return None
        return self._read_gitmodules("--blob", spec, field=field)

    def gitmodules_in_worktree(self, field: str = "url") -> Optional[Dict[str, str]]:
        path = self.working_dir / GITMODULES
        if not path.is_file():
            return None
        return self._read_gitmodules("--file", str(path), field=field)

    def _read_gitmodules(self, *source: str, field: str = "url") -> Dict[str, str]:
        try:
            output = self.repo.git.config(
                *source, "-z", "--get-regexp", r"^submodule\..*\.(path|url)$"
            )
        except GitCommandError as e:
            if e.status == 1:
                # No matching keys
                return {}
            raise GitRepositoryError(f"Failed to read {GITMODULES} ({' '.join(source)}): {e}") from e

        paths: Dict[str, str] = {}
        urls: Dict[str, str] = {}
        for record in _split_z(output):
            key, _, value = record.partition("\n")
            # Subsection names may contain dots: submodule.<name>.<var>
            section_and_name, _, var = key.rpartition(".")
            name = section_and_name.split(".", 1)[1] if "." in section_and_name else ""
            if var == "path":
                paths[name] = value
            elif var == "url":
                urls[name] = value

        if field == "name":
            return {paths.get(name, name): name for name in set(paths) | set(urls)}
        return {paths.get(name, name): url for name, url in urls.items()}

    # --- Working tree / index cleanliness ---
    def is_index_clean(self) -> bool:
        """Return True if there are no staged or unstaged changes (untracked ignored)."""
        # No staged or unstaged changes; ignore untracked files
        if self.repo.is_dirty(index=True, working_tree=True, untracked_files=False):
            return False
        # No unresolved merges
        return not self.repo.git.ls_files("-u").strip()

    def get_dirty_paths(self) -> List[str]:
        """Return list of paths that are staged or unstaged (untracked ignored)."""
        output = self.repo.git.status("--porcelain")
        dirty: List[str] = []
        for line in output.splitlines():
            if not line.strip():
                continue
            # First two columns are status codes; path follows
            # Ignore untracked (??)
            if line.startswith("??"):
                continue
            path = line[3:].strip()
            if path:
                dirty.append(path)
        return dirty

    # --- Remotes ---
    def remote_names(self) -> List[str]:
        return [r.name for r in self.repo.remotes]

    def get_remote_url(self, remote_name: str = DEFAULT_REMOTE) -> Optional[str]:
        """Return the configured URL of a remote, or None if the remote is not configured."""
        if remote_name not in self.remote_names():
            return None
        try:
            return self.repo.git.config("--get", f"remote.{remote_name}.url")
        except GitCommandError:
            return None

    def set_remote_url(self, remote_name: str, url: str) -> None:
        """Point a remote at `url`, creating the remote if it does not exist."""
        try:
            if remote_name in self.remote_names():
                self.repo.git.remote("set-url", remote_name, url)
            else:
                self.repo.create_remote(remote_name, url)
            logger.info(f"Set remote {remote_name} -> {url} in {self.repo_path}")
        except GitCommandError as e:
            logger.error(f"Failed to set URL of remote {remote_name}: {e}")
            raise GitRepositoryError(f"Failed to set URL of remote {remote_name}: {e}") from e

    def fetch_remote(self, remote_name: str = DEFAULT_REMOTE, timeout: Optional[float] = None) -> None:
        """Fetch all branches and tags from a remote."""
        try:
            self.repo.remotes[remote_name].fetch(tags=True, kill_after_timeout=timeout)
            logger.info(f"Fetched updates from {remote_name} in {self.repo.working_dir}")
        except (GitCommandError, IndexError) as e:
            logger.warning(f"Failed to fetch from {remote_name} in {self.repo_path}: {e}")
            raise GitRepositoryError(f"Failed to fetch from {remote_name}: {e}") from e

    def resolve_submodule_url(self, url: str) -> str:
        """Resolve a `.gitmodules` URL the way `git submodule sync` does.

        URLs starting with "./" or "../" are relative to this repository's default
        remote URL, or to its working directory when it has no remote. Any other
        URL is returned unchanged.

        Args:
            url: URL as recorded in `.gitmodules`

        Returns:
            URL usable as a remote of the submodule
        """
        if not (url.startswith("./") or url.startswith("../")):
            return url

        remotes = self.remote_names()
        if DEFAULT_REMOTE in remotes:
            base = self.get_remote_url(DEFAULT_REMOTE)
        elif len(remotes) == 1:
            base = self.get_remote_url(remotes[0])
        else:
            base = None
        if base is None:
            base = self.working_dir.as_posix()
        elif base.startswith("./") or base.startswith("../"):
            # A relative remote URL is itself relative to the working directory
            base = (self.working_dir / base).as_posix()

        base = base.rstrip("/")
        sep = "/"
        rest = url
        while True:
            if rest.startswith("./"):
                rest = rest[2:]
            elif rest.startswith("../"):
                rest = rest[3:]
                # scp-like remotes ("host:path") also split on the colon
                cut = max(base.rfind("/"), base.rfind(":"))
                if cut < 0:
                    raise GitRepositoryError(f"Cannot resolve relative URL '{url}' against '{base}'")
                sep = base[cut]
                base = base[:cut]
            else:
                break

        resolved = f"{base}{sep}{rest}" if rest else base
        logger.debug(f"Resolved submodule URL {url} -> {resolved} in {self.repo_path}")
        return resolved

    # --- Local configuration ---
    def get_local_config(self, key: str) -> Optional[str]:
        try:
            return self.repo.git.config("--local", "--get", key)
        except GitCommandError:
            return None

    def set_local_config(self, key: str, value: str) -> None:
        try:
            self.repo.git.config("--local", key, value)
            logger.info(f"Set {key} = {value} in {self.repo_path}")
        except GitCommandError as e:
            raise GitRepositoryError(f"Failed to set {key}: {e}") from e

    # --- Branches and checkout ---
    def list_local_branches(self) -> List[str]:
        """List local branch names (full names, including slashes)."""
        return [h.name for h in self.repo.heads]

    def create_or_update_branch(self, branch_name: str, target: str) -> None:
        """Create or force-update a local branch to point at target (commitish)."""
        try:
            self.repo.git.branch("-f", branch_name, target)
            logger.info(f"Created/updated branch {branch_name} -> {target}")
        except GitCommandError as e:
            logger.error(f"Error creating/updating branch {branch_name}: {e}")
            raise GitRepositoryError(f"Failed to create/update branch {branch_name}: {e}") from e

    def is_commit_referenced(self, sha: str) -> bool:
        """Return True if any local branch, remote-tracking branch or tag contains `sha`."""
        try:
            output = self.repo.git.for_each_ref(
                "--contains", sha, "--format=%(refname)", "refs/heads", "refs/remotes", "refs/tags"
            )
        except GitCommandError as e:
            raise GitRepositoryError(f"Failed to list refs containing {sha[:8]}: {e}") from e
        return bool(output.strip())

    def checkout_detached(self, commitish: str, force: bool = False) -> None:
        """Check out a commit with a detached HEAD."""
        args = ["--force"] if force else []
        try:
            self.repo.git.checkout(*args, "--detach", commitish)
            logger.info(f"Checked out {commitish[:8]} (detached) in {self.repo.working_dir}")
        except GitCommandError as e:
            logger.error(f"Failed to checkout {commitish} in {self.repo.working_dir}: {e}")
            raise GitRepositoryError(f"Failed to checkout {commitish}: {e}") from e
