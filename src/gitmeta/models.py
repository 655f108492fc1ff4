"""
Data models for the meta-repository submodule engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Set, Union, TYPE_CHECKING

if TYPE_CHECKING:
    # For type checkers only; avoids runtime circular import
    from .git_manager import GitManager


class TreeSource(Enum):
    """Non-commit sources a resolver query can be made against."""

    CURRENT = "current"


@dataclass(frozen=True)
class Closed:
    """A submodule that is recorded but not materialized on disk."""

    name: str

    @property
    def is_open(self) -> bool:
        return False


@dataclass(frozen=True)
class Open:
    """A submodule with a local repository at its expected path."""

    name: str
    git_manager: "GitManager"

    @property
    def is_open(self) -> bool:
        return True


Visibility = Union[Closed, Open]


@dataclass
class SubmoduleDescriptor:
    """Derived view of one submodule in the current meta-repository state."""

    name: str
    sha: str
    url: Optional[str] = None
    visibility: Optional[Visibility] = None

    @property
    def is_open(self) -> bool:
        return self.visibility is not None and self.visibility.is_open


@dataclass
class OpenSubmodule:
    """A visible submodule paired with its opened repository handle."""

    name: str
    git_manager: "GitManager"


@dataclass
class SubmoduleChanges:
    """Submodule names touched between two commits, bucketed by kind of change."""

    added: Set[str] = field(default_factory=set)
    changed: Set[str] = field(default_factory=set)
    removed: Set[str] = field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.changed or self.removed)

    def all_names(self) -> Set[str]:
        return self.added | self.changed | self.removed


class SyncStatus(Enum):
    """Per-submodule result of a batch operation."""

    UNCHANGED = "unchanged"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass
class FetchOutcome:
    """Result of fetching one submodule."""

    name: str
    remote: Optional[str] = None
    error: Optional[MetaRepoError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SyncOutcome:
    """Result of synchronizing one submodule with the meta-repository."""

    name: str
    status: SyncStatus = SyncStatus.UNCHANGED
    recorded_sha: Optional[str] = None
    previous_head: Optional[str] = None
    url_updated: bool = False
    fetched_remote: Optional[str] = None
    backup_branch: Optional[str] = None
    error: Optional[MetaRepoError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SyncReport:
    """Outcomes of a `sync_submodules` run, one per open submodule."""

    outcomes: List[SyncOutcome] = field(default_factory=list)
    session_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def failed(self) -> List[SyncOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def updated(self) -> List[SyncOutcome]:
        return [o for o in self.outcomes if o.status == SyncStatus.UPDATED]

    def get(self, name: str) -> Optional[SyncOutcome]:
        for outcome in self.outcomes:
            if outcome.name == name:
                return outcome
        return None


@dataclass
class BackupEntry:
    """Structured representation of a backup branch in a repository."""

    repo_path: Path
    backup_branch: str
    session: str
    label: str


class MetaRepoError(Exception):
    """Base exception for meta-repository operations."""

    pass


class GitRepositoryError(MetaRepoError):
    """Exception raised for Git repository related errors."""

    pass


class SubmoduleNotFoundError(MetaRepoError):
    """Requested submodule does not exist at the queried source, or is not open."""

    pass


class UnfetchedCommitError(MetaRepoError):
    """A recorded gitlink target is not present in the submodule's object store."""

    def __init__(self, name: str, sha: str) -> None:
        super().__init__(
            f"Commit {sha[:8]} recorded for submodule '{name}' is not available locally; fetch it first"
        )
        self.name = name
        self.sha = sha


class TransportError(MetaRepoError):
    """Fetching from a submodule remote failed. Retriable."""

    def __init__(self, name: str, remote: str, detail: str = "") -> None:
        message = f"Failed to fetch remote '{remote}' of submodule '{name}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.name = name
        self.remote = remote


class LocalChangesError(MetaRepoError):
    """Uncommitted changes in a submodule would be overwritten."""

    def __init__(self, name: str, paths: List[str]) -> None:
        shown = ", ".join(paths[:5])
        if len(paths) > 5:
            shown += f", ... ({len(paths)} total)"
        super().__init__(f"Submodule '{name}' has uncommitted changes: {shown}")
        self.name = name
        self.paths = list(paths)
