"""
Fetching and synchronization of open submodules with the meta-repository.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from git.exc import GitCommandError

from .backup_manager import BackupManager, new_session_id
from .change_classifier import ChangeClassifier
from .git_manager import DEFAULT_REMOTE, GitManager
from .models import (
    BackupEntry,
    FetchOutcome,
    GitRepositoryError,
    LocalChangesError,
    MetaRepoError,
    OpenSubmodule,
    SubmoduleNotFoundError,
    SyncOutcome,
    SyncReport,
    SyncStatus,
    TransportError,
    UnfetchedCommitError,
)
from .registry import SubmoduleRegistry
from .resolver import SubmoduleResolver


logger = logging.getLogger(__name__)


DEFAULT_PARALLEL = 4

Outcome = Union[FetchOutcome, SyncOutcome]


class RepositoryLocks:
    """One re-entrant lock per repository path; mutations of a repository are serialized."""

    def __init__(self) -> None:
        self._locks: Dict[Path, threading.RLock] = {}
        self._guard = threading.Lock()

    def for_path(self, path: Union[str, Path]) -> threading.RLock:
        key = Path(path).resolve()
        with self._guard:
            if key not in self._locks:
                self._locks[key] = threading.RLock()
            return self._locks[key]


class SyncOrchestrator:
    """Entry point tying resolver, registry and classifier to fetch/sync operations."""

    def __init__(
        self,
        root_path: Optional[Path] = None,
        git_manager: Optional[GitManager] = None,
        locks: Optional[RepositoryLocks] = None,
    ) -> None:
        self.gm = git_manager or GitManager(root_path)
        # Fail early when no repository can be found
        self.root_path = self.gm.working_dir
        self.resolver = SubmoduleResolver(self.gm)
        self.registry = SubmoduleRegistry(self.gm, self.resolver)
        self.classifier = ChangeClassifier(self.gm)
        self.locks = locks or RepositoryLocks()

    def _name_of(self, sub: GitManager) -> str:
        try:
            return sub.working_dir.relative_to(self.root_path).as_posix()
        except ValueError:
            return sub.working_dir.name

    def _default_remote(self, sub: GitManager, name: str) -> str:
        remotes = sub.remote_names()
        if DEFAULT_REMOTE in remotes:
            return DEFAULT_REMOTE
        if len(remotes) == 1:
            return remotes[0]
        raise GitRepositoryError(
            f"Submodule '{name}' has no '{DEFAULT_REMOTE}' remote (remotes: {', '.join(remotes) or 'none'})"
        )

    # --- Fetch ---
    def fetch_submodule(
        self, sub: GitManager, name: Optional[str] = None, timeout: Optional[float] = None
    ) -> str:
        """
        Fetch all branches and tags of a submodule's default remote.

        Returns:
            Name of the remote that was fetched

        Raises:
            TransportError: if the remote cannot be reached or the fetch times out
        """
        name = name or self._name_of(sub)
        with self.locks.for_path(sub.working_dir):
            remote = self._default_remote(sub, name)
            try:
                sub.fetch_remote(remote, timeout=timeout)
            except GitRepositoryError as e:
                raise TransportError(name, remote, str(e)) from e
        return remote

    def fetch_submodules(
        self,
        names: Optional[Iterable[str]] = None,
        parallel: int = DEFAULT_PARALLEL,
        timeout: Optional[float] = None,
        fail_fast: bool = False,
    ) -> List[FetchOutcome]:
        """Fetch every open submodule (or the named ones) concurrently."""
        submodules = self._select(names)

        def unit(sm: OpenSubmodule) -> FetchOutcome:
            outcome = FetchOutcome(name=sm.name)
            try:
                outcome.remote = self.fetch_submodule(sm.git_manager, name=sm.name, timeout=timeout)
            except GitCommandError as e:
                outcome.error = GitRepositoryError(f"Submodule '{sm.name}': {e}")
            except MetaRepoError as e:
                outcome.error = e
            if outcome.error is not None:
                logger.warning(f"Failed to fetch submodule {sm.name}: {outcome.error}")
            return outcome

        return self._dispatch(submodules, unit, parallel, fail_fast)

    # --- Sync ---
    def sync_submodules(
        self,
        names: Optional[Iterable[str]] = None,
        parallel: int = DEFAULT_PARALLEL,
        fetch: bool = True,
        force: bool = False,
        fail_fast: bool = False,
        timeout: Optional[float] = None,
    ) -> SyncReport:
        """
        Bring every open submodule back in line with the meta-repository.

        For each submodule the remote URL is rewritten to the recorded one (relative
        URLs resolved against the meta-repository's remote, as git does), the remote
        is fetched, and the recorded commit is checked out (detached). Local commits
        that would become unreachable are kept on a backup branch. Uncommitted changes
        abort that submodule with LocalChangesError unless `force` is set.

        Returns:
            SyncReport with one outcome per open submodule
        """
        submodules = self._select(names)
        # Snapshot of the current meta state, taken before any work is dispatched
        shas = self.resolver.current_shas([sm.name for sm in submodules])
        urls = {
            name: self.gm.resolve_submodule_url(url) for name, url in self.resolver.current_urls().items()
        }
        config_names = self.resolver.current_config_names()
        report = SyncReport(session_id=new_session_id())

        def unit(sm: OpenSubmodule) -> SyncOutcome:
            return self._sync_one(
                sm,
                shas[sm.name],
                urls.get(sm.name),
                config_names.get(sm.name, sm.name),
                fetch,
                force,
                timeout,
                report.session_id,
            )

        report.outcomes = self._dispatch(submodules, unit, parallel, fail_fast)
        logger.info(
            f"Synced {len(report.outcomes)} submodule(s): {len(report.updated)} updated, "
            f"{len(report.failed)} failed"
        )
        return report

    def _sync_one(
        self,
        sm: OpenSubmodule,
        sha: str,
        url: Optional[str],
        config_name: str,
        fetch: bool,
        force: bool,
        timeout: Optional[float],
        session_id: Optional[str],
    ) -> SyncOutcome:
        name, sub = sm.name, sm.git_manager
        outcome = SyncOutcome(name=name, recorded_sha=sha)
        with self.locks.for_path(sub.working_dir):
            try:
                outcome.previous_head = sub.head_commit()

                if url is not None:
                    outcome.url_updated = self._sync_url(name, sub, url, config_name)

                if fetch:
                    outcome.fetched_remote = self.fetch_submodule(sub, name=name, timeout=timeout)

                if not sub.commit_exists(sha):
                    raise UnfetchedCommitError(name, sha)

                if outcome.previous_head == sha:
                    logger.debug(f"Submodule {name} already at {sha[:8]}")
                else:
                    if not force and not sub.is_index_clean():
                        raise LocalChangesError(name, sub.get_dirty_paths())
                    if outcome.previous_head and not sub.is_commit_referenced(outcome.previous_head):
                        outcome.backup_branch = BackupManager(sub).create_backup_branch(
                            outcome.previous_head, name, session_id
                        )
                        logger.warning(
                            f"Submodule {name}: commit {outcome.previous_head[:8]} is on no branch; "
                            f"kept as {outcome.backup_branch}"
                        )
                    sub.checkout_detached(sha, force=force)

                if outcome.url_updated or outcome.previous_head != sha:
                    outcome.status = SyncStatus.UPDATED
            except GitCommandError as e:
                outcome.error = GitRepositoryError(f"Submodule '{name}': {e}")
            except MetaRepoError as e:
                outcome.error = e

        if outcome.error is not None:
            outcome.status = SyncStatus.FAILED
            logger.error(f"Failed to sync submodule {name}: {outcome.error}")
        return outcome

    def _sync_url(self, name: str, sub: GitManager, url: str, config_name: str) -> bool:
        """Point the submodule's remote (and the meta config entry, if any) at a resolved `url`.

        The meta config entry is keyed by the `.gitmodules` section name, which can
        differ from the submodule path.
        """
        updated = False
        remote = self._default_remote(sub, name) if sub.remote_names() else DEFAULT_REMOTE
        if sub.get_remote_url(remote) != url:
            sub.set_remote_url(remote, url)
            updated = True

        key = f"submodule.{config_name}.url"
        with self.locks.for_path(self.root_path):
            configured = self.gm.get_local_config(key)
            if configured is not None and configured != url:
                self.gm.set_local_config(key, url)
                updated = True
        return updated

    # --- Backups ---
    def list_backups(
        self, names: Optional[Iterable[str]] = None, session_id: Optional[str] = None
    ) -> Dict[str, List[BackupEntry]]:
        """Backup branches left by earlier syncs, per open submodule that has any.

        Args:
            names: Restrict to these submodules (all open ones when None)
            session_id: Restrict to backups of one sync session
        """
        backups: Dict[str, List[BackupEntry]] = {}
        for sm in self._select(names):
            entries = BackupManager(sm.git_manager).list_parsed_backups(session_id)
            if entries:
                backups[sm.name] = entries
        logger.debug(f"Found backups in {len(backups)} submodule(s) of {self.root_path}")
        return backups

    # --- Batch helpers ---
    def _select(self, names: Optional[Iterable[str]]) -> List[OpenSubmodule]:
        """Open submodules, restricted to `names` when given."""
        opened = self.registry.open_submodules()
        if names is None:
            return opened
        wanted = list(dict.fromkeys(names))
        by_name = {sm.name: sm for sm in opened}
        current = self.resolver.names()
        for name in wanted:
            if name not in current:
                raise SubmoduleNotFoundError(f"No submodule '{name}' in the current state")
            if name not in by_name:
                raise SubmoduleNotFoundError(f"Submodule '{name}' is not open")
        return [by_name[name] for name in wanted]

    def _dispatch(
        self,
        submodules: List[OpenSubmodule],
        unit: Callable[[OpenSubmodule], Outcome],
        parallel: int,
        fail_fast: bool,
    ) -> List[Outcome]:
        """Run `unit` per submodule on a bounded pool; outcomes come back in input order."""
        if not submodules:
            return []
        results: Dict[str, Outcome] = {}
        workers = max(1, min(parallel, len(submodules)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(unit, sm): sm for sm in submodules}
            for future in as_completed(futures):
                outcome = future.result()
                results[outcome.name] = outcome
                if fail_fast and outcome.error is not None:
                    for pending in futures:
                        pending.cancel()
                    raise outcome.error
        return [results[sm.name] for sm in submodules]
