"""
Backup branches for submodule commits that a forced sync would orphan.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import List, Optional, Tuple

from .git_manager import GitManager
from .models import BackupEntry, GitRepositoryError

logger = logging.getLogger(__name__)


BACKUP_PREFIX = "gitmeta/backup"


def new_session_id() -> str:
    return datetime.now().strftime("%Y%m%d-%H%M%S")


class BackupManager:
    """Create and list backup branches in a single repository."""

    def __init__(self, git_manager: GitManager) -> None:
        self.gm = git_manager

    def make_backup_name(self, label: str, session_id: Optional[str] = None) -> str:
        ts = session_id or new_session_id()
        # Characters git refuses in ref names
        safe_label = re.sub(r"[^\w./-]+", "-", label).strip("/.")
        return f"{BACKUP_PREFIX}/{ts}/{safe_label}"

    def create_backup_branch(self, commitish: str, label: str, session_id: Optional[str] = None) -> str:
        """Create a backup branch pointing at `commitish`.

        Returns the created backup branch name.
        """
        backup_name = self.make_backup_name(label, session_id)
        try:
            self.gm.create_or_update_branch(backup_name, commitish)
            logger.info(f"Created backup branch {backup_name} at {commitish[:8]} in {self.gm.repo_path}")
            return backup_name
        except GitRepositoryError as e:
            logger.error(f"Failed to create backup of {commitish[:8]} in {self.gm.repo_path}: {e}")
            raise

    def list_backup_branches(self) -> List[str]:
        """List backup branches in the repository."""
        return [b for b in self.gm.list_local_branches() if b.startswith(f"{BACKUP_PREFIX}/")]

    def _parse_backup_branch(self, backup_branch: str) -> Optional[Tuple[str, str]]:
        """Parse a backup branch name into (session, label) or None if invalid."""
        prefix_parts = BACKUP_PREFIX.split("/")
        parts = backup_branch.split("/")
        if len(parts) < len(prefix_parts) + 2 or parts[: len(prefix_parts)] != prefix_parts:
            return None
        session = parts[len(prefix_parts)]
        label = "/".join(parts[len(prefix_parts) + 1 :])
        if not session or not label:
            return None
        return session, label

    def list_parsed_backups(self, session_id: Optional[str] = None) -> List[BackupEntry]:
        """Return structured backup entries, optionally restricted to one session."""
        entries: List[BackupEntry] = []
        for b in self.list_backup_branches():
            parsed = self._parse_backup_branch(b)
            if not parsed:
                continue
            session, label = parsed
            if session_id is not None and session != session_id:
                continue
            entries.append(
                BackupEntry(
                    repo_path=self.gm.working_dir,
                    backup_branch=b,
                    session=session,
                    label=label,
                )
            )
        return entries
