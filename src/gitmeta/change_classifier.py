"""
Classification of submodule changes between two commits.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from .git_manager import GitManager
from .models import SubmoduleChanges


logger = logging.getLogger(__name__)


def classify(
    old: Dict[str, str],
    new: Dict[str, str],
    old_urls: Optional[Dict[str, str]] = None,
    new_urls: Optional[Dict[str, str]] = None,
) -> SubmoduleChanges:
    """Bucket gitlink maps {name: sha} by name; URL differences count as changes."""
    old_urls = old_urls or {}
    new_urls = new_urls or {}
    return SubmoduleChanges(
        added=set(new) - set(old),
        removed=set(old) - set(new),
        changed={
            name
            for name in set(old) & set(new)
            if old[name] != new[name] or old_urls.get(name) != new_urls.get(name)
        },
    )


class ChangeClassifier:
    """Diffs gitlink entries of two commits of a meta-repository."""

    def __init__(self, git_manager: GitManager) -> None:
        self.gm = git_manager

    def _snapshot(self, sha: Optional[str]):
        if sha is None:
            return {}, {}
        return self.gm.gitlinks_at(sha), self.gm.gitmodules_at(sha) or {}

    def submodule_changes(self, from_commit: str, to_commit: str = "HEAD") -> SubmoduleChanges:
        """
        Bucket the submodules touched between `from_commit` and `to_commit`.

        Only gitlink entries are compared; ordinary files never appear. A submodule
        is changed when its target sha or its `.gitmodules` URL differs. An unborn
        HEAD is treated as an empty tree.

        Returns:
            SubmoduleChanges with disjoint added/changed/removed name sets
        """
        from_sha = self.gm.resolve_commit(from_commit)
        if to_commit == "HEAD" and self.gm.head_commit() is None:
            to_sha = None
        else:
            to_sha = self.gm.resolve_commit(to_commit)

        if from_sha == to_sha:
            return SubmoduleChanges()

        old, old_urls = self._snapshot(from_sha)
        new, new_urls = self._snapshot(to_sha)
        changes = classify(old, new, old_urls, new_urls)

        logger.debug(
            f"Submodule changes {from_sha[:8]}..{(to_sha or 'HEAD')[:8]}: "
            f"added={sorted(changes.added)} changed={sorted(changes.changed)} removed={sorted(changes.removed)}"
        )
        return changes

    def changes_in_commit(self, commitish: str) -> SubmoduleChanges:
        """Submodule changes introduced by one commit relative to its first parent."""
        sha = self.gm.resolve_commit(commitish)
        old, old_urls = self._snapshot(self.gm.first_parent(sha))
        new, new_urls = self._snapshot(sha)
        return classify(old, new, old_urls, new_urls)
