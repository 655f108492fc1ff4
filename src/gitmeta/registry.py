"""
Submodule visibility checks and repository handles.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from .git_manager import GitManager
from .models import (
    Closed,
    GitRepositoryError,
    Open,
    OpenSubmodule,
    SubmoduleDescriptor,
    SubmoduleNotFoundError,
    Visibility,
)
from .resolver import SubmoduleResolver


logger = logging.getLogger(__name__)


class SubmoduleRegistry:
    """Tracks which submodules of a meta-repository are open on disk."""

    def __init__(self, git_manager: GitManager, resolver: Optional[SubmoduleResolver] = None) -> None:
        self.gm = git_manager
        self.resolver = resolver or SubmoduleResolver(git_manager)

    @property
    def root(self) -> Path:
        return self.gm.working_dir

    def submodule_path(self, name: str) -> Path:
        return self.root / name

    def visibility(self, name: str) -> Visibility:
        """Return `Open` with a handle if a repository exists at the submodule path, else `Closed`."""
        path = self.submodule_path(name)

        # Skip if submodule directory doesn't exist or isn't initialized
        if not path.is_dir() or not (path / ".git").exists():
            return Closed(name)

        gm = GitManager(path, search_parent_directories=False)
        try:
            gm.repo
        except GitRepositoryError:
            logger.debug(f"Submodule {name} at {path} has a .git entry but is not a repository")
            return Closed(name)
        return Open(name, gm)

    def is_visible(self, name: str) -> bool:
        return self.visibility(name).is_open

    def open_handle(self, name: str) -> GitManager:
        """Open the repository of submodule `name`.

        Raises:
            SubmoduleNotFoundError: if the submodule is not open
        """
        state = self.visibility(name)
        if isinstance(state, Closed):
            raise SubmoduleNotFoundError(f"Submodule '{name}' is not open at {self.submodule_path(name)}")
        return state.git_manager

    def open_submodules(self) -> List[OpenSubmodule]:
        """Pair every open submodule of the current state with its handle, sorted by name."""
        opened: List[OpenSubmodule] = []
        for name in sorted(self.resolver.names()):
            state = self.visibility(name)
            if isinstance(state, Open):
                opened.append(OpenSubmodule(name=name, git_manager=state.git_manager))
            else:
                logger.debug(f"Submodule {name} is closed; skipping")
        logger.info(f"Found {len(opened)} open submodule(s) in {self.root}")
        return opened

    def describe_all(self) -> List[SubmoduleDescriptor]:
        """Descriptors of every current submodule with visibility filled in."""
        descriptors = self.resolver.describe_all()
        for descriptor in descriptors:
            descriptor.visibility = self.visibility(descriptor.name)
        return descriptors
