"""
gitmeta - submodule state resolution and synchronization for meta-repositories.

This package resolves which submodules a meta-repository records at any commit or
in its current (index over HEAD) state, classifies submodule changes between
commits, and brings open submodules back in line with the recorded commits.
"""

__version__ = "0.1.0"

from .sync_orchestrator import SyncOrchestrator, RepositoryLocks
from .models import (
    Closed,
    Open,
    SubmoduleChanges,
    SubmoduleDescriptor,
    SyncReport,
    TreeSource,
)
from .git_manager import GitManager
from .resolver import SubmoduleResolver
from .registry import SubmoduleRegistry
from .change_classifier import ChangeClassifier
from .backup_manager import BackupManager

__all__ = [
    "SyncOrchestrator",
    "RepositoryLocks",
    "Closed",
    "Open",
    "SubmoduleChanges",
    "SubmoduleDescriptor",
    "SyncReport",
    "TreeSource",
    "GitManager",
    "SubmoduleResolver",
    "SubmoduleRegistry",
    "ChangeClassifier",
    "BackupManager",
]
