"""
Submodule name and target-commit resolution.

Every "current" query goes through one layered-override primitive: an ordered
list of `Layer` objects is consulted highest priority first, and the first
layer that defines or explicitly deletes a key decides its value.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Union

from .git_manager import GitManager
from .models import SubmoduleDescriptor, SubmoduleNotFoundError, TreeSource


logger = logging.getLogger(__name__)


Source = Union[str, TreeSource]


@dataclass
class Layer:
    """One source of truth: values it defines plus keys it explicitly removes."""

    name: str
    values: Dict[str, str] = field(default_factory=dict)
    deleted: Set[str] = field(default_factory=set)


def resolve(key: str, layers: List[Layer]) -> Optional[str]:
    """Return the value of `key` from the highest-priority layer that mentions it."""
    for layer in layers:
        if key in layer.values:
            return layer.values[key]
        if key in layer.deleted:
            return None
    return None


def layered_keys(layers: List[Layer]) -> Set[str]:
    """All keys that resolve to a value through `layers`."""
    candidates: Set[str] = set()
    for layer in layers:
        candidates.update(layer.values)
    return {key for key in candidates if resolve(key, layers) is not None}


class SubmoduleResolver:
    """Maps gitlink entries of a meta-repository to submodule names and shas."""

    def __init__(self, git_manager: GitManager) -> None:
        self.gm = git_manager

    # --- Layers ---
    def gitlink_layers(self) -> List[Layer]:
        """Index over HEAD. Without an index file only HEAD is consulted."""
        head = Layer("HEAD", self.gm.head_gitlinks())
        staged = self.gm.index_gitlinks()
        if staged is None:
            return [head]
        # The index is a full snapshot: any HEAD gitlink it lacks was removed
        index = Layer("index", staged, deleted=set(head.values) - set(staged))
        return [index, head]

    def url_layers(self) -> List[Layer]:
        """Working-tree `.gitmodules` over the index's over HEAD's."""
        return self._gitmodules_layers("url")

    def config_name_layers(self) -> List[Layer]:
        """Same layering as `url_layers`, mapping each path to its `.gitmodules` section name."""
        return self._gitmodules_layers("name")

    def _gitmodules_layers(self, field: str) -> List[Layer]:
        sources: List[Layer] = []
        worktree = self.gm.gitmodules_in_worktree(field)
        if worktree is not None:
            sources.append(Layer("worktree", worktree))
        staged = self.gm.gitmodules_in_index(field)
        if staged is not None:
            sources.append(Layer("index", staged))
        head = self.gm.head_commit()
        if head is not None:
            committed = self.gm.gitmodules_at(head, field)
            if committed is not None:
                sources.append(Layer("HEAD", committed))

        # A present `.gitmodules` is a full snapshot: entries it lacks were removed
        below: Set[str] = set()
        for layer in reversed(sources):
            layer.deleted = below - set(layer.values)
            below |= set(layer.values)
        return sources

    # --- Names ---
    def names_at(self, source: Source) -> Set[str]:
        """Return the submodule names visible at a commit-ish or `TreeSource.CURRENT`."""
        if source is TreeSource.CURRENT:
            return self.names()
        return self.names_for_commit(source)

    def names(self) -> Set[str]:
        """Submodule names in the current state (index layered over HEAD)."""
        return layered_keys(self.gitlink_layers())

    def names_for_commit(self, commitish: str) -> Set[str]:
        return set(self.gm.gitlinks_at(commitish))

    def names_for_branch(self, branch_name: str) -> Set[str]:
        return self.names_for_commit(self.gm.branch_tip(branch_name))

    # --- Shas ---
    def shas_for_commit(self, names: Iterable[str], commitish: str) -> Dict[str, str]:
        """Return {name: sha} for `names` as recorded in `commitish`.

        Raises:
            SubmoduleNotFoundError: if any name has no gitlink in that commit
        """
        gitlinks = self.gm.gitlinks_at(commitish)
        result: Dict[str, str] = {}
        for name in names:
            if name not in gitlinks:
                raise SubmoduleNotFoundError(f"No submodule '{name}' in commit {str(commitish)[:8]}")
            result[name] = gitlinks[name]
        return result

    def shas_for_branch(self, branch_name: str, names: Optional[Iterable[str]] = None) -> Dict[str, str]:
        """Return {name: sha} at the tip of `branch_name`; all names when `names` is None."""
        tip = self.gm.branch_tip(branch_name)
        if names is None:
            names = sorted(self.names_for_commit(tip))
        return self.shas_for_commit(names, tip)

    def current_shas(self, names: Iterable[str]) -> Dict[str, str]:
        """Return {name: sha} from the index layered over HEAD.

        Raises:
            SubmoduleNotFoundError: if any name is not a submodule in the current state
        """
        layers = self.gitlink_layers()
        result: Dict[str, str] = {}
        for name in names:
            sha = resolve(name, layers)
            if sha is None:
                raise SubmoduleNotFoundError(f"No submodule '{name}' in the current state")
            result[name] = sha
        return result

    def all_current_shas(self) -> Dict[str, str]:
        layers = self.gitlink_layers()
        return {name: resolve(name, layers) for name in sorted(layered_keys(layers))}

    # --- URLs ---
    def urls_for_commit(self, commitish: str) -> Dict[str, str]:
        return self.gm.gitmodules_at(commitish) or {}

    def current_urls(self) -> Dict[str, str]:
        layers = self.url_layers()
        return {key: resolve(key, layers) for key in layered_keys(layers)}

    def current_url(self, name: str) -> Optional[str]:
        return resolve(name, self.url_layers())

    def current_config_names(self) -> Dict[str, str]:
        """{path: `.gitmodules` section name}; git keys `submodule.<name>.*` config by the latter."""
        layers = self.config_name_layers()
        return {key: resolve(key, layers) for key in layered_keys(layers)}

    # --- Descriptors ---
    def describe(self, name: str) -> SubmoduleDescriptor:
        """Describe one submodule of the current state (visibility is left unset)."""
        sha = self.current_shas([name])[name]
        return SubmoduleDescriptor(name=name, sha=sha, url=self.current_url(name))

    def describe_all(self) -> List[SubmoduleDescriptor]:
        urls = self.current_urls()
        descriptors = [
            SubmoduleDescriptor(name=name, sha=sha, url=urls.get(name))
            for name, sha in self.all_current_shas().items()
        ]
        logger.debug(f"Described {len(descriptors)} submodule(s) in {self.gm.repo_path}")
        return descriptors
