"""Install a foreign commit's tree into the current index under a prefix."""

from __future__ import annotations

import logging

from .errors import ErrorCode, SubtreeError
from .git import GitRepository

logger = logging.getLogger(__name__)


class TreeInstaller:
    """Place commit trees under a prefix, by plain copy or by three-way merge."""

    def __init__(self, repository: GitRepository) -> None:
        self.repository = repository

    def install(self, commit: str, prefix: str) -> str:
        """Copy `commit`'s tree into the index at `prefix`; returns that tree id.

        The prefix must hold nothing in the index yet. Paths outside it are
        left untouched.
        """
        tree = self._require_tree(commit)
        try:
            self.repository.read_tree_prefix(tree, prefix)
        except SubtreeError as exc:
            raise SubtreeError(
                ErrorCode.INDEX_WRITE_FAILURE,
                f"Couldn't read tree into index for commit {commit}",
                "Check that nothing is staged under the prefix and the index is not locked.",
                {"commit": commit, "prefix": prefix, **exc.details},
            ) from exc
        logger.debug("Installed tree %s of %s at '%s'", tree, commit, prefix)
        return tree

    def merge(self, commit: str, prefix: str, base: str | None) -> str:
        """Merge `commit`'s tree into the content already at `prefix` in HEAD.

        `base` is the common ancestor on the subordinate side (None merges
        against the empty tree). On success the index and working tree hold
        the merged result and the new root tree id is returned; on conflict a
        MERGE_CONFLICT error is raised before anything is touched.
        """
        repository = self.repository
        head = repository.head()
        ours = repository.subtree_of("HEAD", prefix) if head else None
        if ours is None:
            raise SubtreeError(
                ErrorCode.PRECONDITION_VIOLATION,
                f"'{prefix}' is not tracked in HEAD",
                "Use add to import the subtree first.",
                {"prefix": prefix},
            )
        theirs = self._require_tree(commit)
        base_tree = repository.tree_of(base) if base else None
        if base and base_tree is None:
            raise SubtreeError(
                ErrorCode.TREE_UNAVAILABLE,
                f"Couldn't get tree for merge base {base}",
                details={"commit": base},
            )

        result = repository.merge_trees(base_tree or repository.empty_tree(), ours, theirs)
        if not result.clean:
            raise SubtreeError(
                ErrorCode.MERGE_CONFLICT,
                f"Merge conflict while merging {commit} into '{prefix}'",
                "Resolve the conflicting changes upstream or under the prefix, then retry.",
                {
                    "prefix": prefix,
                    "commit": commit,
                    "conflicts": [f"{prefix}/{path}" for path in result.conflicts],
                },
            )

        head_tree = repository.tree_of("HEAD")
        root = repository.replace_subtree(head_tree, prefix, result.tree)
        try:
            repository.switch_tree("HEAD", root)
        except SubtreeError as exc:
            raise SubtreeError(
                ErrorCode.INDEX_WRITE_FAILURE,
                "Unable to write new index file",
                "Make sure no other git process holds the index lock.",
                {"prefix": prefix, **exc.details},
            ) from exc
        logger.debug("Merged %s into '%s' (base %s) -> root tree %s", commit, prefix, base, root)
        return root

    def checkout(self, prefix: str) -> None:
        """Materialize `prefix` from the index into the working tree."""
        try:
            self.repository.checkout_paths(prefix)
        except SubtreeError as exc:
            raise SubtreeError(
                ErrorCode.INDEX_WRITE_FAILURE,
                f"Couldn't checkout working tree at {prefix}",
                details={"prefix": prefix, **exc.details},
            ) from exc

    def _require_tree(self, commit: str) -> str:
        tree = self.repository.tree_of(commit)
        if tree is None:
            raise SubtreeError(
                ErrorCode.TREE_UNAVAILABLE,
                f"Couldn't get tree for commit {commit}",
                "Make sure the commit exists locally (fetch it first).",
                {"commit": commit},
            )
        return tree
