"""Squash commit synthesis: one commit standing in for a range of subordinate history."""

from __future__ import annotations

import logging

from .constants import TRAILER_DIR, TRAILER_SPLIT
from .errors import ErrorCode, SubtreeError
from .git import GitRepository
from .trailers import append_trailers

logger = logging.getLogger(__name__)


class SquashSynthesizer:
    """Render squash messages and create the commits carrying them."""

    def __init__(self, repository: GitRepository) -> None:
        self.repository = repository

    def synthesize(self, old_sub: str | None, new_sub: str, prefix: str) -> str:
        """Build the squash message for `old_sub..new_sub` under `prefix`.

        The range is listed twice: once as emitted by the walk, once reversed
        with a ``REVERT:`` tag so the squash can be undone by hand.
        """
        new_short = self._short(new_sub)
        if old_sub is None:
            header = f"Squashed '{prefix}/' content from commit {new_short}\n"
        else:
            lines = [f"Squashed '{prefix}/' changes from {self._short(old_sub)}..{new_short}", ""]
            forward = self._walk(new_sub, old_sub, reverse=False)
            backward = self._walk(new_sub, old_sub, reverse=True)
            lines.extend(f"{commit.short_id} {commit.subject}" for commit in forward)
            lines.extend(f"REVERT: {commit.short_id} {commit.subject}" for commit in backward)
            header = "\n".join(lines) + "\n"
        return append_trailers(header, [(TRAILER_DIR, prefix), (TRAILER_SPLIT, new_sub)])

    def create(
        self,
        prefix: str,
        new_sub: str,
        old_sub: str | None = None,
        parent: str | None = None,
    ) -> str:
        """Create a squash commit whose tree is `new_sub`'s tree.

        `parent` is the previous squash commit for the prefix, or the last
        synced subordinate commit when the prefix was last synced unsquashed.
        """
        tree = self.repository.tree_of(new_sub)
        if tree is None:
            raise SubtreeError(
                ErrorCode.TREE_UNAVAILABLE,
                f"Couldn't get tree for commit {new_sub}",
                "Make sure the subordinate commit is present locally.",
                {"commit": new_sub},
            )
        message = self.synthesize(old_sub, new_sub, prefix)
        squash = self.repository.commit_tree(tree, [parent] if parent else [], message)
        logger.info("Created squash commit %s for '%s' at %s", squash, prefix, new_sub)
        return squash

    def _walk(self, new_sub: str, old_sub: str, reverse: bool) -> list:
        try:
            return list(self.repository.iter_commits(new_sub, f"^{old_sub}", reverse=reverse))
        except SubtreeError as exc:
            if exc.code is not ErrorCode.TRAVERSAL_FAILURE:
                raise
            raise SubtreeError(
                ErrorCode.TRAVERSAL_FAILURE,
                f"Couldn't walk {old_sub}..{new_sub} for the squash message",
                "Fetch the missing history or squash from a reachable commit.",
                {"old": old_sub, "new": new_sub, **exc.details},
            ) from exc

    def _short(self, oid: str) -> str:
        return self.repository.output("rev-parse", "--short", oid)
