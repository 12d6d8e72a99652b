"""Recover the last sync point for a prefix from commit trailers."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .constants import TRAILER_DIR, TRAILER_MAINLINE, TRAILER_SPLIT
from .errors import ErrorCode, SubtreeError
from .git import CommitInfo, GitRepository
from .trailers import last_trailer, normalize_prefix, parse_trailers

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncPoint:
    """Where the last synchronization of a prefix left off."""

    prefix: str
    mainline: str
    subordinate: str
    record: str
    squash: bool = False


class SyncPointResolver:
    """Walk ancestry from HEAD and return the newest sync record for a prefix.

    Only the newest tip is cached per (prefix, remote); a moved tip never
    hits a stale entry.
    """

    def __init__(self, repository: GitRepository) -> None:
        self.repository = repository
        self._cache: dict[tuple[str, str | None], tuple[str, SyncPoint | None]] = {}

    def resolve(self, prefix: str, remote: str | None = None) -> SyncPoint | None:
        """Return the sync point for `prefix`, or None when it was never synced."""
        wanted = normalize_prefix(prefix)
        tip = self.repository.head()
        if tip is None:
            return None
        key = (wanted, remote)
        cached = self._cache.get(key)
        if cached is not None and cached[0] == tip:
            return cached[1]

        found: SyncPoint | None = None
        for commit in self.repository.iter_commits(tip):
            trailers = parse_trailers(commit.message)
            recorded_dir = last_trailer(trailers, TRAILER_DIR)
            if recorded_dir is None or normalize_prefix(recorded_dir) != wanted:
                continue
            split = last_trailer(trailers, TRAILER_SPLIT)
            if split is None:
                continue
            mainline = self._mainline(commit, trailers)
            subordinate = self._subordinate(commit, split, remote)
            found = SyncPoint(
                prefix=wanted,
                mainline=mainline,
                subordinate=subordinate,
                record=commit.oid,
                squash=self._is_squash(commit, subordinate),
            )
            break

        if found is None:
            logger.info("No sync point recorded for '%s' below %s", wanted, tip)
        else:
            logger.info(
                "Sync point for '%s': mainline %s, subordinate %s (recorded in %s)",
                wanted,
                found.mainline,
                found.subordinate,
                found.record,
            )
        self._cache[key] = (tip, found)
        return found

    def _mainline(self, commit: CommitInfo, trailers: dict[str, list[str]]) -> str:
        if last_trailer(trailers, TRAILER_MAINLINE) is None:
            return commit.oid
        if len(commit.parents) > 2:
            return commit.parents[1]
        raise SubtreeError(
            ErrorCode.AMBIGUOUS_SYNC_POINT,
            f"Commit {commit.oid} carries {TRAILER_MAINLINE} but has {len(commit.parents)} parent(s)",
            "The mainline parent cannot be determined; inspect the commit by hand.",
            {"commit": commit.oid, "parents": list(commit.parents)},
        )

    def _is_squash(self, commit: CommitInfo, subordinate: str) -> bool:
        # Squash commits carry the subordinate root tree itself.
        return self.repository.tree_of(commit.oid) == self.repository.tree_of(subordinate)

    def _subordinate(self, commit: CommitInfo, split: str, remote: str | None) -> str:
        resolved = self.repository.resolve_commit(split)
        if resolved is None and remote:
            logger.info("Split %s from %s is not local; fetching from %s", split, commit.oid, remote)
            try:
                resolved = self.repository.fetch(remote, split)
            except SubtreeError as exc:
                raise _unresolvable(commit, split, remote) from exc
        if resolved is None:
            raise _unresolvable(commit, split, remote)
        return resolved


def _unresolvable(commit: CommitInfo, split: str, remote: str | None) -> SubtreeError:
    return SubtreeError(
        ErrorCode.SPLIT_REF_UNRESOLVABLE,
        f"Could not rev-parse split hash {split} from commit {commit.oid}",
        "Fetch the subordinate history (or pass --remote) and retry.",
        {"commit": commit.oid, "split": split, "remote": remote or ""},
    )
