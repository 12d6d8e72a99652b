"""Subtree sync driver: the add and merge operations."""

from __future__ import annotations

import logging
from pathlib import Path

from .constants import (
    DEFAULT_FETCH_TIMEOUT_SECONDS,
    DEFAULT_GIT_BINARY,
    TRAILER_DIR,
    TRAILER_SPLIT,
)
from .errors import ErrorCode, SubtreeError
from .file_manager import FileManager
from .git import GitRepository
from .installer import TreeInstaller
from .models import (
    AddRequest,
    AddResponse,
    MergeRequest,
    MergeResponse,
    SyncPointRequest,
    SyncPointResponse,
)
from .resolver import SyncPointResolver
from .runtime import load_prefix_defaults
from .squash import SquashSynthesizer
from .trailers import append_trailers

logger = logging.getLogger(__name__)

DIRTY_TREE_SUGGESTION = "Please commit or stash them."
UNTRUSTED_RECORD_CODES = frozenset({ErrorCode.SPLIT_REF_UNRESOLVABLE, ErrorCode.AMBIGUOUS_SYNC_POINT})


class SubtreeEngine:
    """Main service implementing subtree operations."""

    def __init__(
        self,
        git_binary: str = DEFAULT_GIT_BINARY,
        fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        file_manager: FileManager | None = None,
    ) -> None:
        self.git_binary = git_binary
        self.fetch_timeout_seconds = fetch_timeout_seconds
        self.file_manager = file_manager or FileManager()
        self._resolvers: dict[Path, SyncPointResolver] = {}

    def add(self, request: AddRequest) -> AddResponse:
        """Import a commit's tree under a new prefix and record the sync point."""
        repository = self._open_repository(request.directory)
        prefix = request.prefix
        defaults = load_prefix_defaults(repository.root, prefix, self.file_manager)
        squash = request.squash if request.squash is not None else bool(defaults.squash)

        if request.rejoin:
            if repository.head() is None or repository.subtree_of("HEAD", prefix) is None:
                raise SubtreeError(
                    ErrorCode.PRECONDITION_VIOLATION,
                    f"prefix '{prefix}' is not tracked; rejoin needs existing content",
                    "Run add without --rejoin to import the content.",
                    {"prefix": prefix},
                )
        elif (repository.root / prefix).exists():
            raise SubtreeError(
                ErrorCode.PRECONDITION_VIOLATION,
                f"prefix '{prefix}' already exists.",
                "Use merge to update an existing subtree, or pick another prefix.",
                {"prefix": prefix},
            )
        self._require_clean(repository, "subtree add")

        commit, _ = self._resolve_source(repository, request.commit, request.repository, request.ref)
        head = repository.head()
        installer = TreeInstaller(repository)

        if not request.rejoin:
            installer.install(commit, prefix)
        installer.checkout(prefix)
        try:
            tree = repository.write_tree()
        except SubtreeError as exc:
            raise SubtreeError(
                ErrorCode.INDEX_WRITE_FAILURE,
                "Couldn't write index into new tree",
                details=exc.details,
            ) from exc

        squash_commit = ""
        incoming = commit
        if squash:
            squash_commit = SquashSynthesizer(repository).create(prefix, commit)
            incoming = squash_commit

        message = request.message or f"Add '{prefix}/' from commit '{commit}'"
        if not squash:
            message = append_trailers(message, [(TRAILER_DIR, prefix), (TRAILER_SPLIT, commit)])

        parents = [head] if head and head != incoming else []
        parents.append(incoming)
        new_commit = self._commit_and_advance(repository, tree, parents, message, head, "subtree add")
        logger.info("Added '%s' from %s as %s", prefix, commit, new_commit)

        return AddResponse(
            status="success",
            message=f"Added dir '{prefix}'",
            prefix=prefix,
            commit_id=new_commit,
            parents=parents,
            subordinate_commit_id=commit,
            squash_commit_id=squash_commit,
            rejoin=request.rejoin,
        )

    def merge(self, request: MergeRequest) -> MergeResponse:
        """Merge a newer subordinate commit into an existing prefix."""
        repository = self._open_repository(request.directory)
        prefix = request.prefix
        defaults = load_prefix_defaults(repository.root, prefix, self.file_manager)
        squash = request.squash if request.squash is not None else bool(defaults.squash)

        if not (repository.root / prefix).exists():
            raise SubtreeError(
                ErrorCode.PRECONDITION_VIOLATION,
                f"prefix '{prefix}' does not exist; use 'add' instead.",
                "Import the subtree with add before merging into it.",
                {"prefix": prefix},
            )
        self._require_clean(repository, "subtree merge")
        head = repository.head()
        if head is None:
            raise SubtreeError(
                ErrorCode.PRECONDITION_VIOLATION,
                "HEAD has no commits to merge into",
                "Commit the existing content first.",
            )

        target, fetched_from = self._resolve_source(
            repository, request.commit, request.repository, request.ref
        )
        remote_hint = request.remote_hint or fetched_from or defaults.remote
        warnings: list[str] = []
        try:
            sync_point = self._resolver(repository).resolve(prefix, remote_hint)
        except SubtreeError as exc:
            # A plain merge can still fall back to the merge base.
            if squash or exc.code not in UNTRUSTED_RECORD_CODES:
                raise
            warning = f"Ignoring the recorded sync point for '{prefix}': {exc.message}"
            logger.warning(warning)
            warnings.append(warning)
            sync_point = None

        squash_commit = ""
        incoming = target
        if squash:
            if sync_point is None:
                raise SubtreeError(
                    ErrorCode.NO_PRIOR_SYNC,
                    f"Can't squash-merge: '{prefix}' was never added.",
                    "Run add for this prefix first.",
                    {"prefix": prefix},
                )
            if sync_point.subordinate == target:
                warning = f"Subtree is already at commit {target}."
                logger.warning(warning)
                return MergeResponse(
                    status="success",
                    message=warning,
                    prefix=prefix,
                    commit_id=head,
                    subordinate_commit_id=target,
                    no_op=True,
                    warnings=[warning],
                )
            squash_commit = SquashSynthesizer(repository).create(
                prefix,
                target,
                old_sub=sync_point.subordinate,
                parent=sync_point.mainline if sync_point.squash else sync_point.subordinate,
            )
            incoming = squash_commit

        if sync_point is not None:
            base = sync_point.subordinate
        else:
            base = repository.merge_base(head, target)
        tree = TreeInstaller(repository).merge(incoming, prefix, base)

        message = request.message or f"Merge commit '{incoming}' as '{prefix}'"
        if not squash:
            message = append_trailers(message, [(TRAILER_DIR, prefix), (TRAILER_SPLIT, target)])
        parents = [head, incoming]
        new_commit = self._commit_and_advance(repository, tree, parents, message, head, "subtree merge")
        logger.info("Merged %s into '%s' as %s", target, prefix, new_commit)

        return MergeResponse(
            status="success",
            message=f"Merged {target} into '{prefix}'",
            prefix=prefix,
            commit_id=new_commit,
            parents=parents,
            subordinate_commit_id=target,
            squash_commit_id=squash_commit,
            merge_base=base or "",
            warnings=warnings,
        )

    def sync_point(self, request: SyncPointRequest) -> SyncPointResponse:
        """Report the last recorded sync point for a prefix."""
        repository = self._open_repository(request.directory)
        found = self._resolver(repository).resolve(request.prefix, request.remote)
        if found is None:
            return SyncPointResponse(
                status="success",
                message=f"No sync point recorded for '{request.prefix}'",
                prefix=request.prefix,
            )
        return SyncPointResponse(
            status="success",
            message=f"'{request.prefix}' was last synced at {found.subordinate}",
            prefix=request.prefix,
            found=True,
            mainline_commit_id=found.mainline,
            subordinate_commit_id=found.subordinate,
            record_commit_id=found.record,
        )

    def _open_repository(self, directory: str) -> GitRepository:
        return GitRepository.discover(
            directory,
            git_binary=self.git_binary,
            fetch_timeout_seconds=self.fetch_timeout_seconds,
        )

    def _resolver(self, repository: GitRepository) -> SyncPointResolver:
        resolver = self._resolvers.get(repository.root)
        if resolver is None:
            resolver = SyncPointResolver(repository)
            self._resolvers[repository.root] = resolver
        return resolver

    def _require_clean(self, repository: GitRepository, action: str) -> None:
        if not repository.is_clean():
            raise SubtreeError(
                ErrorCode.PRECONDITION_VIOLATION,
                f"Cannot {action}: Working tree has modifications.",
                DIRTY_TREE_SUGGESTION,
            )

    def _resolve_source(
        self,
        repository: GitRepository,
        commit: str | None,
        remote: str | None,
        ref: str | None,
    ) -> tuple[str, str | None]:
        """Return (commit id, remote it was fetched from)."""
        if commit is not None:
            oid = repository.resolve_commit(commit)
            if oid is None:
                raise SubtreeError(
                    ErrorCode.RESOLUTION_FAILURE,
                    f"'{commit}' does not refer to a commit",
                    "Fetch the commit first, or pass <repository> <ref>.",
                    {"commit": commit},
                )
            return oid, None

        if remote is None or ref is None:
            raise SubtreeError(
                ErrorCode.INVALID_INPUT,
                "provide either a commit, or a repository and a ref",
                "Pass <commit> or <repository> <ref>.",
            )
        if not repository.check_ref_format(f"refs/heads/{ref}"):
            raise SubtreeError(
                ErrorCode.INVALID_INPUT,
                f"'{ref}' does not look like a ref",
                "Pass a branch or tag name.",
                {"ref": ref},
            )
        return repository.fetch(remote, ref), remote

    def _commit_and_advance(
        self,
        repository: GitRepository,
        tree: str,
        parents: list[str],
        message: str,
        head: str | None,
        reason: str,
    ) -> str:
        new_commit = repository.commit_tree(tree, parents, message)
        repository.update_head(new_commit, head, reason)
        return new_commit
