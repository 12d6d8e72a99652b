"""Thin wrapper around the git CLI used as object store, walker and transport."""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from .constants import (
    DEFAULT_FETCH_TIMEOUT_SECONDS,
    DEFAULT_GIT_BINARY,
    FETCH_HEAD,
    NULL_OID,
)
from .errors import ErrorCode, SubtreeError

logger = logging.getLogger(__name__)

# %H, %h, %P and %B separated by NUL; -z terminates each record with NUL too.
_LOG_FORMAT = "--format=%H%x00%h%x00%P%x00%B"
_LOG_FIELDS = 4
_READ_CHUNK = 65536


@dataclass(frozen=True)
class CommitInfo:
    """One commit as emitted by a graph walk."""

    oid: str
    short_id: str
    parents: tuple[str, ...]
    message: str

    @property
    def subject(self) -> str:
        return self.message.split("\n", 1)[0].strip()


@dataclass(frozen=True)
class MergeTreeResult:
    tree: str
    conflicts: tuple[str, ...] = ()

    @property
    def clean(self) -> bool:
        return not self.conflicts


class GitRepository:
    """Git operations scoped to one working tree."""

    def __init__(
        self,
        root: Path,
        git_binary: str = DEFAULT_GIT_BINARY,
        fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
    ) -> None:
        self.root = root
        self.git_binary = git_binary
        self.fetch_timeout_seconds = fetch_timeout_seconds

    @classmethod
    def discover(
        cls,
        directory: str | Path,
        git_binary: str = DEFAULT_GIT_BINARY,
        fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
    ) -> GitRepository:
        """Locate the working tree containing `directory`."""
        path = Path(directory).expanduser()
        if not path.is_dir():
            raise SubtreeError(
                ErrorCode.INVALID_INPUT,
                f"Directory does not exist: {path}",
                "Pass the path of a git working tree.",
                {"directory": str(path)},
            )
        candidate = cls(path, git_binary=git_binary, fetch_timeout_seconds=fetch_timeout_seconds)
        result = candidate.run("rev-parse", "--show-toplevel", check=False)
        if result.returncode != 0 or not result.stdout.strip():
            raise SubtreeError(
                ErrorCode.PRECONDITION_VIOLATION,
                f"Not inside a git working tree: {path}",
                "Run the command from a non-bare git repository.",
                {"directory": str(path), "stderr": result.stderr.strip()},
            )
        return cls(
            Path(result.stdout.strip()),
            git_binary=git_binary,
            fetch_timeout_seconds=fetch_timeout_seconds,
        )

    def run(
        self,
        *args: str,
        check: bool = True,
        env: dict[str, str] | None = None,
        input_text: str | None = None,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        argv = [self.git_binary, *args]
        logger.debug("git %s", " ".join(args))
        try:
            result = subprocess.run(
                argv,
                cwd=self.root,
                env=self._environment(env),
                input=input_text,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
            )
        except FileNotFoundError as exc:
            raise SubtreeError(
                ErrorCode.GIT_COMMAND_FAILED,
                f"git executable not found: {self.git_binary}",
                "Install git or set SUBTREE_MCP_GIT_BINARY.",
            ) from exc
        if check and result.returncode != 0:
            raise SubtreeError(
                ErrorCode.GIT_COMMAND_FAILED,
                f"git {args[0]} failed: {result.stderr.strip() or 'exit status ' + str(result.returncode)}",
                "Inspect the repository state and retry.",
                {
                    "argv": list(args),
                    "returncode": result.returncode,
                    "stderr": result.stderr.strip(),
                },
            )
        return result

    def output(self, *args: str, env: dict[str, str] | None = None, input_text: str | None = None) -> str:
        return self.run(*args, env=env, input_text=input_text).stdout.strip()

    # -- object store --

    def resolve_commit(self, rev: str) -> str | None:
        """Return the full id of the commit `rev` names, or None."""
        result = self.run("rev-parse", "--verify", "--quiet", "--end-of-options", f"{rev}^{{commit}}", check=False)
        oid = result.stdout.strip()
        return oid if result.returncode == 0 and oid else None

    def head(self) -> str | None:
        """Current tip, or None on an unborn branch."""
        return self.resolve_commit("HEAD")

    def tree_of(self, rev: str) -> str | None:
        result = self.run("rev-parse", "--verify", "--quiet", f"{rev}^{{tree}}", check=False)
        oid = result.stdout.strip()
        return oid if result.returncode == 0 and oid else None

    def subtree_of(self, rev: str, prefix: str) -> str | None:
        """Tree stored at `prefix` inside `rev`, or None when absent."""
        result = self.run("rev-parse", "--verify", "--quiet", f"{rev}:{prefix}", check=False)
        oid = result.stdout.strip()
        if result.returncode != 0 or not oid:
            return None
        if self.output("cat-file", "-t", oid) != "tree":
            return None
        return oid

    def empty_tree(self) -> str:
        return self.output("mktree", input_text="")

    def commit_tree(self, tree: str, parents: Sequence[str], message: str) -> str:
        args = ["commit-tree", tree]
        for parent in parents:
            args.extend(["-p", parent])
        args.extend(["-F", "-"])
        return self.output(*args, input_text=message)

    def merge_base(self, first: str, second: str) -> str | None:
        result = self.run("merge-base", first, second, check=False)
        oid = result.stdout.strip()
        return oid if result.returncode == 0 and oid else None

    # -- graph walk --

    def iter_commits(
        self,
        *revs: str,
        reverse: bool = False,
    ) -> Iterator[CommitInfo]:
        """Lazily stream commits reachable from `revs` in topological order.

        Revisions prefixed with ``^`` exclude their ancestry, so
        ``iter_commits(new, "^" + old)`` walks the commits in ``old..new``.
        The walk stops early (and the git process is terminated) when the
        caller abandons the iterator.
        """
        args = [self.git_binary, "log", "--topo-order", "-z", "--no-show-signature", _LOG_FORMAT]
        if reverse:
            args.append("--reverse")
        args.extend([*revs, "--"])
        logger.debug("git %s", " ".join(args[1:]))
        try:
            process = subprocess.Popen(
                args,
                cwd=self.root,
                env=self._environment(None),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as exc:
            raise SubtreeError(
                ErrorCode.TRAVERSAL_FAILURE,
                "Unable to start revision walk",
                "Check that git is installed and the repository is readable.",
                {"revisions": list(revs)},
            ) from exc

        finished = False
        try:
            assert process.stdout is not None
            buffer = ""
            fields: list[str] = []
            while True:
                chunk = process.stdout.read(_READ_CHUNK)
                if not chunk:
                    break
                buffer += chunk
                *complete, buffer = buffer.split("\x00")
                for token in complete:
                    fields.append(token)
                    if len(fields) == _LOG_FIELDS:
                        yield _commit_from_fields(fields)
                        fields = []
            if buffer:
                fields.append(buffer)
            if len(fields) == _LOG_FIELDS:
                yield _commit_from_fields(fields)
            finished = True
        finally:
            if not finished:
                process.kill()
            stderr = process.stderr.read() if process.stderr else ""
            process.wait()
            for stream in (process.stdout, process.stderr):
                if stream is not None:
                    stream.close()
        if process.returncode != 0:
            raise SubtreeError(
                ErrorCode.TRAVERSAL_FAILURE,
                f"Revision walk failed: {stderr.strip()}",
                "Make sure every revision in the range exists locally.",
                {"revisions": list(revs), "returncode": process.returncode},
            )

    # -- index and working tree --

    def is_clean(self) -> bool:
        """Return whether index and working tree match HEAD (untracked files ignored)."""
        self.run("update-index", "-q", "--refresh", check=False)
        if self.run("diff-files", "--quiet", "--ignore-submodules", check=False).returncode != 0:
            return False
        if self.head() is None:
            return not self.output("ls-files", "--cached")
        staged = self.run(
            "diff-index", "--cached", "--quiet", "--ignore-submodules", "HEAD", "--", check=False
        )
        return staged.returncode == 0

    def read_tree_prefix(self, tree: str, prefix: str) -> None:
        self.run("read-tree", f"--prefix={prefix}/", tree)

    def checkout_paths(self, prefix: str) -> None:
        self.run("checkout", "--", prefix)

    def write_tree(self) -> str:
        return self.output("write-tree")

    def replace_subtree(self, root_tree: str | None, prefix: str, subtree: str) -> str:
        """Build a root tree equal to `root_tree` with `prefix` replaced by `subtree`."""
        with tempfile.TemporaryDirectory(prefix="subtree-index-") as scratch:
            env = {"GIT_INDEX_FILE": str(Path(scratch) / "index")}
            if root_tree:
                self.run("read-tree", root_tree, env=env)
            else:
                self.run("read-tree", "--empty", env=env)
            self.run("rm", "-r", "-f", "--cached", "-q", "--ignore-unmatch", "--", prefix, env=env)
            self.run("read-tree", f"--prefix={prefix}/", subtree, env=env)
            return self.output("write-tree", env=env)

    def switch_tree(self, current: str, target: str) -> None:
        """Move index and working tree from `current` to `target` (two-tree read-tree)."""
        self.run("read-tree", "-m", "-u", current, target)

    # -- merge executor --

    def merge_trees(self, base_tree: str, ours_tree: str, theirs_tree: str) -> MergeTreeResult:
        """Three-way merge of trees through `git merge-tree --write-tree`.

        The three trees are wrapped in throwaway commits (ours and theirs both
        parented on base) so the merge base git computes is exactly `base_tree`.
        """
        base = self.commit_tree(base_tree, [], "subtree merge base")
        ours = self.commit_tree(ours_tree, [base], "subtree merge ours")
        theirs = self.commit_tree(theirs_tree, [base], "subtree merge theirs")
        result = self.run(
            "merge-tree", "--write-tree", "--name-only", "--no-messages", ours, theirs, check=False
        )
        lines = [line for line in result.stdout.splitlines() if line.strip()]
        if result.returncode not in (0, 1) or not lines:
            raise SubtreeError(
                ErrorCode.GIT_COMMAND_FAILED,
                f"git merge-tree failed: {result.stderr.strip()}",
                "git 2.38 or newer is required for subtree merges.",
                {"returncode": result.returncode},
            )
        tree, *conflicts = lines
        return MergeTreeResult(tree=tree, conflicts=tuple(dict.fromkeys(conflicts)))

    # -- refs and transport --

    def update_head(self, new: str, old: str | None, reason: str) -> None:
        """Compare-and-set HEAD (through its branch) from `old` to `new`."""
        self.run("update-ref", "-m", reason, "HEAD", new, old or NULL_OID)

    def check_ref_format(self, ref: str) -> bool:
        return self.run("check-ref-format", ref, check=False).returncode == 0

    def fetch(self, remote: str, ref: str) -> str:
        """Fetch `ref` from `remote` and return the fetched commit id."""
        logger.info("Fetching %s from %s", ref, remote)
        try:
            result = self.run(
                "fetch", "--no-tags", remote, ref, check=False, timeout=self.fetch_timeout_seconds
            )
        except subprocess.TimeoutExpired as exc:
            raise SubtreeError(
                ErrorCode.RESOLUTION_FAILURE,
                f"Timed out fetching {ref} from {remote}",
                "Retry, or raise SUBTREE_MCP_FETCH_TIMEOUT_SECONDS.",
                {"remote": remote, "ref": ref, "timeout_seconds": self.fetch_timeout_seconds},
            ) from exc
        if result.returncode != 0:
            raise SubtreeError(
                ErrorCode.RESOLUTION_FAILURE,
                f"Couldn't fetch ref {ref} from repository {remote}",
                "Check the repository URL and that the ref exists there.",
                {"remote": remote, "ref": ref, "stderr": result.stderr.strip()},
            )
        oid = self.resolve_commit(FETCH_HEAD)
        if oid is None:
            raise SubtreeError(
                ErrorCode.RESOLUTION_FAILURE,
                f"Couldn't read FETCH_HEAD after fetching {remote}",
                details={"remote": remote, "ref": ref},
            )
        return oid

    def _environment(self, extra: dict[str, str] | None) -> dict[str, str]:
        env = dict(os.environ)
        env.setdefault("GIT_TERMINAL_PROMPT", "0")
        if extra:
            env.update(extra)
        return env


def _commit_from_fields(fields: list[str]) -> CommitInfo:
    oid, short_id, parents, message = fields
    return CommitInfo(
        oid=oid.strip(),
        short_id=short_id.strip(),
        parents=tuple(parents.split()),
        message=message,
    )
