"""Subtree command variants shared by the CLI parser and dispatcher."""

from __future__ import annotations

import argparse
from abc import ABC, abstractmethod
from typing import Any, ClassVar

from .engine import SubtreeEngine
from .errors import ErrorCode, SubtreeError
from .models import AddRequest, MergeRequest, SyncPointRequest


class SubtreeCommand(ABC):
    """One `subtree-cli` subcommand."""

    name: ClassVar[str]
    help: ClassVar[str]
    usage: ClassVar[str]

    def register(self, subparsers: Any) -> argparse.ArgumentParser:
        parser = subparsers.add_parser(self.name, help=self.help, usage=self.usage)
        parser.add_argument("-d", "--directory", default=".", help="Host repository directory")
        parser.add_argument("--json", action="store_true", help="Output machine-readable JSON")
        self.configure(parser)
        return parser

    def configure(self, parser: argparse.ArgumentParser) -> None:
        """Add command-specific arguments."""

    @abstractmethod
    def execute(self, engine: SubtreeEngine, args: argparse.Namespace) -> dict[str, Any]:
        """Run the command and return a response payload."""


def _add_prefix_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-P", "--prefix", required=True, help="Path of the subtree in the host tree")


def _add_sync_arguments(parser: argparse.ArgumentParser) -> None:
    _add_prefix_argument(parser)
    parser.add_argument(
        "--squash",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Merge subtree changes as a single commit",
    )
    parser.add_argument(
        "-m",
        "--message",
        default=None,
        help="Use the given message as the commit message for the merge commit",
    )
    parser.add_argument("source", nargs="+", help="<commit> or <repository> <ref>")


def _split_source(command: SubtreeCommand, source: list[str]) -> dict[str, str | None]:
    if len(source) == 1:
        return {"commit": source[0], "repository": None, "ref": None}
    if len(source) == 2:
        return {"commit": None, "repository": source[0], "ref": source[1]}
    raise SubtreeError(
        ErrorCode.INVALID_INPUT,
        f"{command.name} takes <commit> or <repository> <ref>",
        f"usage: {command.usage}",
        {"arguments": source},
    )


class AddCommand(SubtreeCommand):
    name = "add"
    help = "Import a commit under a new prefix"
    usage = "subtree-cli add --prefix=<prefix> (<commit> | <repository> <ref>)"

    def configure(self, parser: argparse.ArgumentParser) -> None:
        _add_sync_arguments(parser)
        parser.add_argument(
            "--rejoin",
            action="store_true",
            help="Record the sync point without reinstalling the prefix content",
        )

    def execute(self, engine: SubtreeEngine, args: argparse.Namespace) -> dict[str, Any]:
        request = AddRequest(
            directory=args.directory,
            prefix=args.prefix,
            squash=args.squash,
            message=args.message,
            rejoin=args.rejoin,
            **_split_source(self, args.source),
        )
        return engine.add(request).model_dump(mode="json")


class MergeCommand(SubtreeCommand):
    name = "merge"
    help = "Merge a newer commit into an existing prefix"
    usage = "subtree-cli merge --prefix=<prefix> (<commit> | <repository> <ref>)"

    def configure(self, parser: argparse.ArgumentParser) -> None:
        _add_sync_arguments(parser)
        parser.add_argument(
            "--remote",
            default=None,
            help="Repository to fetch the last synced commit from when it is missing locally",
        )

    def execute(self, engine: SubtreeEngine, args: argparse.Namespace) -> dict[str, Any]:
        request = MergeRequest(
            directory=args.directory,
            prefix=args.prefix,
            squash=args.squash,
            message=args.message,
            remote_hint=args.remote,
            **_split_source(self, args.source),
        )
        return engine.merge(request).model_dump(mode="json")


class SyncPointCommand(SubtreeCommand):
    name = "sync-point"
    help = "Show the last recorded sync point for a prefix"
    usage = "subtree-cli sync-point --prefix=<prefix> [--remote <repository>]"

    def configure(self, parser: argparse.ArgumentParser) -> None:
        _add_prefix_argument(parser)
        parser.add_argument("--remote", default=None, help="Repository used to fetch missing split commits")

    def execute(self, engine: SubtreeEngine, args: argparse.Namespace) -> dict[str, Any]:
        request = SyncPointRequest(directory=args.directory, prefix=args.prefix, remote=args.remote)
        return engine.sync_point(request).model_dump(mode="json")


class PlaceholderCommand(SubtreeCommand):
    """Registered but not yet implemented."""

    def configure(self, parser: argparse.ArgumentParser) -> None:
        _add_prefix_argument(parser)
        parser.add_argument("arguments", nargs="*", help=argparse.SUPPRESS)

    def execute(self, engine: SubtreeEngine, args: argparse.Namespace) -> dict[str, Any]:
        raise SubtreeError(
            ErrorCode.NOT_IMPLEMENTED,
            f"subtree {self.name} is not implemented",
            "Use add or merge.",
            {"command": self.name},
        )


class SplitCommand(PlaceholderCommand):
    name = "split"
    help = "Extract the history of a prefix (not implemented)"
    usage = "subtree-cli split --prefix=<prefix> [<commit>]"


class PullCommand(PlaceholderCommand):
    name = "pull"
    help = "Fetch and merge a remote ref into a prefix (not implemented)"
    usage = "subtree-cli pull --prefix=<prefix> <repository> <ref>"


class PushCommand(PlaceholderCommand):
    name = "push"
    help = "Split a prefix and push it to a remote (not implemented)"
    usage = "subtree-cli push --prefix=<prefix> <repository> <refspec>"


COMMANDS: dict[str, SubtreeCommand] = {
    command.name: command
    for command in (
        AddCommand(),
        MergeCommand(),
        SyncPointCommand(),
        SplitCommand(),
        PullCommand(),
        PushCommand(),
    )
}
