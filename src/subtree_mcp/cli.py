"""Command line interface for subtree operations."""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any

from pydantic import ValidationError

from .commands import COMMANDS
from .engine import SubtreeEngine
from .errors import ErrorCode, SubtreeError
from .runtime import configure_logging, get_runtime_git_defaults


def _print_payload(payload: dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, indent=2))
        return

    status = payload.get("status", "unknown").upper()
    message = payload.get("message", "")
    print(f"[{status}] {message}")

    if payload.get("status") == "error":
        error_code = payload.get("error_code", "")
        suggestion = payload.get("suggestion", "")
        if error_code:
            print(f"error_code: {error_code}")
        if suggestion:
            print(f"suggestion: {suggestion}")
        for path in payload.get("details", {}).get("conflicts", []):
            print(f"conflict: {path}")
        return

    for warning in payload.get("warnings", []):
        print(f"warning: {warning}")

    for key in (
        "prefix",
        "commit_id",
        "squash_commit_id",
        "subordinate_commit_id",
        "merge_base",
        "mainline_commit_id",
        "record_commit_id",
    ):
        if key in payload and payload[key] not in ("", None):
            print(f"{key}: {payload[key]}")

    if payload.get("parents"):
        print(f"parents: {' '.join(payload['parents'])}")


def _error_payload(exc: Exception) -> dict[str, Any]:
    if isinstance(exc, SubtreeError):
        return exc.to_payload()
    if isinstance(exc, ValidationError):
        errors: Any
        try:
            errors = exc.errors(include_context=False, include_input=False)
        except TypeError:
            errors = exc.errors()
        return {
            "status": "error",
            "error_code": ErrorCode.INVALID_INPUT.value,
            "message": "Input validation failed",
            "suggestion": "Check command arguments and constraints.",
            "details": {"errors": errors},
        }
    return {
        "status": "error",
        "error_code": ErrorCode.INTERNAL_ERROR.value,
        "message": str(exc),
        "suggestion": "Retry with --json for diagnostics and inspect logs.",
        "details": {},
    }


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="subtree-cli",
        description="Embed another project's history under a prefix of this repository",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    for command in COMMANDS.values():
        command.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    as_json = bool(getattr(args, "json", False))

    try:
        defaults = get_runtime_git_defaults()
    except ValueError as exc:
        error = SubtreeError(ErrorCode.INVALID_INPUT, str(exc), "Check SUBTREE_MCP_* environment variables.")
        _print_payload(error.to_payload(), as_json=as_json)
        return 1
    configure_logging(defaults.log_level)
    engine = SubtreeEngine(
        git_binary=defaults.git_binary,
        fetch_timeout_seconds=defaults.fetch_timeout_seconds,
    )

    try:
        response = COMMANDS[args.command].execute(engine, args)
        _print_payload(response, as_json=as_json)
        return 0
    except Exception as exc:  # noqa: BLE001
        _print_payload(_error_payload(exc), as_json=as_json)
        return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
