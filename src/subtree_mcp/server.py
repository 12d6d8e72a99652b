"""MCP server entrypoint and tool definitions for subtree operations."""

from __future__ import annotations

import argparse
import json
import logging
import time
import uuid
from pathlib import Path
from typing import Annotated, Any, Callable

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field, ValidationError

from .audit import AuditLogger
from .engine import SubtreeEngine
from .errors import ErrorCode, SubtreeError
from .models import AddRequest, MergeRequest, SyncPointRequest
from .runtime import (
    TRANSPORTS,
    configure_logging,
    get_runtime_defaults,
    get_runtime_git_defaults,
    get_runtime_operations_defaults,
    get_runtime_security_defaults,
    validate_runtime_operation_values,
    validate_streamable_http_binding,
)

logger = logging.getLogger(__name__)

mcp = FastMCP(
    name="subtree",
    instructions=(
        "Embed another project's history under a prefix of a git repository. "
        "Use subtree_add for the first import, subtree_merge to sync newer commits, "
        "and subtree_sync_point to inspect the last recorded sync."
    ),
)

engine = SubtreeEngine()
audit_logger = AuditLogger()

READ_ONLY_TOOL_ANNOTATIONS = ToolAnnotations(
    readOnlyHint=True,
    idempotentHint=True,
    destructiveHint=False,
    openWorldHint=False,
)

WRITE_TOOL_ANNOTATIONS = ToolAnnotations(
    readOnlyHint=False,
    idempotentHint=False,
    destructiveHint=False,
    openWorldHint=True,
)


def _error_payload_from_exception(exc: Exception) -> dict[str, Any]:
    """Convert internal exceptions into stable MCP error payloads."""
    if isinstance(exc, SubtreeError):
        return exc.to_payload()
    if isinstance(exc, ValidationError):
        return {
            "status": "error",
            "error_code": ErrorCode.INVALID_INPUT.value,
            "message": "Input validation failed",
            "suggestion": "Check field constraints and request schema.",
            "details": {"errors": exc.errors(include_context=False, include_input=False)},
        }
    logger.exception("Unhandled server exception", exc_info=exc)
    return {
        "status": "error",
        "error_code": ErrorCode.INTERNAL_ERROR.value,
        "message": str(exc),
        "suggestion": "Check server logs and retry the operation.",
        "details": {},
    }


def _log_tool_phase(
    *,
    correlation_id: str,
    tool_name: str,
    phase: str,
    status: str,
    elapsed_seconds: float,
    details: dict[str, Any] | None = None,
) -> None:
    payload: dict[str, Any] = {
        "event_type": "mcp_tool_phase",
        "correlation_id": correlation_id,
        "tool_name": tool_name,
        "phase": phase,
        "status": status,
        "elapsed_ms": round(elapsed_seconds * 1000, 3),
    }
    if details:
        payload["details"] = details
    logger.info("mcp_tool_phase %s", json.dumps(payload, ensure_ascii=True, sort_keys=True))


def _run_tool(
    tool_name: str,
    request_payload: dict[str, Any],
    operation: Callable[[], dict[str, Any]],
) -> dict[str, Any]:
    """Execute a tool operation, logging phases and writing an audit event."""
    correlation_id = uuid.uuid4().hex[:12]
    started = time.perf_counter()
    enriched_request = {**request_payload, "correlation_id": correlation_id}
    try:
        response_payload = dict(operation())
        status = "success"
        details = None
    except Exception as exc:  # noqa: BLE001
        response_payload = _error_payload_from_exception(exc)
        status = "error"
        details = {"error_code": response_payload.get("error_code"), "exception": exc.__class__.__name__}

    response_payload["correlation_id"] = correlation_id
    _log_tool_phase(
        correlation_id=correlation_id,
        tool_name=tool_name,
        phase="total",
        status="ok" if status == "success" else "error",
        elapsed_seconds=time.perf_counter() - started,
        details=details,
    )
    audit_logger.log_tool_event(
        tool_name=tool_name,
        status=status,
        request_payload=enriched_request,
        response_payload=response_payload,
    )
    return response_payload


@mcp.tool(annotations=WRITE_TOOL_ANNOTATIONS)
def subtree_add(
    directory: Annotated[str, Field(description="Path inside the host git working tree")],
    prefix: Annotated[str, Field(description="Relative path the subtree is imported to")],
    commit: Annotated[str | None, Field(description="Commit to import (omit when fetching)")] = None,
    repository: Annotated[str | None, Field(description="Repository to fetch from")] = None,
    ref: Annotated[str | None, Field(description="Branch or tag to fetch from repository")] = None,
    squash: Annotated[bool | None, Field(description="Import as a single squash commit")] = None,
    message: Annotated[str | None, Field(description="Commit message override")] = None,
    rejoin: Annotated[bool, Field(description="Record the sync point without reinstalling")] = False,
) -> dict[str, Any]:
    """Import a commit's tree under a new prefix."""
    request_payload = {
        "directory": directory,
        "prefix": prefix,
        "commit": commit,
        "repository": repository,
        "ref": ref,
        "squash": squash,
        "message": message,
        "rejoin": rejoin,
    }

    def _operation() -> dict[str, Any]:
        return engine.add(AddRequest(**request_payload)).model_dump(mode="json")

    return _run_tool("subtree_add", request_payload=request_payload, operation=_operation)


@mcp.tool(annotations=WRITE_TOOL_ANNOTATIONS)
def subtree_merge(
    directory: Annotated[str, Field(description="Path inside the host git working tree")],
    prefix: Annotated[str, Field(description="Existing subtree prefix")],
    commit: Annotated[str | None, Field(description="Commit to merge (omit when fetching)")] = None,
    repository: Annotated[str | None, Field(description="Repository to fetch from")] = None,
    ref: Annotated[str | None, Field(description="Branch or tag to fetch from repository")] = None,
    squash: Annotated[bool | None, Field(description="Merge as a single squash commit")] = None,
    message: Annotated[str | None, Field(description="Commit message override")] = None,
    remote_hint: Annotated[
        str | None, Field(description="Repository holding the last synced commit if missing locally")
    ] = None,
) -> dict[str, Any]:
    """Merge a newer subordinate commit into an existing prefix."""
    request_payload = {
        "directory": directory,
        "prefix": prefix,
        "commit": commit,
        "repository": repository,
        "ref": ref,
        "squash": squash,
        "message": message,
        "remote_hint": remote_hint,
    }

    def _operation() -> dict[str, Any]:
        return engine.merge(MergeRequest(**request_payload)).model_dump(mode="json")

    return _run_tool("subtree_merge", request_payload=request_payload, operation=_operation)


@mcp.tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def subtree_sync_point(
    directory: Annotated[str, Field(description="Path inside the host git working tree")],
    prefix: Annotated[str, Field(description="Subtree prefix")],
    remote: Annotated[str | None, Field(description="Repository used to fetch missing split commits")] = None,
) -> dict[str, Any]:
    """Report the last recorded sync point for a prefix."""
    request_payload = {"directory": directory, "prefix": prefix, "remote": remote}

    def _operation() -> dict[str, Any]:
        return engine.sync_point(SyncPointRequest(**request_payload)).model_dump(mode="json")

    return _run_tool("subtree_sync_point", request_payload=request_payload, operation=_operation)


def main() -> None:
    """Run the subtree MCP server in stdio or streamable HTTP mode."""
    parser = argparse.ArgumentParser(description="subtree MCP server")
    try:
        transport_default, host_default, port_default = get_runtime_defaults()
        allow_public_http_default, audit_log_path_default, audit_redact_default = (
            get_runtime_security_defaults()
        )
        audit_max_field_chars_default = get_runtime_operations_defaults()
        git_defaults = get_runtime_git_defaults()
    except ValueError as exc:
        parser.error(str(exc))
    parser.add_argument(
        "--transport",
        choices=sorted(TRANSPORTS),
        default=transport_default,
        help="Server transport mode (default: stdio).",
    )
    parser.add_argument("--host", default=host_default, help="Host for streamable HTTP transport.")
    parser.add_argument("--port", type=int, default=port_default, help="Port for streamable HTTP transport.")
    parser.add_argument(
        "--allow-public-http",
        action=argparse.BooleanOptionalAction,
        default=allow_public_http_default,
        help="Allow non-loopback streamable-http host binding.",
    )
    parser.add_argument(
        "--audit-log-file",
        default=audit_log_path_default,
        help="Optional JSONL audit log path for tool calls.",
    )
    parser.add_argument(
        "--audit-redact-sensitive",
        action=argparse.BooleanOptionalAction,
        default=audit_redact_default,
        help="Redact sensitive-looking values in audit logs (default: enabled).",
    )
    parser.add_argument(
        "--audit-max-field-chars",
        type=int,
        default=audit_max_field_chars_default,
        help="Max characters for each string field written to audit logs.",
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate runtime settings and exit without starting server transport.",
    )
    args = parser.parse_args()

    try:
        validate_streamable_http_binding(
            transport=args.transport,
            host=args.host,
            allow_public_http=args.allow_public_http,
        )
        validate_runtime_operation_values(args.audit_max_field_chars)
    except ValueError as exc:
        parser.error(str(exc))

    configure_logging(git_defaults.log_level)
    global audit_logger
    global engine
    engine = SubtreeEngine(
        git_binary=git_defaults.git_binary,
        fetch_timeout_seconds=git_defaults.fetch_timeout_seconds,
    )
    audit_path = str(args.audit_log_file).strip()
    audit_logger = AuditLogger(
        log_path=Path(audit_path) if audit_path else None,
        redact_sensitive=bool(args.audit_redact_sensitive),
        max_field_chars=int(args.audit_max_field_chars),
    )

    if args.check_config:
        print("Configuration is valid.")
        return

    if args.transport == "stdio":
        mcp.run()
        return

    mcp.settings.host = args.host
    mcp.settings.port = int(args.port)
    mcp.run(transport="streamable-http")


if __name__ == "__main__":
    main()
