"""Domain-specific error types for subtree operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Supported error codes exposed by subtree commands and tools."""

    PRECONDITION_VIOLATION = "PRECONDITION_VIOLATION"
    RESOLUTION_FAILURE = "RESOLUTION_FAILURE"
    TRAVERSAL_FAILURE = "TRAVERSAL_FAILURE"
    TREE_UNAVAILABLE = "TREE_UNAVAILABLE"
    INDEX_WRITE_FAILURE = "INDEX_WRITE_FAILURE"
    MERGE_CONFLICT = "MERGE_CONFLICT"
    AMBIGUOUS_SYNC_POINT = "AMBIGUOUS_SYNC_POINT"
    SPLIT_REF_UNRESOLVABLE = "SPLIT_REF_UNRESOLVABLE"
    NO_PRIOR_SYNC = "NO_PRIOR_SYNC"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"
    INVALID_INPUT = "INVALID_INPUT"
    GIT_COMMAND_FAILED = "GIT_COMMAND_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass
class SubtreeError(Exception):
    """Structured exception carrying a stable error contract."""

    code: ErrorCode
    message: str
    suggestion: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": "error",
            "error_code": self.code.value,
            "message": self.message,
            "suggestion": self.suggestion or "",
            "details": self.details,
        }
