"""Structured audit logging for subtree tool calls."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"
SENSITIVE_KEY_PATTERN = re.compile(r"(?i)(password|passwd|secret|token|api[_-]?key|authorization)")

# Applied in order to every string value; remote URLs are the usual leak.
_STRING_REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)\b([a-z][a-z0-9+.-]*://)[^/\s:@]+(?::[^/\s@]*)?@"), rf"\1{REDACTED}@"),
    (
        re.compile(r"(?i)\b(password|passwd|secret|token|api[_-]?key|authorization)\s*[:=]\s*([^\s,;]+)"),
        rf"\1={REDACTED}",
    ),
    (re.compile(r"(?i)\bbearer\s+[a-z0-9\-\._~\+\/]+=*"), f"Bearer {REDACTED}"),
    (re.compile(r"(?i)\b(?:ghp|gho|github_pat|glpat)_[A-Za-z0-9_\-]{16,}\b"), REDACTED),
)


@dataclass(slots=True)
class AuditLogger:
    """Append one JSONL event per tool call, with secrets scrubbed."""

    log_path: Path | None = None
    redact_sensitive: bool = True
    max_field_chars: int = 4000

    @property
    def enabled(self) -> bool:
        return self.log_path is not None

    def log_tool_event(
        self,
        tool_name: str,
        status: str,
        request_payload: dict[str, Any],
        response_payload: dict[str, Any],
    ) -> None:
        """Write one tool-call event; a failing write is logged and ignored."""
        if self.log_path is None:
            return

        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": "mcp_tool_call",
            "tool_name": tool_name,
            "status": status,
            "prefix": request_payload.get("prefix", ""),
            "commit_id": response_payload.get("commit_id", ""),
            "request": self._scrub(request_payload),
            "response": self._scrub(response_payload),
        }
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with self.log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(event, ensure_ascii=True, sort_keys=True) + "\n")
        except OSError:
            logger.warning("Unable to write audit event to %s", self.log_path, exc_info=True)

    def _scrub(self, value: Any, key: str = "") -> Any:
        if self.redact_sensitive and key and SENSITIVE_KEY_PATTERN.search(key):
            return REDACTED
        if isinstance(value, dict):
            return {name: self._scrub(item, str(name)) for name, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._scrub(item) for item in value]
        if isinstance(value, str):
            if self.redact_sensitive:
                value = redact_text(value)
            if self.max_field_chars > 0 and len(value) > self.max_field_chars:
                overflow = len(value) - self.max_field_chars
                return f"{value[: self.max_field_chars]}...[truncated {overflow} chars]"
        return value


def redact_text(value: str) -> str:
    """Mask credentials embedded in `value`."""
    for pattern, replacement in _STRING_REDACTIONS:
        value = pattern.sub(replacement, value)
    return value
