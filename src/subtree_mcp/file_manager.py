"""Low-level file system helpers used by the subtree engine."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .errors import ErrorCode, SubtreeError


class FileManager:
    """Wrapper around YAML file reads."""

    def read_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with path.open("r", encoding="utf-8") as handle:
                loaded = yaml.safe_load(handle)
        except PermissionError as exc:
            raise SubtreeError(
                ErrorCode.PRECONDITION_VIOLATION,
                f"Permission denied while reading {path}",
                "Check file permissions and try again.",
            ) from exc
        except yaml.YAMLError as exc:
            raise SubtreeError(
                ErrorCode.INVALID_INPUT,
                f"Invalid YAML in {path}",
                "Fix the syntax or remove the file.",
                {"path": str(path), "error": str(exc)},
            ) from exc
        if isinstance(loaded, dict):
            return loaded
        return {}
