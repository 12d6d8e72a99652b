"""Pydantic models for subtree command inputs and outputs."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


def _validate_prefix(value: str) -> str:
    normalized = value.strip().rstrip("/")
    if not normalized:
        raise ValueError("prefix must not be blank")
    if normalized.startswith("/") or "\\" in normalized:
        raise ValueError("prefix must be a relative path using '/' separators")
    if any(part in ("", ".", "..") for part in PurePosixPath(normalized).parts) or "//" in normalized:
        raise ValueError("prefix must not contain '.', '..' or empty segments")
    return normalized


class _SourceRequest(BaseModel):
    directory: str = Field(default=".", description="Path inside the host git working tree")
    prefix: str = Field(..., min_length=1, max_length=4096)
    commit: str | None = None
    repository: str | None = None
    ref: str | None = None
    squash: bool | None = None
    message: str | None = Field(default=None, max_length=65536)

    @field_validator("prefix")
    @classmethod
    def _prefix_is_relative(cls, value: str) -> str:
        return _validate_prefix(value)

    @field_validator("commit", "repository", "ref", "message")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None

    @model_validator(mode="after")
    def _exactly_one_source(self) -> _SourceRequest:
        has_commit = self.commit is not None
        has_remote = self.repository is not None or self.ref is not None
        if has_commit == has_remote:
            raise ValueError("provide either commit, or both repository and ref")
        if has_remote and (self.repository is None or self.ref is None):
            raise ValueError("repository and ref must be provided together")
        return self


class AddRequest(_SourceRequest):
    rejoin: bool = False


class MergeRequest(_SourceRequest):
    remote_hint: str | None = None

    @field_validator("remote_hint")
    @classmethod
    def _blank_hint_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class SyncPointRequest(BaseModel):
    directory: str = "."
    prefix: str = Field(..., min_length=1, max_length=4096)
    remote: str | None = None

    @field_validator("prefix")
    @classmethod
    def _prefix_is_relative(cls, value: str) -> str:
        return _validate_prefix(value)


class BaseToolResponse(BaseModel):
    status: Literal["success", "error"]
    message: str = ""
    error_code: str = ""
    suggestion: str = ""
    details: dict[str, Any] = Field(default_factory=dict)


class SyncResponse(BaseToolResponse):
    prefix: str = ""
    commit_id: str = ""
    parents: list[str] = Field(default_factory=list)
    subordinate_commit_id: str = ""
    squash_commit_id: str = ""
    no_op: bool = False
    warnings: list[str] = Field(default_factory=list)


class AddResponse(SyncResponse):
    rejoin: bool = False


class MergeResponse(SyncResponse):
    merge_base: str = ""


class SyncPointResponse(BaseToolResponse):
    prefix: str = ""
    found: bool = False
    mainline_commit_id: str = ""
    subordinate_commit_id: str = ""
    record_commit_id: str = ""
