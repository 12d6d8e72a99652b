"""Runtime configuration helpers."""

from __future__ import annotations

import ipaddress
import logging
import math
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .constants import CONFIG_FILE_NAME, DEFAULT_FETCH_TIMEOUT_SECONDS, DEFAULT_GIT_BINARY
from .errors import ErrorCode, SubtreeError
from .file_manager import FileManager
from .trailers import normalize_prefix

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}
TRANSPORTS = {"stdio", "streamable-http"}
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class RuntimeGitDefaults:
    """Git invocation settings sourced from environment variables."""

    git_binary: str
    fetch_timeout_seconds: float
    log_level: str


@dataclass(frozen=True)
class PrefixDefaults:
    """Per-prefix defaults read from the host repository's config file."""

    squash: bool | None = None
    remote: str | None = None


def get_runtime_git_defaults(env: Mapping[str, str] | None = None) -> RuntimeGitDefaults:
    """Return validated git settings from environment variables."""
    source = os.environ if env is None else env
    git_binary = source.get("SUBTREE_MCP_GIT_BINARY", "").strip() or DEFAULT_GIT_BINARY
    fetch_timeout = _parse_float_env(
        source=source,
        key="SUBTREE_MCP_FETCH_TIMEOUT_SECONDS",
        default=DEFAULT_FETCH_TIMEOUT_SECONDS,
        min_value=0.1,
    )
    log_level = source.get("SUBTREE_MCP_LOG_LEVEL", "WARNING").strip().upper() or "WARNING"
    if log_level not in LOG_LEVELS:
        allowed = ", ".join(sorted(LOG_LEVELS))
        raise ValueError(f"SUBTREE_MCP_LOG_LEVEL must be one of: {allowed}.")
    return RuntimeGitDefaults(
        git_binary=git_binary,
        fetch_timeout_seconds=fetch_timeout,
        log_level=log_level,
    )


def get_runtime_defaults(env: Mapping[str, str] | None = None) -> tuple[str, str, int]:
    """Validate and return server transport defaults from environment variables."""
    source = os.environ if env is None else env

    transport_default = source.get("SUBTREE_MCP_TRANSPORT", "stdio")
    if transport_default not in TRANSPORTS:
        raise ValueError("SUBTREE_MCP_TRANSPORT must be 'stdio' or 'streamable-http'.")

    host_default = source.get("SUBTREE_MCP_HOST", "127.0.0.1")
    port_default = _parse_int_env(source=source, key="SUBTREE_MCP_PORT", default=8000)
    if not (1 <= port_default <= 65535):
        raise ValueError("SUBTREE_MCP_PORT must be between 1 and 65535.")

    allow_public_http_default, _, _ = get_runtime_security_defaults(source)
    validate_streamable_http_binding(
        transport=transport_default,
        host=host_default,
        allow_public_http=allow_public_http_default,
    )
    return transport_default, host_default, port_default


def get_runtime_security_defaults(env: Mapping[str, str] | None = None) -> tuple[bool, str, bool]:
    """Return public-binding and audit settings from environment variables."""
    source = os.environ if env is None else env
    allow_public_http = _parse_bool_env(source=source, key="SUBTREE_MCP_ALLOW_PUBLIC_HTTP", default=False)
    audit_log_path = source.get("SUBTREE_MCP_AUDIT_LOG", "").strip()
    audit_redact = _parse_bool_env(source=source, key="SUBTREE_MCP_AUDIT_REDACT", default=True)
    return allow_public_http, audit_log_path, audit_redact


def get_runtime_operations_defaults(env: Mapping[str, str] | None = None) -> int:
    """Return the audit field-size limit from environment variables."""
    source = os.environ if env is None else env
    audit_max_field_chars = _parse_int_env(
        source=source,
        key="SUBTREE_MCP_AUDIT_MAX_FIELD_CHARS",
        default=4000,
        min_value=0,
    )
    validate_runtime_operation_values(audit_max_field_chars)
    return audit_max_field_chars


def validate_runtime_operation_values(audit_max_field_chars: int) -> None:
    if audit_max_field_chars < 0 or (0 < audit_max_field_chars < 64):
        raise ValueError("audit-max-field-chars must be 0 or >= 64.")


def validate_streamable_http_binding(transport: str, host: str, allow_public_http: bool) -> None:
    """Refuse non-loopback HTTP binding unless explicitly allowed."""
    if transport != "streamable-http":
        return
    if not host.strip():
        raise ValueError("Host must not be empty when using streamable-http transport.")
    if not is_loopback_host(host) and not allow_public_http:
        raise ValueError(
            "Refusing non-loopback streamable-http binding without explicit opt-in. "
            "Set --allow-public-http or SUBTREE_MCP_ALLOW_PUBLIC_HTTP=true."
        )


def is_loopback_host(host: str) -> bool:
    normalized = host.strip().lower().strip("[]")
    if normalized == "localhost":
        return True
    try:
        return ipaddress.ip_address(normalized).is_loopback
    except ValueError:
        return False


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_prefix_defaults(
    root: Path,
    prefix: str,
    file_manager: FileManager | None = None,
) -> PrefixDefaults:
    """Read defaults for `prefix` from `.subtree-config.yaml` at the repository root.

    Expected layout::

        prefixes:
          vendor/lib:
            squash: true
            remote: https://example.com/lib.git
    """
    path = root / CONFIG_FILE_NAME
    payload = (file_manager or FileManager()).read_yaml(path)
    prefixes = payload.get("prefixes") or {}
    if not isinstance(prefixes, dict):
        raise SubtreeError(
            ErrorCode.INVALID_INPUT,
            f"'prefixes' in {path} must be a mapping",
            "Use `prefixes: {<prefix>: {squash: true, remote: <url>}}`.",
        )
    wanted = normalize_prefix(prefix)
    entry = next(
        (value for key, value in prefixes.items() if normalize_prefix(str(key)) == wanted),
        None,
    )
    if entry is None:
        return PrefixDefaults()
    if not isinstance(entry, dict):
        raise SubtreeError(
            ErrorCode.INVALID_INPUT,
            f"Config for prefix '{wanted}' in {path} must be a mapping",
        )

    squash = entry.get("squash")
    if squash is not None and not isinstance(squash, bool):
        raise SubtreeError(
            ErrorCode.INVALID_INPUT,
            f"'squash' for prefix '{wanted}' must be true or false",
        )
    remote = entry.get("remote")
    if remote is not None:
        remote = str(remote).strip() or None
    return PrefixDefaults(squash=squash, remote=remote)


def _parse_bool_env(source: Mapping[str, str], key: str, default: bool) -> bool:
    raw = source.get(key)
    if raw is None or not str(raw).strip():
        return default
    normalized = str(raw).strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise ValueError(f"{key} must be a boolean value (true/false).")


def _parse_int_env(
    source: Mapping[str, str],
    key: str,
    default: int,
    min_value: int | None = None,
) -> int:
    raw = source.get(key)
    if raw is None or not str(raw).strip():
        return default
    try:
        parsed = int(str(raw).strip())
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer.") from exc
    if min_value is not None and parsed < min_value:
        raise ValueError(f"{key} must be >= {min_value}.")
    return parsed


def _parse_float_env(
    source: Mapping[str, str],
    key: str,
    default: float,
    min_value: float | None = None,
) -> float:
    raw = source.get(key)
    if raw is None or not str(raw).strip():
        return default
    try:
        parsed = float(str(raw).strip())
    except ValueError as exc:
        raise ValueError(f"{key} must be a number.") from exc
    if not math.isfinite(parsed):
        raise ValueError(f"{key} must be a finite number.")
    if min_value is not None and parsed < min_value:
        raise ValueError(f"{key} must be >= {min_value}.")
    return parsed
