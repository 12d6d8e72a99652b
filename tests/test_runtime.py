from __future__ import annotations

from pathlib import Path

import pytest

from subtree_mcp.errors import ErrorCode, SubtreeError
from subtree_mcp.runtime import (
    PrefixDefaults,
    get_runtime_defaults,
    get_runtime_git_defaults,
    get_runtime_operations_defaults,
    get_runtime_security_defaults,
    is_loopback_host,
    load_prefix_defaults,
    validate_streamable_http_binding,
)


def test_git_defaults_without_environment() -> None:
    defaults = get_runtime_git_defaults({})
    assert defaults.git_binary == "git"
    assert defaults.fetch_timeout_seconds == 300.0
    assert defaults.log_level == "WARNING"


def test_git_defaults_from_environment() -> None:
    defaults = get_runtime_git_defaults(
        {
            "SUBTREE_MCP_GIT_BINARY": "/usr/local/bin/git",
            "SUBTREE_MCP_FETCH_TIMEOUT_SECONDS": "12.5",
            "SUBTREE_MCP_LOG_LEVEL": "debug",
        }
    )
    assert defaults.git_binary == "/usr/local/bin/git"
    assert defaults.fetch_timeout_seconds == 12.5
    assert defaults.log_level == "DEBUG"


@pytest.mark.parametrize(
    "env",
    [
        {"SUBTREE_MCP_FETCH_TIMEOUT_SECONDS": "later"},
        {"SUBTREE_MCP_FETCH_TIMEOUT_SECONDS": "0"},
        {"SUBTREE_MCP_FETCH_TIMEOUT_SECONDS": "inf"},
        {"SUBTREE_MCP_LOG_LEVEL": "chatty"},
    ],
)
def test_git_defaults_reject_bad_values(env: dict[str, str]) -> None:
    with pytest.raises(ValueError):
        get_runtime_git_defaults(env)


def test_server_defaults() -> None:
    assert get_runtime_defaults({}) == ("stdio", "127.0.0.1", 8000)
    assert get_runtime_security_defaults({"SUBTREE_MCP_AUDIT_LOG": " /tmp/a.jsonl "}) == (
        False,
        "/tmp/a.jsonl",
        True,
    )
    assert get_runtime_operations_defaults({}) == 4000


def test_server_defaults_reject_invalid_values() -> None:
    with pytest.raises(ValueError):
        get_runtime_defaults({"SUBTREE_MCP_TRANSPORT": "sse"})
    with pytest.raises(ValueError):
        get_runtime_defaults({"SUBTREE_MCP_PORT": "70000"})
    with pytest.raises(ValueError):
        get_runtime_defaults({"SUBTREE_MCP_TRANSPORT": "streamable-http", "SUBTREE_MCP_HOST": "0.0.0.0"})
    with pytest.raises(ValueError):
        get_runtime_security_defaults({"SUBTREE_MCP_AUDIT_REDACT": "maybe"})
    with pytest.raises(ValueError):
        get_runtime_operations_defaults({"SUBTREE_MCP_AUDIT_MAX_FIELD_CHARS": "10"})


def test_streamable_http_binding_rules() -> None:
    validate_streamable_http_binding("stdio", "0.0.0.0", allow_public_http=False)
    validate_streamable_http_binding("streamable-http", "localhost", allow_public_http=False)
    validate_streamable_http_binding("streamable-http", "0.0.0.0", allow_public_http=True)
    assert is_loopback_host("[::1]")
    assert not is_loopback_host("example.com")


def test_prefix_defaults_missing_file(tmp_path: Path) -> None:
    assert load_prefix_defaults(tmp_path, "vendor/lib") == PrefixDefaults()


def test_prefix_defaults_match_normalized_prefix(tmp_path: Path) -> None:
    (tmp_path / ".subtree-config.yaml").write_text(
        "prefixes:\n"
        "  vendor/lib/:\n"
        "    squash: true\n"
        "    remote: ' https://example.com/lib.git '\n"
        "  other:\n"
        "    squash: false\n",
        encoding="utf-8",
    )
    assert load_prefix_defaults(tmp_path, "vendor/lib") == PrefixDefaults(
        squash=True,
        remote="https://example.com/lib.git",
    )
    assert load_prefix_defaults(tmp_path, "other") == PrefixDefaults(squash=False)
    assert load_prefix_defaults(tmp_path, "unknown") == PrefixDefaults()


@pytest.mark.parametrize(
    "content",
    [
        "prefixes: [vendor/lib]\n",
        "prefixes:\n  vendor/lib: true\n",
        "prefixes:\n  vendor/lib:\n    squash: sometimes\n",
        "prefixes: {vendor/lib: [\n",
    ],
)
def test_prefix_defaults_reject_bad_config(tmp_path: Path, content: str) -> None:
    (tmp_path / ".subtree-config.yaml").write_text(content, encoding="utf-8")
    with pytest.raises(SubtreeError) as exc_info:
        load_prefix_defaults(tmp_path, "vendor/lib")
    assert exc_info.value.code is ErrorCode.INVALID_INPUT
