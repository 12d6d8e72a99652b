from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

pytest.importorskip("mcp")

from conftest import Library, head
from subtree_mcp import server
from subtree_mcp.audit import AuditLogger


@pytest.fixture()
def audit_log(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    log_path = tmp_path / "audit.jsonl"
    monkeypatch.setattr(server, "audit_logger", AuditLogger(log_path=log_path))
    return log_path


def test_server_tool_flow(host: Path, fetched_library: Library, audit_log: Path) -> None:
    add_response = server.subtree_add(
        directory=str(host),
        prefix="vendor/lib",
        commit=fetched_library.v1,
        squash=True,
    )
    assert add_response["status"] == "success"
    assert add_response["correlation_id"]

    merge_response = server.subtree_merge(
        directory=str(host),
        prefix="vendor/lib",
        commit=fetched_library.v2,
        squash=True,
    )
    assert merge_response["status"] == "success"
    assert merge_response["commit_id"] == head(host)

    sync_response = server.subtree_sync_point(directory=str(host), prefix="vendor/lib")
    assert sync_response["found"] is True
    assert sync_response["subordinate_commit_id"] == fetched_library.v2

    events = [json.loads(line) for line in audit_log.read_text(encoding="utf-8").splitlines()]
    assert [event["tool_name"] for event in events] == [
        "subtree_add",
        "subtree_merge",
        "subtree_sync_point",
    ]
    assert events[0]["request"]["correlation_id"] == add_response["correlation_id"]


def test_server_tool_error_payload(host: Path, audit_log: Path) -> None:
    response = server.subtree_merge(
        directory=str(host),
        prefix="vendor/lib",
        commit="HEAD",
        squash=True,
    )
    assert response["status"] == "error"
    assert response["error_code"] == "PRECONDITION_VIOLATION"
    assert response["correlation_id"]

    event = json.loads(audit_log.read_text(encoding="utf-8"))
    assert event["status"] == "error"


def test_server_tool_validation_error(host: Path) -> None:
    response = server.subtree_add(directory=str(host), prefix="vendor/lib")
    assert response["status"] == "error"
    assert response["error_code"] == "INVALID_INPUT"


def test_server_tool_annotations() -> None:
    assert server.READ_ONLY_TOOL_ANNOTATIONS.readOnlyHint is True
    assert server.WRITE_TOOL_ANNOTATIONS.readOnlyHint is False


@pytest.fixture()
def fake_run(monkeypatch: pytest.MonkeyPatch) -> list:
    calls: list[tuple[tuple[object, ...], dict[str, object]]] = []

    def _fake_run(*args: object, **kwargs: object) -> None:
        calls.append((args, kwargs))

    monkeypatch.setattr(server.mcp, "run", _fake_run)
    monkeypatch.setattr(server, "engine", server.engine)
    monkeypatch.setattr(server, "audit_logger", server.audit_logger)
    return calls


def test_server_main_check_config_exits_without_running_transport(
    fake_run: list, monkeypatch: pytest.MonkeyPatch, capsys
) -> None:
    monkeypatch.setattr(sys, "argv", ["subtree-mcp", "--check-config"])

    server.main()

    assert "Configuration is valid." in capsys.readouterr().out
    assert fake_run == []


def test_server_main_runs_stdio_with_audit_log(
    fake_run: list, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    log_path = tmp_path / "server-audit.jsonl"
    monkeypatch.setattr(sys, "argv", ["subtree-mcp", "--audit-log-file", str(log_path)])

    server.main()

    assert fake_run == [((), {})]
    assert server.audit_logger.log_path == log_path


def test_server_main_refuses_public_binding(fake_run: list, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        sys,
        "argv",
        ["subtree-mcp", "--transport", "streamable-http", "--host", "0.0.0.0"],
    )

    with pytest.raises(SystemExit):
        server.main()
    assert fake_run == []
