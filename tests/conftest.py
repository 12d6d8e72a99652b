from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

import pytest


def git(repo: Path, *args: str, input_text: str | None = None) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=repo,
        input=input_text,
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        raise RuntimeError(f"git {' '.join(args)} failed: {result.stderr.strip()}")
    return result.stdout.strip()


def init_repo(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q", "-b", "main")
    git(path, "config", "commit.gpgsign", "false")
    return path


def commit_files(repo: Path, files: dict[str, str], message: str) -> str:
    for relative, content in files.items():
        target = repo / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "--allow-empty", "-F", "-", input_text=message)
    return git(repo, "rev-parse", "HEAD")


def commit_message(repo: Path, message: str) -> str:
    git(repo, "commit", "-q", "--allow-empty", "-F", "-", input_text=message)
    return git(repo, "rev-parse", "HEAD")


def fetch_all(host: Path, source: Path) -> None:
    git(host, "fetch", "-q", str(source), "main")


def head(repo: Path) -> str:
    return git(repo, "rev-parse", "HEAD")


def parents_of(repo: Path, rev: str) -> list[str]:
    line = git(repo, "rev-list", "--parents", "-n", "1", rev).split()
    return line[1:]


def message_of(repo: Path, rev: str) -> str:
    return git(repo, "log", "-1", "--format=%B", rev)


@dataclass
class Library:
    path: Path
    v1: str
    v2: str
    v3: str


@pytest.fixture(autouse=True)
def _isolated_git(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    global_config = tmp_path / "gitconfig"
    global_config.write_text("", encoding="utf-8")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(global_config))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Subtree Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "subtree@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Subtree Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "subtree@example.com")
    for key in [name for name in os.environ if name.startswith("SUBTREE_MCP_")]:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture()
def host(tmp_path: Path) -> Path:
    repo = init_repo(tmp_path / "host")
    commit_files(repo, {"README.md": "host project\n", "src/app.txt": "app\n"}, "Initial host commit")
    return repo


@pytest.fixture()
def library(tmp_path: Path) -> Library:
    repo = init_repo(tmp_path / "library")
    git(repo, "config", "uploadpack.allowAnySHA1InWant", "true")
    v1 = commit_files(
        repo,
        {"lib.txt": "one\ntwo\nthree\n", "README.md": "library\n"},
        "Library v1",
    )
    v2 = commit_files(repo, {"lib.txt": "one\ntwo\nthree v2\n"}, "Library v2")
    v3 = commit_files(repo, {"extra.txt": "extra\n"}, "Library v3")
    return Library(path=repo, v1=v1, v2=v2, v3=v3)


@pytest.fixture()
def fetched_library(host: Path, library: Library) -> Library:
    fetch_all(host, library.path)
    return library
