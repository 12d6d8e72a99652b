"""Commit-message trailer parsing and rendering."""

from __future__ import annotations

import re
from collections.abc import Iterable

TRAILER_LINE_PATTERN = re.compile(r"^([A-Za-z0-9][A-Za-z0-9-]*)\s*:\s?(.*)$")


def normalize_prefix(value: str) -> str:
    """Canonical form used when comparing prefixes (`vendor/lib/` == `vendor/lib`)."""
    return value.strip().rstrip("/")


def parse_trailers(message: str) -> dict[str, list[str]]:
    """Return the trailer block at the end of `message` as key -> values.

    The block is the last paragraph of the message, and only counts when every
    line in it is a `key: value` line or an indented continuation. Keys are
    lower-cased; repeated keys keep every value in order.
    """
    paragraphs = re.split(r"\n[ \t]*\n", message.strip("\n"))
    # The subject paragraph never holds trailers.
    if len(paragraphs) < 2:
        return {}
    block = paragraphs[-1]
    if not _looks_like_block(block):
        return {}

    trailers: dict[str, list[str]] = {}
    last_key: str | None = None
    for line in block.splitlines():
        if line[:1] in (" ", "\t") and last_key is not None:
            values = trailers[last_key]
            values[-1] = f"{values[-1]} {line.strip()}".strip()
            continue
        match = TRAILER_LINE_PATTERN.match(line)
        if match is None:
            continue
        last_key = match.group(1).lower()
        trailers.setdefault(last_key, []).append(match.group(2).strip())
    return trailers


def last_trailer(trailers: dict[str, list[str]], key: str) -> str | None:
    values = trailers.get(key)
    return values[-1] if values else None


def render_trailers(pairs: Iterable[tuple[str, str]]) -> str:
    return "".join(f"{key}: {value}\n" for key, value in pairs)


def append_trailers(message: str, pairs: Iterable[tuple[str, str]]) -> str:
    """Append a trailer block to `message`, separated by one blank line."""
    block = render_trailers(pairs)
    body = message.rstrip()
    if not body:
        return block
    return f"{body}\n\n{block}"


def _looks_like_block(paragraph: str) -> bool:
    lines = [line for line in paragraph.splitlines() if line.strip()]
    if not lines or lines[0][:1] in (" ", "\t"):
        return False
    for line in lines:
        if line[:1] in (" ", "\t"):
            continue
        if TRAILER_LINE_PATTERN.match(line) is None:
            return False
    return True
