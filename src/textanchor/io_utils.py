"""I/O utilities for JSON and JSONL files.

orjson-backed readers and writers used for engine configuration and for
exchanging annotation records with a persistence layer or the probe script.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any

import orjson


def load_json(path: Path) -> Any:
    """Load JSON from a file."""
    return orjson.loads(path.read_bytes())


def save_json(obj: Any, path: Path, *, pretty: bool = True) -> None:
    """Save an object as JSON with sorted keys."""
    path.parent.mkdir(parents=True, exist_ok=True)
    opts = (
        orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS
        if pretty
        else orjson.OPT_SORT_KEYS
    )
    path.write_bytes(orjson.dumps(obj, option=opts))


def loads_jsonl(raw: bytes) -> list[dict[str, Any]]:
    """Decode JSON Lines bytes. Blank lines skipped."""
    records: list[dict[str, Any]] = []
    for line in raw.split(b"\n"):
        line = line.strip()
        if line:
            records.append(orjson.loads(line))
    return records


def dumps_jsonl(records: list[dict[str, Any]]) -> bytes:
    """Encode a list of dicts as JSON Lines bytes (trailing newline)."""
    if not records:
        return b""
    return b"\n".join(orjson.dumps(r, option=orjson.OPT_SORT_KEYS) for r in records) + b"\n"


def load_jsonl(path: Path) -> list[dict[str, Any]]:
    """Load a JSON Lines file (one JSON object per line)."""
    return loads_jsonl(path.read_bytes())


def save_jsonl(records: list[dict[str, Any]], path: Path) -> None:
    """Save a list of dicts as a JSON Lines file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(dumps_jsonl(records))
