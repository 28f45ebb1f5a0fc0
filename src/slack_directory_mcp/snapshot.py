"""JSON snapshot files backing the directory cache.

Each entity type is persisted as a single JSON array of records.
"""

from __future__ import annotations

import json
import os
import tempfile

from slack_directory_mcp.errors import SnapshotIOError


def read_snapshot(path: str) -> list[dict]:
    if not path:
        raise SnapshotIOError(path, "no path configured")
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise SnapshotIOError(path, str(exc)) from exc
    if not isinstance(data, list):
        raise SnapshotIOError(path, f"expected a JSON array, got {type(data).__name__}")
    return [rec for rec in data if isinstance(rec, dict)]


def write_snapshot(path: str, records: list[dict]) -> None:
    if not path:
        raise SnapshotIOError(path, "no path configured")
    directory = os.path.dirname(path) or "."
    try:
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
    except (OSError, TypeError, ValueError) as exc:
        raise SnapshotIOError(path, str(exc)) from exc
