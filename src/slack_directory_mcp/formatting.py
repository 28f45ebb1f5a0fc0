from __future__ import annotations

import csv
import io
from typing import Iterable, Sequence

from pydantic import BaseModel


def parse_fields(
    fields: str,
    *,
    allowed: Sequence[str],
    defaults: Sequence[str],
    aliases: dict[str, str] | None = None,
) -> list[str]:
    """Turn a comma separated field selection into keys in ``allowed`` order."""
    if fields.strip().lower() == "all":
        return list(allowed)

    aliases = aliases or {}
    requested: set[str] = set()
    for f in fields.split(","):
        f = f.strip().lower()
        requested.add(aliases.get(f, f))

    selected = [f for f in allowed if f in requested]
    return selected or list(defaults)


def _cell(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def to_csv(
    model: type[BaseModel], rows: Iterable[BaseModel], fields: Sequence[str]
) -> str:
    """Render pydantic rows as CSV, keeping only ``fields`` (python names).

    Column headers are the model's field aliases.
    """
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow([model.model_fields[f].alias or f for f in fields])
    for row in rows:
        data = row.model_dump()
        writer.writerow([_cell(data[f]) for f in fields])
    return buf.getvalue()


def page_metadata(total_label: str, total: int, returned: int, next_cursor: str) -> str:
    lines = [
        f"# Total {total_label}: {total}",
        f"# Returned in this page: {returned}",
    ]
    if next_cursor:
        lines.append(f"# Next cursor: {next_cursor}")
    else:
        lines.append("# Next cursor: (none - last page)")
    return "\n".join(lines) + "\n"


def rows_to_csv(header: Sequence[str], rows: Iterable[Sequence[object]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(header)
    for row in rows:
        writer.writerow([_cell(v) for v in row])
    return buf.getvalue()
