"""Load JSONL intake schema definitions into IntakeSchema objects."""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import ValidationError

from receptionist.workflows.schema import FieldSpec, IntakeSchema


def load_schema_jsonl(path: str | Path) -> IntakeSchema:
    """Load a single intake schema from a JSONL file.

    The JSONL file contains exactly one JSON object (the schema).
    Fields are listed in question order inside the top-level ``fields`` list.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8").strip()

    # JSONL: one JSON object per line, take the first non-empty line
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        data = json.loads(line)
        return _parse_schema(data, source=path)

    raise ValueError(f"No intake schema found in {path}")


def _parse_schema(data: dict, source: Path | None = None) -> IntakeSchema:
    """Parse a raw dict into an IntakeSchema."""
    try:
        fields: list[FieldSpec] = []
        for item in data.get("fields", []):
            fields.append(item if isinstance(item, FieldSpec) else FieldSpec(**item))
        data["fields"] = fields
        return IntakeSchema(**data)
    except ValidationError as e:
        raise ValueError(f"Invalid intake schema in {source or '<dict>'}: {e}") from e

