"""Five-slot plumbing front-desk intake.

Loads the bundled JSONL definition, or an operator-supplied one from
``SCHEMA_PATH``.

The canonical definition lives in plumbing_intake.jsonl next to this module.
"""

from __future__ import annotations

from pathlib import Path

from receptionist.workflows.loader import load_schema_jsonl
from receptionist.workflows.schema import IntakeSchema

_JSONL_PATH = Path(__file__).resolve().parent / "plumbing_intake.jsonl"

INTAKE_SCHEMA: IntakeSchema = load_schema_jsonl(_JSONL_PATH)


def load_configured_schema(schema_path: str = "") -> IntakeSchema:
    """Return the schema at ``schema_path``, or the bundled one when empty."""
    if schema_path:
        return load_schema_jsonl(schema_path)
    return INTAKE_SCHEMA
