"""Pydantic models for intake schemas.

An intake schema is the ordered list of slots the receptionist collects on
a call, plus the canned wording it falls back to: greeting, per-field
prompts, closing line, retry line and the system instruction handed to the
LLM.  Field order is the default question order.
"""

from __future__ import annotations

import re
from typing import Mapping, Optional

from pydantic import BaseModel, field_validator

CALLER_ID = "caller_id"


class FieldSpec(BaseModel):
    """One slot to collect from the caller."""

    name: str
    label: str = ""                        # Human-readable, used in summaries
    prompt: str                            # Canned question for this slot
    default_source: Optional[str] = None   # "caller_id" or None
    pattern: Optional[str] = None          # Value must contain a match (case-insensitive)
    required: bool = True

    @field_validator("default_source")
    @classmethod
    def _known_source(cls, v: Optional[str]) -> Optional[str]:
        if v not in (None, CALLER_ID):
            raise ValueError(f"unknown default_source: {v!r}")
        return v

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"invalid pattern {v!r}: {e}") from e
        return v

    @property
    def display_label(self) -> str:
        return self.label or self.name.replace("_", " ").title()

    def is_filled(self, value: Optional[str]) -> bool:
        """Fill predicate: non-blank, and matching ``pattern`` when set."""
        if value is None or not str(value).strip():
            return False
        if self.pattern and not re.search(self.pattern, str(value), re.IGNORECASE):
            return False
        return True


class IntakeSchema(BaseModel):
    """A complete intake definition for one business."""

    id: str
    business_name: str = ""
    greeting: str = ""
    closing: str = ""
    retry_prompt: str = "Sorry, there was a glitch. Could you repeat that?"
    system_prompt: str = ""
    fields: list[FieldSpec] = []

    @field_validator("fields")
    @classmethod
    def _unique_names(cls, v: list[FieldSpec]) -> list[FieldSpec]:
        seen: set[str] = set()
        for f in v:
            if f.name in seen:
                raise ValueError(f"duplicate field name: {f.name}")
            seen.add(f.name)
        return v

    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def get_field(self, name: str) -> Optional[FieldSpec]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def empty_slots(self) -> dict[str, Optional[str]]:
        return {f.name: None for f in self.fields}

    def is_complete(self, slots: Mapping[str, Optional[str]]) -> bool:
        """True iff every required field's fill predicate holds."""
        return all(
            f.is_filled(slots.get(f.name))
            for f in self.fields
            if f.required
        )
