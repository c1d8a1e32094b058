"""Dialogue policy: what to ask next, or whether the intake is complete.

The next action is derived from slot-fill state alone.  There is no
separately tracked "current step", so when a caller volunteers an answer
out of order the next question still matches what is actually missing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Union

from receptionist.workflows.schema import FieldSpec, IntakeSchema


@dataclass(frozen=True)
class Ask:
    """Ask the caller for ``field``."""

    field: FieldSpec

    @property
    def field_name(self) -> str:
        return self.field.name


@dataclass(frozen=True)
class Complete:
    """Every required slot is filled."""


NextAction = Union[Ask, Complete]


def pending_field(
    schema: IntakeSchema, slots: Mapping[str, Optional[str]],
) -> Optional[FieldSpec]:
    """First required field, in schema order, whose fill predicate fails."""
    for f in schema.fields:
        if f.required and not f.is_filled(slots.get(f.name)):
            return f
    return None


def next_action(schema: IntakeSchema, slots: Mapping[str, Optional[str]]) -> NextAction:
    field = pending_field(schema, slots)
    if field is None:
        return Complete()
    return Ask(field)
