"""Intake schema definitions: which slots to collect and how to ask for them."""

from .schema import FieldSpec, IntakeSchema

__all__ = ["FieldSpec", "IntakeSchema"]
