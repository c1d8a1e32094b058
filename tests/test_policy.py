"""Tests for the slot-derived dialogue policy."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from receptionist.policy import Ask, Complete, next_action, pending_field
from receptionist.workflows.schema import FieldSpec, IntakeSchema

FILLED = {
    "name": "Dana",
    "address": "123 Oak Street",
    "issue": "leak under the sink",
    "window": "tomorrow morning",
    "callback": "+15165551234",
}


class TestPendingField:
    def test_first_field_on_empty_slots(self, schema):
        assert pending_field(schema, schema.empty_slots()).name == "name"

    def test_follows_schema_order(self, schema):
        slots = schema.empty_slots()
        slots["name"] = "Dana"
        assert pending_field(schema, slots).name == "address"

    def test_out_of_order_answers(self, schema):
        slots = schema.empty_slots()
        slots.update(address="123 Oak Street", window="tomorrow morning")
        assert pending_field(schema, slots).name == "name"
        slots["name"] = "Dana"
        assert pending_field(schema, slots).name == "issue"

    def test_value_failing_predicate_stays_pending(self, schema):
        slots = dict(FILLED, address="somewhere near the park")
        assert pending_field(schema, slots).name == "address"

    def test_none_when_complete(self, schema):
        assert pending_field(schema, FILLED) is None

    def test_optional_fields_never_pending(self):
        schema = IntakeSchema(
            id="opt",
            fields=[
                FieldSpec(name="notes", prompt="Anything else?", required=False),
                FieldSpec(name="name", prompt="Your name?"),
            ],
        )
        assert pending_field(schema, {}).name == "name"
        assert pending_field(schema, {"name": "Dana"}) is None


class TestNextAction:
    def test_ask(self, schema):
        action = next_action(schema, schema.empty_slots())
        assert isinstance(action, Ask)
        assert action.field_name == "name"
        assert action.field.prompt == "May I have your name, please?"

    def test_complete(self, schema):
        assert next_action(schema, FILLED) == Complete()

    def test_completion_is_monotone(self, schema):
        """Adding values to a complete slot map never makes it incomplete."""
        slots = dict(FILLED)
        assert isinstance(next_action(schema, slots), Complete)
        slots["extra"] = "ignored"
        assert isinstance(next_action(schema, slots), Complete)

    def test_walks_every_field_in_order(self, schema):
        slots = schema.empty_slots()
        asked = []
        while True:
            action = next_action(schema, slots)
            if isinstance(action, Complete):
                break
            asked.append(action.field_name)
            slots[action.field_name] = FILLED[action.field_name]
        assert asked == ["name", "address", "issue", "window", "callback"]
