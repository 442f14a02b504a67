"""Tests for tagged JSON serialization of arguments and context values."""

import json
from datetime import date, datetime, timezone

import pytest
from pydantic import BaseModel

from durastep.errors import UnserializableValueError
from durastep.serialization import (
    TYPE_TAG,
    ValueDeserializer,
    ValueSerializer,
    canonical_json,
    import_path,
    object_path,
)


class Address(BaseModel):
    street: str
    city: str


def test_plain_json_values_pass_through():
    value = {"id": 1, "tags": ["a", "b"], "price": 9.5, "active": True, "note": None}
    assert ValueSerializer.serialize(value) == value
    assert ValueDeserializer.deserialize(value) == value


def test_rich_values_survive_json_round_trip():
    value = {
        "when": datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc),
        "day": date(2024, 5, 1),
        "pair": (1, "two"),
        "address": Address(street="Main St 1", city="Springfield"),
    }
    stored = json.loads(json.dumps(ValueSerializer.serialize(value)))
    assert stored["pair"][TYPE_TAG] == "tuple"

    restored = ValueDeserializer.deserialize(stored)
    assert restored == value
    assert isinstance(restored["address"], Address)


def test_unserializable_values_raise():
    with pytest.raises(UnserializableValueError):
        ValueSerializer.serialize(object())
    with pytest.raises(UnserializableValueError):
        ValueSerializer.serialize({1: "int key"})
    with pytest.raises(UnserializableValueError):
        ValueSerializer.serialize({TYPE_TAG: "spoofed"})


def test_canonical_json_ignores_key_order():
    assert canonical_json({"b": 1, "a": [1, 2]}) == canonical_json({"a": [1, 2], "b": 1})
    assert canonical_json({"a": 1}) == '{"a":1}'


def test_import_path_accepts_both_forms():
    assert import_path(object_path(Address)) is Address
    assert import_path("json.dumps") is json.dumps
    with pytest.raises(ValueError):
        import_path("no_such_module_here:Thing")
    with pytest.raises(ValueError):
        import_path("nodots")
