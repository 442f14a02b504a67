"""Tagged JSON serialization for job arguments and context values.

Plain JSON types pass through unchanged. Pydantic models, datetimes and
tuples are wrapped in a small tagged envelope so they can be rebuilt on the
other side of a queue or a database round-trip.
"""

from __future__ import annotations

import importlib
import json
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel

from .errors import UnserializableValueError

TYPE_TAG = "_durastep_type"

_PRIMITIVES = (str, int, float, bool, type(None))


class ValueSerializer:
    """Serialize a value into JSON-compatible data."""

    @staticmethod
    def serialize(value: Any) -> Any:
        if isinstance(value, _PRIMITIVES):
            return value

        if isinstance(value, list):
            return [ValueSerializer.serialize(item) for item in value]

        if isinstance(value, tuple):
            return {
                TYPE_TAG: "tuple",
                "items": [ValueSerializer.serialize(item) for item in value],
            }

        if isinstance(value, dict):
            if not all(isinstance(key, str) for key in value):
                raise UnserializableValueError(value)
            if TYPE_TAG in value:
                raise UnserializableValueError(value)
            return {key: ValueSerializer.serialize(item) for key, item in value.items()}

        if isinstance(value, datetime):
            return {TYPE_TAG: "datetime", "value": value.isoformat()}

        if isinstance(value, date):
            return {TYPE_TAG: "date", "value": value.isoformat()}

        if isinstance(value, BaseModel):
            return {
                TYPE_TAG: "model",
                "type": type(value).__qualname__,
                "module": type(value).__module__,
                "data": value.model_dump(mode="json"),
            }

        raise UnserializableValueError(value)


class ValueDeserializer:
    """Rebuild values produced by :class:`ValueSerializer`."""

    @staticmethod
    def deserialize(data: Any) -> Any:
        if isinstance(data, list):
            return [ValueDeserializer.deserialize(item) for item in data]

        if not isinstance(data, dict):
            return data

        tag = data.get(TYPE_TAG)
        if tag is None:
            return {key: ValueDeserializer.deserialize(item) for key, item in data.items()}
        if tag == "tuple":
            return tuple(ValueDeserializer.deserialize(item) for item in data["items"])
        if tag == "datetime":
            return datetime.fromisoformat(data["value"])
        if tag == "date":
            return date.fromisoformat(data["value"])
        if tag == "model":
            model_class = import_object(data["module"], data["type"])
            return model_class.model_validate(data["data"])

        raise ValueError(f"Unknown serialized type tag: {tag!r}")


def import_object(module_name: str, qualname: str) -> Any:
    """Resolve ``module_name`` + dotted ``qualname`` to the object it names."""
    try:
        obj: Any = importlib.import_module(module_name)
        for part in qualname.split("."):
            obj = getattr(obj, part)
    except (ImportError, AttributeError) as e:
        raise ValueError(
            f"Failed to import '{qualname}' from module '{module_name}': {e}"
        ) from e
    return obj


def object_path(obj: Any) -> str:
    """Return the ``module:qualname`` path used to find ``obj`` again."""
    return f"{obj.__module__}:{obj.__qualname__}"


def import_path(path: str) -> Any:
    """Import an object from a ``module:qualname`` or ``module.name`` path."""
    if ":" in path:
        module_name, qualname = path.split(":", 1)
    else:
        module_name, _, qualname = path.rpartition(".")
    if not module_name or not qualname:
        raise ValueError(f"Invalid import path: {path!r}")
    return import_object(module_name, qualname)


def canonical_json(value: Any) -> str:
    """Dump serialized ``value`` as deterministic JSON."""
    return json.dumps(
        ValueSerializer.serialize(value), sort_keys=True, separators=(",", ":")
    )
