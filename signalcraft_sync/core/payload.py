"""Codec for opaque structured payloads (condition, rule and action trees).

Values are kept as plain JSON data: ``None``, ``bool``, ``int``, ``float``,
``str``, lists, and mappings with string keys. Nothing here interprets the
shape of a tree; it only guarantees the value can cross the wire and come
back unchanged, key order included.
"""

import json
import math
from typing import Any, Dict, List, Optional, Union

from signalcraft_sync.clients.exceptions import SerializationError

JSONValue = Union[None, bool, int, float, str, List["JSONValue"], Dict[str, "JSONValue"]]


def validate_structured(value: Any, field: Optional[str] = None, path: str = "$") -> JSONValue:
    """Check that ``value`` is a JSON value and return a detached copy of it.

    Args:
        value: Candidate value
        field: Spec field name used in error messages
        path: JSON path of ``value`` inside the field, for error messages

    Returns:
        A structurally identical copy sharing no mutable containers with ``value``

    Raises:
        SerializationError: On non-JSON types, non-string keys or non-finite floats
    """
    if value is None or isinstance(value, (bool, str, int)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise SerializationError(f"non-finite number at {path}", field=field)
        return value
    if isinstance(value, (list, tuple)):
        return [validate_structured(item, field, f"{path}[{i}]") for i, item in enumerate(value)]
    if isinstance(value, dict):
        result: Dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise SerializationError(f"non-string key {key!r} at {path}", field=field)
            result[key] = validate_structured(item, field, f"{path}.{key}")
        return result
    raise SerializationError(f"unsupported type {type(value).__name__} at {path}", field=field)


def decode_structured(text: str, field: Optional[str] = None) -> JSONValue:
    """Decode a JSON document held in a string spec field.

    Raises:
        SerializationError: If the text is not valid JSON
    """
    if not isinstance(text, str):
        raise SerializationError("expected a JSON string", field=field)
    try:
        value = json.loads(text)
    except json.JSONDecodeError as e:
        raise SerializationError(f"{e.msg} at line {e.lineno} column {e.colno}", field=field) from e
    return validate_structured(value, field)


def encode_structured(value: Any, field: Optional[str] = None) -> str:
    """Encode a structured value compactly, preserving key order."""
    return json.dumps(validate_structured(value, field), separators=(",", ":"), ensure_ascii=False)


def structured_field(
    value: Any,
    text: Optional[str],
    field: str,
    required: bool = True,
) -> JSONValue:
    """Resolve a field given either as a structured value or as ``<field>_json`` text.

    Args:
        value: The structured form, if given
        text: The JSON-string form, if given; takes precedence
        field: Field name for error messages
        required: Whether a missing field is an error

    Raises:
        SerializationError: If the text is malformed, or the field is required and absent
    """
    if text is not None:
        return decode_structured(text, f"{field}_json")
    if value is None:
        if required:
            raise SerializationError(f"{field} or {field}_json is required", field=field)
        return None
    return validate_structured(value, field)
