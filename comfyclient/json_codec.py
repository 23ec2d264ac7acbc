"""
JSON encoding for request bodies sent to ComfyUI.

ComfyUI validates node inputs by type, so floats are written in a fixed form:
- integral floats become integer literals (``1.0`` -> ``1``)
- other floats use the shortest round-tripping decimal, never an exponent
  (``0.1`` -> ``0.1``, ``1e-07`` -> ``0.0000001``)

The stdlib encoder cannot be told how to print floats, so this module walks
the value itself and delegates strings to ``json.dumps``.
"""
from __future__ import annotations

import json
import math
from decimal import Decimal
from typing import Any, List


def format_float(value: float) -> str:
    if math.isnan(value) or math.isinf(value):
        raise ValueError(f"Out of range float values are not JSON compliant: {value!r}")
    if value.is_integer():
        return str(int(value))
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _encode_key(key: Any) -> str:
    if isinstance(key, str):
        return json.dumps(key)
    if key is None:
        return '"null"'
    if isinstance(key, bool):
        return '"true"' if key else '"false"'
    if isinstance(key, int):
        return f'"{key}"'
    if isinstance(key, float):
        return f'"{format_float(key)}"'
    raise TypeError(f"keys must be str, int, float, bool or None, not {type(key).__name__}")


def _encode(value: Any, parts: List[str]) -> None:
    if value is None:
        parts.append("null")
    elif value is True:
        parts.append("true")
    elif value is False:
        parts.append("false")
    elif isinstance(value, str):
        parts.append(json.dumps(value))
    elif isinstance(value, int):
        parts.append(int.__repr__(value))
    elif isinstance(value, float):
        parts.append(format_float(value))
    elif isinstance(value, dict):
        parts.append("{")
        for index, (key, item) in enumerate(value.items()):
            if index:
                parts.append(",")
            parts.append(_encode_key(key))
            parts.append(":")
            _encode(item, parts)
        parts.append("}")
    elif isinstance(value, (list, tuple)):
        parts.append("[")
        for index, item in enumerate(value):
            if index:
                parts.append(",")
            _encode(item, parts)
        parts.append("]")
    else:
        raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value: Any) -> str:
    """Serialize ``value`` to compact JSON using ComfyUI-safe number formatting."""
    parts: List[str] = []
    _encode(value, parts)
    return "".join(parts)
