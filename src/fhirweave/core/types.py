"""
Core type definitions for fhirweave.

This module contains fundamental type aliases and the scalar value helpers
shared by the path resolver, the binding resolver and the evaluator.
"""

from typing import Any

ScalarValue = str | int | float | bool | None

Fragment = ScalarValue | dict | list

AttributeMap = dict[str, Any]

# Bundle entry handed to the output consumer: (resource kind, attributes)
BundleEntry = tuple[str, AttributeMap]

SCALAR_TYPES = frozenset({"STRING", "INTEGER", "FLOAT", "BOOLEAN"})

_TRUE_STRINGS = frozenset({"true", "t", "yes", "y", "1"})
_FALSE_STRINGS = frozenset({"false", "f", "no", "n", "0"})


def is_scalar_type(type_name: str | None) -> bool:
    """Check whether a type name is one of the built-in scalar coercions."""
    return bool(type_name) and type_name.upper() in SCALAR_TYPES


def is_empty(value: Any) -> bool:
    """
    Check whether a value counts as absent.

    None, empty strings, empty collections and objects reporting
    `is_empty()` are absent. Zero and False are values.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, list | tuple | dict | set):
        return len(value) == 0
    check = getattr(value, "is_empty", None)
    if callable(check):
        return check()
    return False


def to_fragment(value: Any) -> Any:
    """
    Convert a resolved value into plain data suitable for a resource attribute.

    Source-document values and resource instances expose `to_fragment()`;
    lists and dicts are converted recursively and emptied entries dropped.

    Params:
        value: Any value produced by path resolution, scripting or a literal

    Returns:
        Plain Python data (str, int, float, bool, dict, list) or None
    """
    if value is None:
        return None
    convert = getattr(value, "to_fragment", None)
    if callable(convert):
        return convert()
    if isinstance(value, list | tuple):
        items = [to_fragment(item) for item in value]
        return [item for item in items if not is_empty(item)]
    if isinstance(value, dict):
        converted = {key: to_fragment(item) for key, item in value.items()}
        return {key: item for key, item in converted.items() if not is_empty(item)}
    return value


def coerce_scalar(value: Any, type_name: str) -> ScalarValue:
    """
    Coerce a value to one of the scalar types.

    Params:
        value: Value to coerce; None stays None
        type_name: One of STRING, INTEGER, FLOAT, BOOLEAN (case-insensitive)

    Returns:
        Coerced value

    Raises:
        ValueError: When the value cannot be represented in the requested type
    """
    if value is None:
        return None

    target = type_name.upper()
    if target not in SCALAR_TYPES:
        raise ValueError(f"unknown scalar type {type_name!r}")

    plain = to_fragment(value)
    if isinstance(plain, dict | list):
        raise ValueError(f"cannot coerce structured value to {target}")

    if target == "STRING":
        return str(plain)

    if target == "BOOLEAN":
        if isinstance(plain, bool):
            return plain
        text = str(plain).strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        raise ValueError(f"{plain!r} is not a boolean")

    if target == "INTEGER":
        if isinstance(plain, bool):
            raise ValueError("boolean is not an integer")
        if isinstance(plain, int):
            return plain
        text = str(plain).strip()
        number = float(text)
        if not number.is_integer():
            raise ValueError(f"{plain!r} is not an integer")
        return int(number)

    return float(str(plain).strip())
