"""Recursive JSON-schema subset validation for tool arguments.

Supports the node kinds tools actually declare: primitives (``string``,
``integer``, ``number``, ``boolean``), ``enum``, ``object`` with
``properties``/``required`` and ``array`` with ``items``. Validation is total:
any value and any schema produce a list of issues, never an exception.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Callable

ROOT_LABEL = "parameter"


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    """One problem found at ``path``; ``message`` is the full readable text."""

    path: str
    message: str

    def __str__(self) -> str:
        return self.message


def _is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


_TYPE_CHECKS: dict[str, Callable[[Any], bool]] = {
    "string": lambda v: isinstance(v, str),
    "integer": _is_integer,
    "number": _is_number,
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
}


def _child_label(label: str, key: str) -> str:
    return key if label == ROOT_LABEL else f"{label}.{key}"


def _enum_repr(options: list[Any]) -> str:
    try:
        return json.dumps(options)
    except (TypeError, ValueError):
        return repr(options)


def validate_value(value: Any, schema: Any, label: str = ROOT_LABEL) -> list[ValidationIssue]:
    """Validate ``value`` against ``schema``; ``label`` is the dotted path so far."""

    if not isinstance(schema, dict):
        return []

    expected = schema.get("type")
    check = _TYPE_CHECKS.get(expected) if isinstance(expected, str) else None
    if check is not None and not check(value):
        return [ValidationIssue(label, f"{label} should be {expected}")]

    issues: list[ValidationIssue] = []

    options = schema.get("enum")
    if isinstance(options, list) and value not in options:
        issues.append(ValidationIssue(label, f"{label} must be one of {_enum_repr(options)}"))

    if expected in ("integer", "number") and _is_number(value):
        minimum = schema.get("minimum")
        maximum = schema.get("maximum")
        if _is_number(minimum) and value < minimum:
            issues.append(ValidationIssue(label, f"{label} must be >= {minimum}"))
        if _is_number(maximum) and value > maximum:
            issues.append(ValidationIssue(label, f"{label} must be <= {maximum}"))

    if expected == "string" and isinstance(value, str):
        min_length = schema.get("minLength")
        max_length = schema.get("maxLength")
        if _is_integer(min_length) and len(value) < min_length:
            issues.append(ValidationIssue(label, f"{label} must be at least {min_length} chars"))
        if _is_integer(max_length) and len(value) > max_length:
            issues.append(ValidationIssue(label, f"{label} must be at most {max_length} chars"))

    if expected == "object" and isinstance(value, dict):
        properties = schema.get("properties")
        properties = properties if isinstance(properties, dict) else {}
        required = schema.get("required")
        for name in required if isinstance(required, list) else []:
            if isinstance(name, str) and name not in value:
                path = _child_label(label, name)
                issues.append(ValidationIssue(path, f"missing required {path}"))
        for key, child in value.items():
            if key in properties:
                issues.extend(validate_value(child, properties[key], _child_label(label, str(key))))

    if expected == "array" and isinstance(value, list):
        items = schema.get("items")
        if isinstance(items, dict):
            for index, item in enumerate(value):
                issues.extend(validate_value(item, items, f"{label}[{index}]"))

    return issues


def validate_params(schema: dict[str, Any], params: Any) -> list[ValidationIssue]:
    """Validate a tool's argument record against its parameter schema.

    Raises:
        ValueError: the schema itself is not an ``object`` schema. This is a
            programming error in the tool definition, not bad model input.
    """

    if not isinstance(schema, dict) or schema.get("type") != "object":
        got = schema.get("type") if isinstance(schema, dict) else type(schema).__name__
        raise ValueError(f"Schema must be object type, got {got}")
    return validate_value(params, schema, ROOT_LABEL)
