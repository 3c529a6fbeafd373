"""Validation of resolved input values before a node is executed.

Rules per field type:
- object: must parse as JSON when given as text
- select (max unset or > 1): list of choices, at most `max` entries
- images: list of attachments, at most `max` entries
- any required field must be non-empty
"""

from __future__ import annotations

import json
from typing import Any, Sequence

from nodeflow.core.definitions import InputPort, InputPortType
from nodeflow.core.errors import FieldError, ValidationError, ValidationErrorKind


def is_empty(value: Any) -> bool:
    """True for None, blank strings and empty collections."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [] if is_empty(value) else [value]


def validate_inputs(ports: Sequence[InputPort], values: dict[str, Any]) -> dict[str, Any]:
    """
    Validate and normalise resolved input values.

    Values for names not declared as ports pass through untouched.

    Returns:
        Normalised values (parsed JSON, list-wrapped multi values)

    Raises:
        ValidationError: listing every rejected field
    """
    result = dict(values)
    errors: list[FieldError] = []

    def required(port: InputPort) -> None:
        errors.append(FieldError(port.name, ValidationErrorKind.REQUIRED, "required"))

    for port in ports:
        if port.name not in values:
            if port.required:
                required(port)
            continue
        value = values[port.name]

        if port.type == InputPortType.OBJECT:
            if is_empty(value):
                if port.required:
                    required(port)
                continue
            if isinstance(value, str):
                try:
                    result[port.name] = json.loads(value)
                except json.JSONDecodeError as e:
                    errors.append(
                        FieldError(port.name, ValidationErrorKind.PARSE_ERROR, f"invalid JSON: {e.msg}")
                    )
            continue

        if port.type == InputPortType.IMAGES:
            items = _as_list(value)
            if port.max and len(items) > port.max:
                errors.append(
                    FieldError(
                        port.name,
                        ValidationErrorKind.LIMIT_EXCEEDED,
                        f"at most {port.max} attachments allowed, got {len(items)}",
                    )
                )
                continue
            if port.required and not items:
                required(port)
            result[port.name] = items
            continue

        if port.type == InputPortType.SELECT and port.max != 1:
            items = _as_list(value)
            if port.max and len(items) > port.max:
                errors.append(
                    FieldError(
                        port.name,
                        ValidationErrorKind.LIMIT_EXCEEDED,
                        f"at most {port.max} selections allowed, got {len(items)}",
                    )
                )
                continue
            if port.required and not items:
                required(port)
            result[port.name] = items
            continue

        if port.required and is_empty(value):
            required(port)

    if errors:
        raise ValidationError(errors)
    return result
