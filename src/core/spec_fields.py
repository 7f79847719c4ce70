"""Type-safe field parsing helpers for pipeline definitions.

This module centralizes primitive parsing so the pipeline loader can stay
concise and produce consistent validation errors for every section.
"""

from __future__ import annotations

from typing import Mapping, Sequence

from core.errors import PipelineSpecError


def expect_mapping(value: object, context: str) -> Mapping[str, object]:
    """Return *value* as a string-keyed mapping or raise."""
    if isinstance(value, Mapping):
        normalized_mapping = {}
        for key, payload in value.items():
            if not isinstance(key, str):
                raise PipelineSpecError(
                    f"Invalid {context}: expected string keys, got {type(key).__name__}."
                )
            normalized_mapping[key] = payload
        return normalized_mapping
    raise PipelineSpecError(
        f"Invalid {context}: expected object mapping, got {type(value).__name__}."
    )


def expect_sequence(value: object, context: str) -> Sequence[object]:
    """Return *value* as a non-string sequence or raise."""
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return value
    raise PipelineSpecError(f"Invalid {context}: expected list, got {type(value).__name__}.")


def optional_sequence(mapping: Mapping[str, object], field_name: str, context: str) -> Sequence[object]:
    """Read an optional list field, treating absence as empty."""
    value = mapping.get(field_name)
    if value is None:
        return ()
    return expect_sequence(value, f"{context} field '{field_name}'")


def required_string(mapping: Mapping[str, object], field_name: str, context: str) -> str:
    """Read a required non-empty string field."""
    value = optional_string(mapping, field_name, context)
    if value is None:
        raise PipelineSpecError(f"Invalid {context}: missing required field '{field_name}'.")
    return value


def optional_string(mapping: Mapping[str, object], field_name: str, context: str) -> str | None:
    """Read an optional string field."""
    value = mapping.get(field_name)
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    raise PipelineSpecError(
        f"Invalid {context}: field '{field_name}' must be a string when provided."
    )


def scalar_string(value: object, context: str) -> str:
    """Render a YAML scalar (string, int, float, bool) as text."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise PipelineSpecError(f"Invalid {context}: expected scalar, got {type(value).__name__}.")


def string_mapping(mapping: Mapping[str, object], field_name: str, context: str) -> dict[str, str]:
    """Read an optional mapping of names to scalar values as strings."""
    value = mapping.get(field_name)
    if value is None:
        return {}
    rows = expect_mapping(value, f"{context} field '{field_name}'")
    return {key: scalar_string(item, f"{context} '{field_name}.{key}'") for key, item in rows.items()}


def optional_int(mapping: Mapping[str, object], field_name: str, context: str) -> int | None:
    """Read an optional integer field; booleans are rejected."""
    value = mapping.get(field_name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise PipelineSpecError(f"Invalid {context}: field '{field_name}' must be an integer.")
    return value


def required_int(mapping: Mapping[str, object], field_name: str, context: str) -> int:
    """Read a required integer field."""
    value = optional_int(mapping, field_name, context)
    if value is None:
        raise PipelineSpecError(f"Invalid {context}: missing required field '{field_name}'.")
    return value


def int_with_default(
    mapping: Mapping[str, object],
    field_name: str,
    context: str,
    default_value: int,
) -> int:
    """Read an integer field while preserving explicit zero values."""
    value = optional_int(mapping, field_name, context)
    return default_value if value is None else value


def float_with_default(
    mapping: Mapping[str, object],
    field_name: str,
    context: str,
    default_value: float,
) -> float:
    """Read a numeric field while preserving explicit zero values."""
    value = mapping.get(field_name)
    if value is None:
        return default_value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PipelineSpecError(f"Invalid {context}: field '{field_name}' must be numeric.")
    return float(value)


def optional_bool(
    mapping: Mapping[str, object],
    field_name: str,
    context: str,
    default_value: bool,
) -> bool:
    """Read an optional boolean field."""
    value = mapping.get(field_name)
    if value is None:
        return default_value
    if isinstance(value, bool):
        return value
    raise PipelineSpecError(f"Invalid {context}: field '{field_name}' must be true/false.")


def parse_mode(value: object, context: str) -> int:
    """Parse a permission mode given as YAML int or octal string like ``"0755"``."""
    if isinstance(value, bool):
        raise PipelineSpecError(f"Invalid {context}: mode must be octal, got boolean.")
    if isinstance(value, int):
        mode = value
    elif isinstance(value, str):
        try:
            mode = int(value.strip(), 8)
        except ValueError as error:
            raise PipelineSpecError(
                f"Invalid {context}: mode '{value}' is not an octal number."
            ) from error
    else:
        raise PipelineSpecError(f"Invalid {context}: mode must be an octal string.")
    if not 0 <= mode <= 0o7777:
        raise PipelineSpecError(f"Invalid {context}: mode {oct(mode)} is out of range.")
    return mode


def validate_keys(mapping: Mapping[str, object], allowed_keys: set[str], context: str) -> None:
    """Reject fields not listed in *allowed_keys*."""
    unknown_keys = sorted(set(mapping) - allowed_keys)
    if unknown_keys:
        raise PipelineSpecError(f"{context} contains unknown fields: {', '.join(unknown_keys)}.")
