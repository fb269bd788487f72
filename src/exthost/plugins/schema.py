"""Settings schema: parse a manifest's settings_schema and validate payloads against it."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .models import SETTING_TYPES, SettingField


@dataclass
class ValidationResult:
    valid: bool = True
    errors: list[str] = field(default_factory=list)

    def add(self, message: str) -> None:
        self.errors.append(message)
        self.valid = False


def parse_settings_schema(raw: Any) -> tuple[dict[str, SettingField], list[str]]:
    """Parse a raw settings_schema object. Returns (fields, problems)."""
    fields: dict[str, SettingField] = {}
    problems: list[str] = []
    if raw in (None, [], {}):
        return fields, problems
    if not isinstance(raw, dict):
        return fields, ["settings_schema must be an object"]

    for name, rules in raw.items():
        if not isinstance(rules, dict):
            problems.append(f"settings_schema.{name} must be an object")
            continue
        ftype = rules.get("type", "string")
        if ftype not in SETTING_TYPES:
            problems.append(
                f"settings_schema.{name}: unknown type '{ftype}' "
                f"(expected one of {', '.join(SETTING_TYPES)})"
            )
            continue
        bounds = {}
        for key in ("min", "max"):
            value = rules.get(key)
            if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
                problems.append(f"settings_schema.{name}.{key} must be a number")
                value = None
            bounds[key] = value
        enum = rules.get("enum")
        if enum is not None and not isinstance(enum, list):
            problems.append(f"settings_schema.{name}.enum must be a list")
            enum = None
        fields[name] = SettingField(
            name=name,
            type=ftype,
            required=bool(rules.get("required", False)),
            min=bounds["min"],
            max=bounds["max"],
            enum=tuple(enum) if enum is not None else None,
            default=rules.get("default"),
            description=str(rules.get("description", "")),
        )
    return fields, problems


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def _type_matches(ftype: str, value: Any) -> bool:
    if ftype == "string":
        return isinstance(value, str)
    if ftype == "integer":
        # bool is an int subclass; JSON true is not an integer setting
        return isinstance(value, int) and not isinstance(value, bool)
    if ftype == "boolean":
        return isinstance(value, bool)
    if ftype == "array":
        return isinstance(value, (list, tuple))
    return False


def _measure(ftype: str, value: Any) -> int | float | None:
    if ftype == "integer":
        return value
    if ftype in ("string", "array"):
        return len(value)
    return None


def validate_settings(
    schema: Mapping[str, SettingField],
    payload: Mapping[str, Any],
    allow_unknown: bool = False,
) -> ValidationResult:
    """Check every field of *payload* against *schema*, collecting all errors."""
    result = ValidationResult()

    for name, spec in schema.items():
        value = payload.get(name)

        if _is_empty(value):
            if spec.required:
                result.add(f"{name} is required")
            continue

        if not _type_matches(spec.type, value):
            result.add(f"{name} must be of type {spec.type}")
            continue

        measure = _measure(spec.type, value)
        if measure is not None:
            if spec.min is not None and measure < spec.min:
                result.add(f"{name} must be at least {spec.min}")
            if spec.max is not None and measure > spec.max:
                result.add(f"{name} must be at most {spec.max}")

        if spec.enum is not None and value not in spec.enum:
            result.add(f"{name} must be one of: {', '.join(str(v) for v in spec.enum)}")

    if not allow_unknown:
        for name in payload:
            if name not in schema:
                result.add(f"{name} is not a known setting")

    return result


def apply_defaults(schema: Mapping[str, SettingField], payload: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of *payload* with declared defaults filled in for absent fields."""
    merged = dict(payload)
    for name, spec in schema.items():
        if spec.default is not None and _is_empty(merged.get(name)):
            merged[name] = spec.default
    return merged
