from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

from jsonschema import Draft7Validator

from linksy.errors import ApiError, invalid

FIELD_TYPES: tuple[str, ...] = ("text", "textarea", "select", "checkbox", "date", "email", "phone")

_FIELD_KEY_RE = re.compile(r"^[a-z][a-z0-9_]{0,62}$")
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PHONE_PATTERN = r"^\+?[0-9][0-9 ().-]{6,}$"
DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


def validate_field_definition(field: Mapping[str, Any]) -> None:
    key = str(field.get("field_key") or "")
    if not _FIELD_KEY_RE.match(key):
        raise invalid("field_key must be lowercase letters, digits or underscores")
    if not str(field.get("label") or "").strip():
        raise invalid("label is required")
    field_type = str(field.get("field_type") or "")
    if field_type not in FIELD_TYPES:
        raise invalid(f"field_type must be one of {', '.join(FIELD_TYPES)}")
    if field_type == "select":
        options = field.get("options") or []
        if not isinstance(options, list) or not options:
            raise invalid("options are required for select fields")


def _property_schema(field: Mapping[str, Any]) -> dict[str, Any]:
    field_type = str(field.get("field_type") or "text")
    if field_type == "checkbox":
        return {"type": "boolean"}
    if field_type == "select":
        return {"type": "string", "enum": [str(x) for x in field.get("options") or []]}
    if field_type == "email":
        return {"type": "string", "format": "email", "pattern": EMAIL_PATTERN}
    if field_type == "phone":
        return {"type": "string", "pattern": PHONE_PATTERN}
    if field_type == "date":
        return {"type": "string", "pattern": DATE_PATTERN}
    if field_type == "textarea":
        return {"type": "string", "maxLength": 5000}
    return {"type": "string", "maxLength": 500}


def build_intake_schema(fields: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
    ordered = sorted(fields, key=lambda x: (int(x.get("sort_order") or 0), str(x.get("field_key") or "")))
    properties: dict[str, Any] = {}
    required: list[str] = []
    for field in ordered:
        key = str(field.get("field_key") or "")
        if not key:
            continue
        prop = _property_schema(field)
        prop["title"] = str(field.get("label") or key)
        properties[key] = prop
        if field.get("is_required"):
            required.append(key)
    schema: dict[str, Any] = {
        "type": "object",
        "properties": properties,
        "additionalProperties": False,
    }
    if required:
        schema["required"] = required
    return schema


def validate_intake(fields: Iterable[Mapping[str, Any]], data: Mapping[str, Any] | None) -> dict[str, Any]:
    schema = build_intake_schema(fields)
    payload = dict(data or {})
    validator = Draft7Validator(schema)
    errors = []
    for err in sorted(validator.iter_errors(payload), key=lambda e: list(e.path)):
        field_key = ".".join(str(p) for p in err.path)
        errors.append({"field": field_key or None, "message": err.message})
    if errors:
        raise ApiError(
            code="CUSTOM_FIELDS_INVALID",
            message="custom field validation failed",
            error_class="validation",
            retryable=False,
            http_status=400,
            details={"errors": errors},
        )
    return payload
