import pytest

from linksy.custom_fields import build_intake_schema, validate_field_definition, validate_intake
from linksy.errors import ApiError

FIELDS = [
    {"field_key": "household_size", "label": "Household size", "field_type": "text", "sort_order": 2},
    {"field_key": "contact_email", "label": "Email", "field_type": "email", "is_required": True, "sort_order": 1},
    {"field_key": "language", "label": "Language", "field_type": "select", "options": ["en", "es"], "sort_order": 3},
    {"field_key": "veteran", "label": "Veteran", "field_type": "checkbox", "sort_order": 4},
]


def test_field_definition_rejects_bad_key_and_missing_options():
    with pytest.raises(ApiError):
        validate_field_definition({"field_key": "Bad Key", "label": "x", "field_type": "text"})
    with pytest.raises(ApiError):
        validate_field_definition({"field_key": "choice", "label": "Choice", "field_type": "select"})
    validate_field_definition({"field_key": "choice", "label": "Choice", "field_type": "select", "options": ["a"]})


def test_intake_schema_orders_fields_and_marks_required():
    schema = build_intake_schema(FIELDS)
    assert list(schema["properties"]) == ["contact_email", "household_size", "language", "veteran"]
    assert schema["required"] == ["contact_email"]
    assert schema["properties"]["language"]["enum"] == ["en", "es"]
    assert schema["additionalProperties"] is False


def test_validate_intake_accepts_valid_payload():
    data = {"contact_email": "a@example.org", "language": "es", "veteran": True}
    assert validate_intake(FIELDS, data) == data


def test_validate_intake_collects_field_errors():
    with pytest.raises(ApiError) as exc:
        validate_intake(FIELDS, {"contact_email": "nope", "language": "fr", "extra": 1})
    err = exc.value
    assert err.code == "CUSTOM_FIELDS_INVALID"
    assert err.http_status == 400
    fields = {x["field"] for x in err.details["errors"]}
    assert "contact_email" in fields
    assert "language" in fields


def test_validate_intake_requires_required_fields():
    with pytest.raises(ApiError) as exc:
        validate_intake(FIELDS, {})
    assert exc.value.details["errors"][0]["message"].startswith("'contact_email'")
