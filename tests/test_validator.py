import pytest

from apiprobe.core.domain.contract import OperationDescriptor, ResponseSpec
from apiprobe.core.domain.models import Attempt, HttpResponse
from apiprobe.core.domain.schema import SchemaRegistry, parse_schema
from apiprobe.core.services.validator import ResponseValidator, match_media_type


@pytest.fixture
def validator():
    return ResponseValidator()


def _errors(validator, raw, value, registry=None):
    return validator.validate_value(value, parse_schema(raw), registry or SchemaRegistry())


def test_matching_response_passes(validator, user_operation, make_response):
    response = make_response(200, {"id": 1}, content_type="application/json; charset=utf-8")

    report = validator.validate_response(response, user_operation)

    assert report.passed
    assert report.matched_status == "200"


def test_wrong_property_type_is_reported(validator, user_operation, make_response):
    report = validator.validate_response(make_response(200, {"id": "x"}), user_operation)

    assert not report.passed
    assert report.status_valid and report.content_type_valid
    assert report.schema_errors == ["$.id: expected integer, got string"]


def test_missing_required_property(validator, user_operation, make_response):
    report = validator.validate_response(make_response(200, {"email": "a@b.io"}), user_operation)

    assert report.schema_errors == ["$: missing required property 'id'"]


def test_undeclared_status_without_default(validator, user_operation, make_response):
    report = validator.validate_response(make_response(404, {"error": "nope"}), user_operation)

    assert report.status_valid is False
    assert report.schema_errors == ["status 404 not defined in spec"]


def test_default_response_covers_other_statuses(validator, make_response):
    op = OperationDescriptor(
        method="GET",
        path_template="/x",
        responses={
            "200": ResponseSpec("200"),
            "default": ResponseSpec(
                "default",
                content={"application/json": parse_schema({"type": "object", "required": ["message"]})},
            ),
        },
    )

    report = validator.validate_response(make_response(500, {"message": "boom"}), op)

    assert report.passed
    assert report.matched_status == "default"


def test_operation_without_responses_passes_trivially(validator, make_response):
    op = OperationDescriptor(method="GET", path_template="/x")

    assert validator.validate_response(make_response(418, None, content_type=""), op).passed


def test_content_type_mismatch(validator, user_operation):
    response = HttpResponse(status=200, headers={"content-type": "text/html"}, body=b"<html/>")

    report = validator.validate_response(response, user_operation)

    assert report.content_type_valid is False
    assert report.schema_errors == ["content-type 'text/html' not defined in spec"]


def test_missing_content_type_is_assumed_json(validator, user_operation, make_response):
    assert validator.validate_response(make_response(200, {"id": 3}, content_type=""), user_operation).passed


def test_json_suffix_and_wildcards():
    assert match_media_type("application/problem+json", {"application/json": None}) == "application/json"
    assert match_media_type("text/csv", {"text/*": None}) == "text/*"
    assert match_media_type("image/png", {"*/*": None}) == "*/*"
    assert match_media_type("image/png", {"application/json": None}) is None


def test_invalid_json_body(validator, user_operation):
    response = HttpResponse(status=200, headers={"Content-Type": "application/json"}, body=b"{not json")

    report = validator.validate_response(response, user_operation)

    assert len(report.schema_errors) == 1
    assert report.schema_errors[0].startswith("$: response body is not valid JSON")


def test_transport_failure_has_no_report(validator, user_operation, make_refused):
    attempt = Attempt(attempt_number=1, start_time=0.0, end_time=0.1, error=make_refused())

    assert validator.validate(attempt, user_operation) is None


def test_errors_are_collected_not_short_circuited(validator):
    raw = {
        "type": "array",
        "items": {
            "type": "object",
            "required": ["id"],
            "properties": {"id": {"type": "integer"}, "mail": {"type": "string", "format": "email"}},
        },
    }

    errors = _errors(validator, raw, [{"id": 1}, {"mail": "nope"}, {"id": "2"}])

    assert errors == [
        "$[1]: missing required property 'id'",
        "$[1].mail: 'nope' is not a valid email",
        "$[2].id: expected integer, got string",
    ]


def test_booleans_are_not_integers_but_ints_are_numbers(validator):
    assert _errors(validator, {"type": "integer"}, True) == ["$: expected integer, got boolean"]
    assert _errors(validator, {"type": "number"}, 3) == []


@pytest.mark.parametrize(
    "raw, value",
    [
        ({"type": "integer", "minimum": 0, "exclusiveMinimum": True}, 0),
        ({"type": "integer", "maximum": 10}, 11),
        ({"type": "number", "multipleOf": 0.5}, 0.3),
        ({"type": "string", "minLength": 3}, "ab"),
        ({"type": "string", "pattern": "^[a-z]+$"}, "ABC"),
        ({"type": "string", "format": "uuid"}, "not-a-uuid"),
        ({"type": "string", "format": "date-time"}, "2024-13-01"),
        ({"type": "string", "enum": ["a", "b"]}, "c"),
        ({"type": "array", "items": {"type": "integer"}, "uniqueItems": True}, [1, 1]),
        ({"type": "array", "minItems": 2}, [1]),
        ({"type": "object", "properties": {}, "additionalProperties": False}, {"x": 1}),
        ({"type": "string"}, None),
    ],
)
def test_single_violation(validator, raw, value):
    assert len(_errors(validator, raw, value)) == 1


@pytest.mark.parametrize(
    "raw, value",
    [
        ({"type": "string", "format": "date-time"}, "2024-01-01T00:00:00Z"),
        ({"type": "string", "format": "date"}, "2024-02-29"),
        ({"type": "string", "format": "uri"}, "https://example.com/a"),
        ({"type": "string", "nullable": True}, None),
        ({"type": "number", "multipleOf": 0.5}, 1.5),
        ({"type": "integer"}, 2.0),
        ({"type": "integer", "minimum": 0, "exclusiveMinimum": True}, 1),
        ({"type": "string", "pattern": "([unclosed"}, "anything"),
    ],
)
def test_valid_values(validator, raw, value):
    assert _errors(validator, raw, value) == []


def test_compositions(validator):
    one_of = {"oneOf": [{"type": "integer"}, {"type": "number"}]}
    any_of = {"anyOf": [{"type": "string"}, {"type": "boolean"}]}
    all_of = {
        "allOf": [
            {"type": "object", "required": ["a"]},
            {"type": "object", "required": ["b"]},
        ]
    }

    assert _errors(validator, one_of, 1.5) == []
    assert _errors(validator, one_of, 2) == ["$: matches 2 oneOf branches, expected exactly 1"]
    assert _errors(validator, any_of, 5) == ["$: does not match any anyOf branch"]
    assert _errors(validator, all_of, {"a": 1}) == ["$: missing required property 'b'"]


def test_recursive_schema_validates_deep_values(validator):
    registry = SchemaRegistry()
    registry.register(
        "Tree",
        parse_schema(
            {
                "type": "object",
                "required": ["value"],
                "properties": {
                    "value": {"type": "integer"},
                    "children": {"type": "array", "items": {"$ref": "#/components/schemas/Tree"}},
                },
            }
        ),
    )
    tree = {"value": 1, "children": [{"value": 2, "children": [{"value": "three"}]}]}

    errors = _errors(validator, {"$ref": "#/components/schemas/Tree"}, tree, registry)

    assert errors == ["$.children[0].children[0].value: expected integer, got string"]


@pytest.mark.parametrize(
    "raw, value",
    [
        ({"enum": [1, 2]}, True),
        ({"enum": [0]}, False),
        ({"enum": [True]}, 1),
    ],
)
def test_enum_does_not_confuse_booleans_with_numbers(validator, raw, value):
    errors = _errors(validator, raw, value)

    assert len(errors) == 1
    assert errors[0].startswith(f"$: {value!r} is not one of")


def test_enum_accepts_listed_number(validator):
    assert _errors(validator, {"enum": [1, 2]}, 2) == []


def test_unexpected_properties_are_listed_one_by_one(validator):
    raw = {"type": "object", "properties": {"id": {"type": "integer"}}, "additionalProperties": False}

    errors = _errors(validator, raw, {"id": 1, "x": 1, "y": 2})

    assert errors == ["$: unexpected property 'x'", "$: unexpected property 'y'"]


def test_nullable_reference(validator):
    registry = SchemaRegistry()
    registry.register("Owner", parse_schema({"type": "object", "required": ["name"]}))
    raw = {
        "type": "object",
        "properties": {"owner": {"$ref": "#/components/schemas/Owner", "nullable": True}},
    }

    assert _errors(validator, raw, {"owner": None}, registry) == []
    assert _errors(validator, raw, {"owner": {}}, registry) == ["$.owner: does not match any anyOf branch"]


def test_unresolved_reference_is_reported(validator):
    errors = _errors(validator, {"$ref": "#/components/schemas/Missing"}, {"id": 1})

    assert errors == ["$: unresolved reference #/components/schemas/Missing"]


def test_deeply_nested_data_is_checked_to_the_bottom(validator):
    registry = SchemaRegistry()
    registry.register(
        "Node",
        parse_schema(
            {
                "type": "object",
                "properties": {"value": {"type": "integer"}, "next": {"$ref": "#/components/schemas/Node"}},
            }
        ),
    )
    data = {"value": "bottom"}
    for _ in range(40):
        data = {"value": 1, "next": data}

    errors = _errors(validator, {"$ref": "#/components/schemas/Node"}, data, registry)

    assert errors == ["$" + ".next" * 40 + ".value: expected integer, got string"]
