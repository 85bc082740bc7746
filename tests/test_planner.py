import json

import pytest

from apiprobe.adapters.auth import BearerAuth
from apiprobe.core.domain.contract import OperationDescriptor, Parameter, ParameterLocation
from apiprobe.core.domain.schema import parse_schema
from apiprobe.core.services.planner import (
    RequestPlanner,
    merge_headers,
    render_scalar,
    serialize_body,
)
from apiprobe.core.services.sampler import SchemaSampler


def _param(name, location, raw, example=None):
    return Parameter(name=name, location=location, schema=parse_schema(raw), required=True, example=example)


@pytest.fixture
def planner():
    return RequestPlanner("https://api.example.com/", sampler=SchemaSampler(optional_probability=0.0))


def test_path_tokens_are_substituted_and_quoted(planner):
    op = OperationDescriptor(
        method="GET",
        path_template="/users/{id}/posts/{postId}",
        path_params=(
            _param("id", ParameterLocation.PATH, {"type": "integer", "minimum": 7}),
            _param("postId", ParameterLocation.PATH, {"type": "string"}, example="abc def"),
        ),
    )

    plan = planner.plan(op, index=3)

    assert plan.url == "https://api.example.com/users/7/posts/abc%20def"
    assert plan.endpoint == "/users/{id}/posts/{postId}"
    assert plan.index == 3
    assert plan.body is None


def test_undeclared_path_token_uses_placeholder(planner):
    op = OperationDescriptor(method="DELETE", path_template="/items/{itemId}")

    assert planner.plan(op).url == "https://api.example.com/items/1"


def test_query_string_from_declared_params(planner):
    op = OperationDescriptor(
        method="GET",
        path_template="/search",
        query_params=(
            _param("limit", ParameterLocation.QUERY, {"type": "integer"}, example=10),
            _param("tags", ParameterLocation.QUERY, {"type": "array", "items": {"type": "string"}}),
            _param("active", ParameterLocation.QUERY, {"type": "boolean"}),
        ),
    )

    plan = planner.plan(op)

    assert plan.url == "https://api.example.com/search?limit=10&tags=sample%2Csample&active=true"


def test_no_query_means_no_question_mark(planner):
    op = OperationDescriptor(method="GET", path_template="/health")

    assert planner.plan(op).url == "https://api.example.com/health"


def test_body_only_for_body_methods(planner):
    schema = parse_schema({"type": "object", "required": ["name"], "properties": {"name": {"type": "string"}}})
    get = OperationDescriptor(method="GET", path_template="/pets", body_schema=schema)
    post = OperationDescriptor(method="POST", path_template="/pets", body_schema=schema)

    assert planner.plan(get).body is None
    plan = planner.plan(post)
    assert json.loads(plan.body) == {"name": "sample"}
    assert plan.headers["Content-Type"] == "application/json"


def test_declared_body_example_wins(planner):
    op = OperationDescriptor(
        method="PUT",
        path_template="/pets/{id}",
        body_schema=parse_schema({"type": "object", "properties": {"name": {"type": "string"}}}),
        body_example={"name": "Rex"},
    )

    assert json.loads(planner.plan(op).body) == {"name": "Rex"}


def test_caller_headers_override_defaults_case_insensitively():
    op = OperationDescriptor(
        method="GET",
        path_template="/x",
        header_params=(_param("X-Request-Id", ParameterLocation.HEADER, {"type": "string"}, example="abc"),),
    )
    planner = RequestPlanner("http://h", headers={"accept": "text/plain", "X-Request-Id": "mine"})

    headers = planner.plan(op).headers

    assert headers == {"accept": "text/plain", "X-Request-Id": "mine"}


def test_decorator_runs_last():
    op = OperationDescriptor(method="GET", path_template="/me")
    planner = RequestPlanner("http://h", headers={"Authorization": "Bearer old"}, decorator=BearerAuth("new"))

    assert planner.plan(op).headers["Authorization"] == "Bearer new"


@pytest.mark.parametrize(
    "value, expected",
    [(True, "true"), (False, "false"), (None, ""), (3.0, "3"), (2.5, "2.5"), ([1, 2], "1,2"), ({"a": 1}, '{"a":1}')],
)
def test_render_scalar(value, expected):
    assert render_scalar(value) == expected


def test_serialize_body_per_media_type():
    assert serialize_body({"a": 1}, "application/vnd.api+json") == b'{"a": 1}'
    assert serialize_body({"a": 1, "b": True}, "application/x-www-form-urlencoded") == b"a=1&b=true"
    assert serialize_body("plain", "text/plain; charset=utf-8") == b"plain"


def test_merge_headers_keeps_latest_spelling():
    assert merge_headers({"Accept": "a"}, None, {"ACCEPT": "b"}) == {"ACCEPT": "b"}
