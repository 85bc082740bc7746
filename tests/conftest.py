import json

import pytest

from apiprobe.core.domain.contract import OperationDescriptor, Parameter, ParameterLocation, ResponseSpec
from apiprobe.core.domain.models import HttpResponse, TransportErrorKind, TransportFailure
from apiprobe.core.domain.schema import parse_schema
from apiprobe.core.errors import TransportError


def json_response(status=200, payload=None, content_type="application/json"):
    body = b"" if payload is None else json.dumps(payload).encode("utf-8")
    headers = {"Content-Type": content_type} if content_type else {}
    return HttpResponse(status=status, headers=headers, body=body)


def refused(url="http://api.test"):
    return TransportFailure(
        kind=TransportErrorKind.CONNECTION_REFUSED,
        message=f"Connection Refused: {url}: [Errno 111] Connection refused",
        title="Connection Refused",
    )


class ScriptedTransport:
    """Replays canned results keyed by (method, path template).

    Each key maps to a list consumed front to back; once a list is empty the
    default response is returned. `TransportFailure` items are raised.
    """

    def __init__(self, script=None, default=None):
        self.script = {key: list(items) for key, items in (script or {}).items()}
        self.default = default if default is not None else json_response(200, {})
        self.calls = []

    async def send(self, plan, *, timeout):
        self.calls.append(plan)
        queue = self.script.get((plan.method, plan.endpoint))
        item = queue.pop(0) if queue else self.default
        if isinstance(item, TransportFailure):
            raise TransportError(item)
        return item


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def make_response():
    return json_response


@pytest.fixture
def make_refused():
    return refused


@pytest.fixture
def transport_cls():
    return ScriptedTransport


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def user_operation():
    """GET /users/{id} returning a user object on 200."""

    return OperationDescriptor(
        method="get",
        path_template="/users/{id}",
        path_params=(
            Parameter(
                name="id",
                location=ParameterLocation.PATH,
                schema=parse_schema({"type": "integer", "minimum": 1}),
                required=True,
            ),
        ),
        responses={
            "200": ResponseSpec(
                status_pattern="200",
                content={
                    "application/json": parse_schema(
                        {
                            "type": "object",
                            "required": ["id"],
                            "properties": {
                                "id": {"type": "integer"},
                                "email": {"type": "string", "format": "email"},
                            },
                        }
                    )
                },
            )
        },
        tags=("users",),
        operation_id="getUser",
        summary="Fetch one user",
    )
