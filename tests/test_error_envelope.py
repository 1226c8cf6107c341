"""Error responses share one envelope:

{
    "status": "error",
    "error": {"code": "<stable_code>", "message": "<human_readable>", "details": <object|array|null>},
    "request_id": "<uuid>"
}
"""

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import ValidationError

from authgate.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
    register_exception_handlers,
)
from authgate.api.schemas import Envelope, ErrorBody
from authgate.service.errors import (
    AlreadyExistsError,
    ExpiredTokenError,
    IncorrectCredentialsError,
    InvalidInputError,
    MissingTokenError,
    NotFoundError,
    RevokedTokenError,
    UnexpectedError,
)


class TestErrorBody:
    def test_required_fields(self):
        error = ErrorBody(code="invalid_input", message="bad email")
        assert error.details is None

    def test_unknown_code_rejected(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="teapot", message="no")

    def test_envelope_has_request_id(self):
        first = Envelope(status="error", error=ErrorBody(code="not_found", message="x"))
        second = Envelope(status="error", error=ErrorBody(code="not_found", message="x"))
        assert first.request_id != second.request_id

    def test_envelope_status_pattern(self):
        with pytest.raises(ValidationError):
            Envelope(status="maybe")


class TestStatusMapping:
    def test_known_statuses(self):
        assert _error_code_for_status(409) == "already_exists"
        assert _error_code_for_status(422) == "validation_error"

    def test_unknown_status_falls_back(self):
        assert _error_code_for_status(418) == "server_error"

    def test_every_mapped_code_is_valid(self):
        for code in _STATUS_TO_CODE.values():
            ErrorBody(code=code, message="ok")

    def test_error_response_shape(self):
        response = _error_response(400, "bad input", {"field": "email"}, code="invalid_input")
        body = json.loads(response.body)
        assert response.status_code == 400
        assert body["status"] == "error"
        assert body["error"] == {
            "code": "invalid_input",
            "message": "bad input",
            "details": {"field": "email"},
        }
        assert body["request_id"]


@pytest.mark.parametrize(
    "exc,status,code",
    [
        (InvalidInputError("bad"), 400, "invalid_input"),
        (MissingTokenError("missing"), 400, "missing_token"),
        (IncorrectCredentialsError("nope"), 401, "incorrect_credentials"),
        (ExpiredTokenError("expired"), 401, "expired_token"),
        (RevokedTokenError("revoked"), 401, "revoked_token"),
        (NotFoundError("gone"), 404, "not_found"),
        (AlreadyExistsError("dup"), 409, "already_exists"),
        (UnexpectedError("boom", detail={"backend": "redis"}), 500, "unexpected"),
    ],
)
def test_service_errors_render_envelope(exc, status, code):
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/raise")
    async def raise_error():
        raise exc

    response = TestClient(app).get("/raise")
    assert response.status_code == status
    body = response.json()
    assert body["status"] == "error"
    assert body["error"]["code"] == code
    if status >= 500:
        assert body["error"]["details"] is None


def test_uncaught_exception_is_generic_500():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/boom")
    async def boom():
        raise RuntimeError("database password is hunter2")

    response = TestClient(app, raise_server_exceptions=False).get("/boom")
    assert response.status_code == 500
    body = response.json()
    assert body["error"]["code"] == "server_error"
    assert "hunter2" not in response.text
