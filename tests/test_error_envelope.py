"""Tests for the error envelope format and error handling.

Error responses share one stable shape:
{
    "status": "error",
    "error": {
        "code": "<stable_code>",
        "message": "<human_readable>",
        "details": <object|array|null>
    },
    "request_id": "<uuid>"
}
"""

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import ValidationError

from sessionauth import app as app_module
from sessionauth.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
    register_exception_handlers,
)
from sessionauth.api.schemas import Envelope, ErrorBody
from sessionauth.service.errors import (
    ErrorCode,
    InvalidTokenError,
    RefreshTokenError,
    ServerError,
    ServiceError,
)
from sessionauth.service import runtime as runtime_module
from sessionauth.service.runtime import get_runtime, reset_runtime_for_tests
from sessionauth.storage.errors import ConstraintViolation


class TestErrorBody:
    def test_required_fields(self):
        error = ErrorBody(code="invalid_credentials", message="Invalid username or password")
        assert error.code == "invalid_credentials"
        assert error.details is None

    def test_accepts_every_service_code(self):
        for code in ErrorCode:
            assert ErrorBody(code=code.value, message="x").code == code.value

    def test_unknown_code_rejected(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="totally_made_up", message="x")


class TestEnvelope:
    def test_error_envelope_has_request_id(self):
        envelope = Envelope(status="error", error=ErrorBody(code="conflict", message="x"))
        assert envelope.request_id
        assert envelope.data is None

    def test_status_pattern(self):
        with pytest.raises(ValidationError):
            Envelope(status="maybe")


class TestStatusMapping:
    def test_known_statuses(self):
        assert _error_code_for_status(400) == "validation_error"
        assert _error_code_for_status(409) == "conflict"
        assert _error_code_for_status(500) == "server_error"

    def test_unknown_status_falls_back_to_server_error(self):
        assert _error_code_for_status(418) == "server_error"

    def test_every_mapped_code_is_a_valid_error_body_code(self):
        for code in _STATUS_TO_CODE.values():
            ErrorBody(code=code, message="x")

    def test_error_response_body(self):
        response = _error_response(401, "Expired token", code="token_expired")

        body = json.loads(response.body)
        assert response.status_code == 401
        assert body["status"] == "error"
        assert body["error"] == {
            "code": "token_expired",
            "message": "Expired token",
            "details": None,
        }


class TestServiceErrors:
    def test_invalid_token_carries_reason(self):
        error = InvalidTokenError(code=ErrorCode.MALFORMED_TOKEN)
        assert error.status_code == 401
        assert error.error_code == "malformed_token"
        assert error.message == "Invalid token"

    def test_refresh_error_defaults(self):
        error = RefreshTokenError()
        assert error.status_code == 401
        assert error.error_code == "refresh_token_invalid"

    def test_unknown_code_rejected(self):
        with pytest.raises(ValueError):
            ServiceError("x", error_code="nope")


@pytest.fixture
def raising_client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/service")
    def raise_service():
        raise RefreshTokenError(ErrorCode.REFRESH_TOKEN_EXPIRED)

    @app.get("/conflict")
    def raise_conflict():
        raise ConstraintViolation("username already exists", {"username": "alice"})

    @app.get("/server")
    def raise_server():
        raise ServerError("store unavailable")

    @app.get("/boom")
    def raise_unexpected():
        raise RuntimeError("kaboom")

    return TestClient(app, raise_server_exceptions=False)


class TestHandlers:
    def test_service_error(self, raising_client):
        response = raising_client.get("/service")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "refresh_token_expired"

    def test_constraint_violation_is_conflict(self, raising_client):
        response = raising_client.get("/conflict")
        assert response.status_code == 409
        assert response.json()["error"]["details"] == {"username": "alice"}

    def test_server_error(self, raising_client):
        response = raising_client.get("/server")
        assert response.status_code == 500
        assert response.json()["error"]["code"] == "server_error"

    def test_unexpected_error_is_not_an_auth_failure(self, raising_client):
        response = raising_client.get("/boom")
        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "server_error"
        assert "kaboom" not in error["message"]

    def test_unknown_route(self, raising_client):
        response = raising_client.get("/missing")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"


class TestAppErrors:
    def test_malformed_body_is_validation_error(self):
        client = TestClient(app_module.app)
        response = client.post("/api/auth/login", content=b"not json",
                               headers={"Content-Type": "application/json"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"

    def test_store_failure_surfaces_as_server_error(self, monkeypatch):
        runtime = get_runtime()

        def broken_lookup(username):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(runtime.store, "get_user_by_username", broken_lookup)
        client = TestClient(app_module.app, raise_server_exceptions=False)

        response = client.post(
            "/api/auth/login", json={"username": "alice", "password": "Passw0rd!x"}
        )
        assert response.status_code == 500
        assert response.json()["error"]["code"] == "server_error"

    def test_store_init_failure_is_a_server_error(self, monkeypatch):
        def unreachable_store():
            raise OSError("connection refused")

        monkeypatch.setattr(runtime_module, "MemoryStore", unreachable_store)

        with pytest.raises(ServerError) as excinfo:
            reset_runtime_for_tests()
        assert excinfo.value.status_code == 500
        assert excinfo.value.error_code == "server_error"
        assert excinfo.value.detail == {"store_type": "memory"}
        assert isinstance(excinfo.value.__cause__, OSError)
