"""Tests for error handling."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from devquery_rest._errors import (
    ApiError,
    ConnectionNotFoundError,
    DatabaseConnectionError,
    OperationTimeoutError,
    QueryError,
    SchemaError,
    admin_forbidden,
    connection_limit_exceeded,
    register_error_handlers,
)


def test_api_error():
    err = ApiError(404, "NotFound", "Resource not found")
    assert err.status_code == 404
    assert err.error_type == "NotFound"
    assert err.message == "Resource not found"


def test_reason_codes_validated():
    assert DatabaseConnectionError("auth", "denied").reason == "auth"
    assert SchemaError("timeout", "slow").reason == "timeout"
    with pytest.raises(ValueError, match="Unknown QueryError reason"):
        QueryError("auth", "wrong family")


def test_to_dict():
    err = QueryError("engine_rejected", "duplicate key")
    assert err.to_dict() == {"type": "QueryError", "reason": "engine_rejected", "message": "duplicate key"}
    assert err.status_code == 400


def test_connection_not_found():
    err = ConnectionNotFoundError("u1_abc")
    assert err.status_code == 404
    assert err.reason == "not_found"
    assert "u1_abc" in err.message


def test_operation_timeout():
    err = OperationTimeoutError("query", 2.5)
    assert err.status_code == 504
    assert err.error_type == "TimeoutError"
    assert err.message == "query timed out after 2.5s"


def test_connection_limit_exceeded():
    err = connection_limit_exceeded("alice", 3)
    assert err.status_code == 403
    assert err.error_type == "ConnectionLimitExceeded"
    assert "alice" in err.message


def test_admin_forbidden():
    err = admin_forbidden()
    assert err.status_code == 403
    assert err.error_type == "Forbidden"


def _app_raising(exc: Exception) -> FastAPI:
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/boom")
    async def boom():
        raise exc

    return app


def test_core_error_rendered_with_reason():
    client = TestClient(_app_raising(QueryError("syntax", "near SELEC")))

    response = client.get("/boom")

    assert response.status_code == 400
    assert response.json() == {
        "status": "error",
        "error": {"type": "QueryError", "reason": "syntax", "message": "near SELEC"},
    }


def test_api_error_rendered_without_reason():
    client = TestClient(_app_raising(admin_forbidden()))

    response = client.get("/boom")

    assert response.status_code == 403
    assert response.json() == {
        "status": "error",
        "error": {"type": "Forbidden", "message": "Admin token missing or invalid"},
    }
