"""Error taxonomy and HTTP error handling."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ._models import ErrorDetail, ErrorResponse


class DevQueryError(Exception):
    """Base error for the connection core.

    Every error carries a stable ``reason`` code plus a human-readable message.
    Messages must never contain credentials.
    """

    error_type = "DevQueryError"
    status_code = 400
    reasons: tuple[str, ...] = ()

    def __init__(self, reason: str, message: str):
        if self.reasons and reason not in self.reasons:
            raise ValueError(f"Unknown {self.error_type} reason: '{reason}'")
        self.reason = reason
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"type": self.error_type, "reason": self.reason, "message": self.message}


class DatabaseConnectionError(DevQueryError):
    """Raised when a connection cannot be established."""

    error_type = "ConnectionError"
    reasons = ("auth", "network", "timeout", "unsupported_engine")


class QueryError(DevQueryError):
    """Raised when the engine refuses or fails a statement."""

    error_type = "QueryError"
    reasons = ("syntax", "timeout", "engine_rejected")


class SchemaError(DevQueryError):
    """Raised when schema introspection fails."""

    error_type = "SchemaError"
    reasons = ("unsupported_engine", "engine_rejected", "timeout")


class ConnectionNotFoundError(DevQueryError):
    """Unknown or expired connection key. Callers should reconnect."""

    error_type = "NotFoundError"
    status_code = 404

    def __init__(self, connection_key: str):
        self.connection_key = connection_key
        super().__init__(
            "not_found",
            f"Connection '{connection_key}' not found or expired",
        )


class DuplicateKeyError(DevQueryError):
    """A live entry already exists for the key."""

    error_type = "DuplicateKeyError"
    status_code = 409

    def __init__(self, connection_key: str):
        self.connection_key = connection_key
        super().__init__(
            "duplicate_key",
            f"Connection '{connection_key}' is already registered",
        )


class OperationTimeoutError(DevQueryError):
    """An adapter call did not finish before its deadline."""

    error_type = "TimeoutError"
    status_code = 504

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__("timeout", f"{operation} timed out after {timeout:g}s")


class ApiError(Exception):
    """Custom API error with HTTP status code."""

    def __init__(self, status_code: int, error_type: str, message: str):
        self.status_code = status_code
        self.error_type = error_type
        self.message = message
        super().__init__(message)


def invalid_request(message: str) -> ApiError:
    """Create an invalid request error."""
    return ApiError(400, "InvalidRequest", message)


def connection_limit_exceeded(owner_id: str, limit: int) -> ApiError:
    """Create a per-owner connection quota error."""
    return ApiError(
        403,
        "ConnectionLimitExceeded",
        f"Connection limit reached: owner '{owner_id}' may hold {limit} concurrent connections",
    )


def admin_forbidden() -> ApiError:
    """Create an admin authorization error."""
    return ApiError(403, "Forbidden", "Admin token missing or invalid")


def _error_response(status_code: int, detail: ErrorDetail) -> JSONResponse:
    body = ErrorResponse(error=detail)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def register_error_handlers(app: FastAPI) -> None:
    """Register error handlers on the FastAPI app."""

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
        return _error_response(exc.status_code, ErrorDetail(type=exc.error_type, message=exc.message))

    @app.exception_handler(DevQueryError)
    async def handle_core_error(request: Request, exc: DevQueryError) -> JSONResponse:
        return _error_response(exc.status_code, ErrorDetail(**exc.to_dict()))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        # Only locations and messages; the default body echoes inputs such as passwords
        problems = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
            msg = err.get("msg", "invalid value")
            problems.append(f"{loc}: {msg}" if loc else msg)
        return await handle_api_error(request, invalid_request("; ".join(problems)))
