from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class ConflictError(ApiError):
    """Caller-correctable state conflict (already clocked in, locked entry, ...)."""

    def __init__(self, code: str, message: str):
        super().__init__(409, code, message)


class AuthorizationError(ApiError):
    def __init__(self, code: str, message: str):
        super().__init__(403, code, message)


class ValidationFailedError(ApiError):
    def __init__(self, code: str, message: str):
        super().__init__(422, code, message)


class NotFoundError(ApiError):
    def __init__(self, code: str, message: str):
        super().__init__(404, code, message)


class TransientError(ApiError):
    """Store timeout or contention. Safe to retry."""

    def __init__(self, code: str = "STORE_UNAVAILABLE", message: str = "Store temporarily unavailable."):
        super().__init__(503, code, message)


def already_clocked_in() -> ConflictError:
    return ConflictError("ALREADY_CLOCKED_IN", "Already clocked in.")


def not_clocked_in() -> ConflictError:
    return ConflictError("NOT_CLOCKED_IN", "Not clocked in.")


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
