"""
Error types for the SafeTails API.

Every failure leaves the API as the standard envelope
``{"success": false, "message": ..., "error": ...}``. Handlers raise one of the
classes below and the exception handlers registered by ``register_handlers``
do the translation.
"""
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError


class ApiError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, error: Optional[str] = None, status_code: Optional[int] = None, **extra: Any):
        self.message = message or self.default_message
        self.error = error
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message}
        if self.error:
            body["error"] = self.error
        body.update(self.extra)
        return body


class AuthenticationRequired(ApiError):
    status_code = 401
    default_message = "Not authenticated"


class InvalidToken(AuthenticationRequired):
    default_message = "Invalid authentication token"


class Forbidden(ApiError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class ValidationFailed(ApiError):
    status_code = 400
    default_message = "Validation failed"

    @classmethod
    def from_errors(cls, errors):
        """Build from a pydantic ``errors()`` list."""
        return cls(errors=field_messages(errors))


class Conflict(ApiError):
    status_code = 409
    default_message = "Already exists"


class AccountBlocked(ApiError):
    """403 carrying the distinguished ``error`` the client uses to force a logout."""

    status_code = 403
    default_message = "Your account has been blocked by an administrator."

    def __init__(self, message: Optional[str] = None, reason: Optional[str] = None):
        extra = {"reason": reason} if reason else {}
        super().__init__(message, error="Account is blocked", **extra)


class TooManyRequests(ApiError):
    status_code = 429
    default_message = "Too many requests"


class InternalError(ApiError):
    pass


def field_messages(errors):
    messages = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        msg = err.get("msg", "Invalid value")
        messages.append(f"{loc}: {msg}" if loc else msg)
    return messages


def register_handlers(app: FastAPI, on_unexpected=None):
    """Install the envelope translation for every error the API can raise.

    ``on_unexpected(request, exc)`` is called for uncaught exceptions before the
    generic 500 body is returned; the exception text itself never leaves the
    server.
    """

    @app.exception_handler(ApiError)
    def _api_error(request: Request, exc: ApiError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    def _validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Validation failed", "errors": field_messages(exc.errors())},
        )

    @app.exception_handler(DuplicateKeyError)
    def _duplicate_key(request: Request, exc: DuplicateKeyError):
        return JSONResponse(status_code=409, content={"success": False, "message": "Duplicate record"})

    @app.exception_handler(Exception)
    def _unexpected(request: Request, exc: Exception):
        if on_unexpected is not None:
            on_unexpected(request, exc)
        return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})
