import logging
from contextlib import contextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class ApiError(Exception):
    kind = "ApiError"
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ApiError):
    kind = "ValidationError"
    status_code = 400


class AccessDenied(ApiError):
    """Sign-in required, or the caller does not own the resource."""

    kind = "AccessDenied"
    status_code = 403


class InvalidReference(ApiError):
    """A referenced idea or parent comment does not exist."""

    kind = "InvalidReference"
    status_code = 404


class NotFound(ApiError):
    kind = "NotFound"
    status_code = 404


class InternalError(ApiError):
    kind = "InternalError"
    status_code = 500


@contextmanager
def store_errors(action: str):
    """Turn a driver failure during a primary read/write into InternalError."""
    try:
        yield
    except PyMongoError as e:
        logger.error("Store failure while trying to %s", action, exc_info=e)
        raise InternalError(f"Failed to {action}") from e


def error_body(kind: str, message: str) -> dict:
    return {"error": kind, "message": message}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.kind, exc.message))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
            message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
        else:
            message = "Invalid request parameters"
        return JSONResponse(status_code=400, content=error_body(ValidationError.kind, message))
