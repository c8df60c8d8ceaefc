"""
Error taxonomy for work-order mutations and its translation to HTTP responses.

Services raise the typed errors below; ``register_exception_handlers`` turns
them into JSON bodies of the form ``{"error": message, ...}``. Conflicts carry
the current authoritative state under ``current_key`` so callers can reconcile
instead of retrying blindly. Anything else becomes a generic 500.
"""
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Type

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import settings


logger = structlog.get_logger(__name__)


class WorkhubError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_body(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(WorkhubError):
    status_code = 400
    code = "validation_error"


class UnauthorizedError(WorkhubError):
    status_code = 401
    code = "unauthorized"


class ForbiddenError(WorkhubError):
    status_code = 403
    code = "forbidden"


class NotFoundError(WorkhubError):
    status_code = 404
    code = "not_found"


class ConflictError(WorkhubError):
    status_code = 409
    code = "conflict"

    def __init__(self, message: str, current: Any = None, current_key: str = "current"):
        super().__init__(message)
        self.current = current
        self.current_key = current_key

    def to_body(self) -> dict:
        body = super().to_body()
        body[self.current_key] = self.current
        return body


class ImmutableRecordError(WorkhubError):
    code = "immutable_record"


@contextmanager
def conflict_state(schema: Type[BaseModel]) -> Iterator[None]:
    """Render the ORM row carried by a ConflictError through ``schema``."""
    try:
        yield
    except ConflictError as exc:
        if exc.current is not None and not isinstance(exc.current, BaseModel):
            exc.current = schema.model_validate(exc.current)
        raise


async def _workhub_error_handler(request: Request, exc: WorkhubError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", error=exc.message, code=exc.code, method=request.method)
        return _internal_error_response(exc)
    logger.info("request_rejected", code=exc.code, error=exc.message, method=request.method)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_body()))


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "code": ValidationError.code, "details": details},
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", method=request.method, error_type=type(exc).__name__)
    return _internal_error_response(exc)


def _internal_error_response(exc: Exception) -> JSONResponse:
    body = {"error": "Internal server error", "code": "internal_error"}
    if settings.environment == "dev" and settings.expose_errors:
        body["details"] = str(exc)
    return JSONResponse(status_code=500, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WorkhubError, _workhub_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
