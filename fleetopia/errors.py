import functools
import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError


log = logging.getLogger("fleetopia.errors")


class AppError(Exception):
    """Base for failures that map to a typed HTTP error body."""

    status_code = 400
    code = "error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class Unauthorized(AppError):
    status_code = 401
    code = "unauthorized"


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"


class NotFound(AppError):
    status_code = 404
    code = "not_found"


class CargoUnavailable(AppError):
    status_code = 409
    code = "cargo_unavailable"


class VehicleUnavailable(AppError):
    status_code = 409
    code = "vehicle_unavailable"


class InvalidTransition(AppError):
    status_code = 409
    code = "invalid_transition"


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"


class PersistenceError(AppError):
    status_code = 503
    code = "persistence_error"


def persistence_guard(action: str):
    """Report store failures inside the wrapped call as `PersistenceError`."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except SQLAlchemyError as e:
                log.error("%s failed in store: %s", action, e)
                raise PersistenceError(f"{action} could not be stored") from e

        return wrapper

    return decorator


def _body(code: str, message: str, details: dict[str, Any] | None = None) -> dict:
    return {"error": {"code": code, "message": message, "details": jsonable_encoder(details or {})}}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=_body(exc.code, exc.message, exc.details))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
    details = {} if isinstance(exc.detail, str) else {"detail": exc.detail}
    return JSONResponse(
        status_code=exc.status_code,
        content=_body(f"http_{exc.status_code}", message, details),
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=_body("validation_error", "Invalid request", {"errors": exc.errors()}),
    )


async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    log.error("unhandled store error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=PersistenceError.status_code, content=_body(PersistenceError.code, "Storage is unavailable"))
