"""Global exception handlers for FastAPI."""

import logging

import psycopg2
import psycopg2.pool
import redis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import FieldError, error_response, ErrorCodes
from auth.exceptions import (
    AuthError,
    DeviceNotFoundError,
    EmailNotConfirmedError,
    InvalidCodeError,
    InvalidCredentialsError,
    UserAlreadyExistsError,
)

logger = logging.getLogger(__name__)

# Storage failures that are worth retrying
TRANSIENT_ERRORS = (
    redis.ConnectionError,
    redis.TimeoutError,
    psycopg2.OperationalError,
    # Every pooled connection checked out
    psycopg2.pool.PoolError,
)

# (exception, status, code, message). First isinstance match wins; anything
# else under AuthError is an opaque 401.
_AUTH_ERRORS = [
    (InvalidCredentialsError, 401, ErrorCodes.INVALID_CREDENTIALS, "Invalid login or password"),
    (EmailNotConfirmedError, 401, ErrorCodes.EMAIL_NOT_CONFIRMED, "Email is not confirmed"),
    (InvalidCodeError, 400, ErrorCodes.INVALID_CODE, "Code is invalid, expired or already used"),
    (DeviceNotFoundError, 404, ErrorCodes.NOT_FOUND, "Device not found"),
]


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _json_error(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: list[FieldError] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content=error_response(
            code, message, details=details, request_id=_request_id(request)
        ).model_dump(mode="json", exclude_none=True),
    )


def _field_name(loc: tuple) -> str:
    """Last meaningful part of a pydantic error location."""
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header", "cookie")]
    return parts[-1] if parts else "body"


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(UserAlreadyExistsError)
    async def user_exists_handler(request: Request, exc: UserAlreadyExistsError):
        return _json_error(
            request,
            400,
            ErrorCodes.VALIDATION_ERROR,
            "Invalid input",
            details=[FieldError(field=exc.field, message=str(exc))],
        )

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        for exc_type, status_code, code, message in _AUTH_ERRORS:
            if isinstance(exc, exc_type):
                return _json_error(request, status_code, code, message)

        # Token, session and guard failures all look the same from outside
        logger.info(f"Unauthorized: {type(exc).__name__}")
        return _json_error(request, 401, ErrorCodes.NOT_AUTHENTICATED, "Authentication required")

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = [
            FieldError(field=_field_name(tuple(err.get("loc", ()))), message=err.get("msg", "Invalid value"))
            for err in exc.errors()
        ]
        return _json_error(request, 400, ErrorCodes.VALIDATION_ERROR, "Invalid input", details=details)

    for transient in TRANSIENT_ERRORS:

        @app.exception_handler(transient)
        async def transient_error_handler(request: Request, exc: Exception):
            logger.error(f"Storage unavailable: {type(exc).__name__}: {exc}")
            return _json_error(
                request,
                503,
                ErrorCodes.SERVICE_UNAVAILABLE,
                "Service temporarily unavailable, please retry",
                headers={"Retry-After": "1"},
            )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _json_error(request, 500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")
