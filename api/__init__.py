"""API modules for HTTP interface."""

from api.base import (
    APIError,
    APIMeta,
    APIResponse,
    FieldError,
    error_response,
    ErrorCodes,
)
