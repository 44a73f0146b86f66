"""Shared error mapping for API v1 route modules."""

from __future__ import annotations

from fastapi import HTTPException, status

from cobuy.core.exceptions import (
    CoBuyException,
    NotFoundError,
    PreconditionFailed,
    StorageError,
    TransportError,
    ValidationError,
)
from cobuy.schemas.common import ErrorEnvelope

_ERROR_STATUS: list[tuple[type[CoBuyException], int, str]] = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_error"),
    (PreconditionFailed, status.HTTP_409_CONFLICT, "precondition_failed"),
    (NotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (StorageError, status.HTTP_503_SERVICE_UNAVAILABLE, "storage_error"),
    (TransportError, status.HTTP_503_SERVICE_UNAVAILABLE, "transport_error"),
]


def error_code(exc: Exception) -> str:
    for error_type, _, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return "internal_error"


def map_domain_error(exc: Exception) -> tuple[int, dict]:
    for error_type, code, name in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return code, ErrorEnvelope(error_code=name, detail=str(exc)).model_dump()
    return (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorEnvelope(error_code="internal_error", detail="Unexpected error.").model_dump(),
    )


def to_http_exception(exc: CoBuyException) -> HTTPException:
    code, detail = map_domain_error(exc)
    return HTTPException(status_code=code, detail=detail)
