"""Boundary error translation.

``translate_error`` is the single place where internal failures become HTTP
status codes and caller-safe bodies.  Routes call it explicitly from their
``except`` clauses; stack traces and internal messages stay in the logs.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.clock import utcnow
from app.core.errors import ErrorKind, SettlementError
from app.core.logging import get_logger
from app.schemas.error import ErrorResponse

logger = get_logger(__name__)

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.STATUS_CONFLICT: 409,
    ErrorKind.PROVIDER: 422,
    ErrorKind.INSUFFICIENT_BALANCE: 422,
    ErrorKind.PROCESSING: 500,
    ErrorKind.UNHANDLED: 500,
}

_ERROR_LABELS: dict[ErrorKind, str] = {
    ErrorKind.VALIDATION: "Bad Request",
    ErrorKind.NOT_FOUND: "Not Found",
    ErrorKind.STATUS_CONFLICT: "Conflict",
    ErrorKind.PROVIDER: "Provider Error",
    ErrorKind.INSUFFICIENT_BALANCE: "Insufficient Balance",
    ErrorKind.PROCESSING: "Processing Error",
    ErrorKind.UNHANDLED: "Internal Server Error",
}


def classify(exc: BaseException) -> SettlementError:
    """Wrap anything that is not already classified as UNHANDLED."""
    if isinstance(exc, SettlementError):
        return exc
    logger.error("Unhandled error: %s", exc, exc_info=exc)
    return SettlementError(ErrorKind.UNHANDLED, str(exc))


def status_for(error: SettlementError) -> int:
    if error.kind is ErrorKind.PROCESSING:
        return 503 if error.retryable else 500
    return _STATUS_BY_KIND[error.kind]


def _details(error: SettlementError) -> dict[str, Any]:
    if error.kind is ErrorKind.VALIDATION:
        return {"field_errors": error.field_errors, "global_errors": error.global_errors}
    if error.kind is ErrorKind.NOT_FOUND:
        return {"entity_id": error.entity_id}
    if error.kind is ErrorKind.STATUS_CONFLICT:
        return {
            "entity_id": error.entity_id,
            "current_status": error.current_status,
            "requested_action": error.requested_action,
        }
    if error.kind is ErrorKind.PROVIDER:
        return {"provider_code": error.provider_code or "UNKNOWN", "retryable": error.retryable}
    if error.kind is ErrorKind.INSUFFICIENT_BALANCE:
        return {
            "retryable": False,
            "requested_amount": str(error.requested_amount) if error.requested_amount is not None else None,
            "available_amount": str(error.available_amount) if error.available_amount is not None else None,
        }
    if error.kind is ErrorKind.PROCESSING:
        return {"stage": error.stage, "retryable": error.retryable}
    return {}


def translate_error(exc: BaseException, path: Optional[str] = None) -> tuple[int, ErrorResponse]:
    error = classify(exc)
    status = status_for(error)
    if status >= 500:
        logger.error("Request failed: path=%s kind=%s message=%s", path, error.kind.value, error.message)
    else:
        logger.warning("Request rejected: path=%s kind=%s message=%s", path, error.kind.value, error.message)

    body = ErrorResponse(
        timestamp=utcnow(),
        status=status,
        error=_ERROR_LABELS[error.kind],
        message=error.user_message(),
        path=path,
        details=_details(error),
    )
    return status, body


def error_response(exc: BaseException, request: Request) -> JSONResponse:
    status, body = translate_error(exc, request.url.path)
    return JSONResponse(status_code=status, content=body.model_dump(mode="json"))
