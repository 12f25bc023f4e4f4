"""Settlement error taxonomy.

Every failure that can cross a boundary is a ``SettlementError`` carrying an
``ErrorKind`` discriminator plus the payload fields that kind needs.  Build
them through the factory functions below rather than the constructor so the
payload for each kind stays consistent.
"""

from __future__ import annotations

import enum
from decimal import Decimal
from typing import Any, Optional


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    STATUS_CONFLICT = "status_conflict"
    PROVIDER = "provider"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    PROCESSING = "processing"
    UNHANDLED = "unhandled"


# Provider error codes that indicate a transient condition.
RETRYABLE_PROVIDER_CODES = frozenset({"NETWORK_ERROR", "TIMEOUT", "TEMPORARY_UNAVAILABLE"})

# Processing stages where a second attempt can reasonably succeed.
RETRYABLE_STAGES = frozenset({"database_save", "external_api_call", "file_operation"})

PROVIDER_USER_MESSAGES: dict[str, str] = {
    "INVALID_REQUEST": "The payout request was rejected as invalid. Please check the details.",
    "UNAUTHORIZED": "Authentication with the payout provider failed. Contact an administrator.",
    "FORBIDDEN": "This operation is not permitted by the payout provider.",
    "NOT_FOUND": "The payout provider could not find the requested resource.",
    "NETWORK_ERROR": "A temporary network error occurred. Please try again shortly.",
    "TIMEOUT": "A temporary network error occurred. Please try again shortly.",
    "TEMPORARY_UNAVAILABLE": "The payout provider is temporarily unavailable. Please try again shortly.",
}
DEFAULT_PROVIDER_MESSAGE = "The payout provider could not process the request. Contact an administrator."


class SettlementError(Exception):
    """A classified settlement failure.

    Attributes:
        kind: Which branch of the taxonomy this error belongs to.
        message: Internal, log-oriented description.
        entity_id: Settlement/seller id the error concerns, if any.
        field_errors: VALIDATION only, field name -> messages.
        global_errors: VALIDATION only, messages not tied to a field.
        current_status: STATUS_CONFLICT only.
        requested_action: STATUS_CONFLICT only.
        provider_code: PROVIDER only, the provider's error code.
        http_status: PROVIDER only, HTTP status the provider answered with.
        requested_amount: INSUFFICIENT_BALANCE only.
        available_amount: INSUFFICIENT_BALANCE only.
        stage: PROCESSING only, the step that failed.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        entity_id: Optional[str] = None,
        field_errors: Optional[dict[str, list[str]]] = None,
        global_errors: Optional[list[str]] = None,
        current_status: Optional[str] = None,
        requested_action: Optional[str] = None,
        provider_code: Optional[str] = None,
        http_status: Optional[int] = None,
        requested_amount: Optional[Decimal] = None,
        available_amount: Optional[Decimal] = None,
        stage: Optional[str] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.entity_id = entity_id
        self.field_errors = field_errors or {}
        self.global_errors = global_errors or []
        self.current_status = current_status
        self.requested_action = requested_action
        self.provider_code = provider_code
        self.http_status = http_status
        self.requested_amount = requested_amount
        self.available_amount = available_amount
        self.stage = stage
        self._retryable = retryable

    @property
    def retryable(self) -> bool:
        """Whether repeating the failed operation may succeed."""
        if self._retryable is not None:
            return self._retryable
        if self.kind is ErrorKind.PROVIDER:
            if self.http_status is not None and self.http_status >= 500:
                return True
            return self.provider_code in RETRYABLE_PROVIDER_CODES
        if self.kind is ErrorKind.PROCESSING:
            return self.stage in RETRYABLE_STAGES
        return False

    @property
    def shortfall(self) -> Optional[Decimal]:
        if self.requested_amount is None or self.available_amount is None:
            return None
        return self.requested_amount - self.available_amount

    def user_message(self) -> str:
        """Caller-safe description of the failure."""
        if self.kind is ErrorKind.VALIDATION:
            lines = ["Please check the submitted data:"]
            for field, errors in self.field_errors.items():
                lines.append(f"- {field}: {', '.join(errors)}")
            lines.extend(f"- {error}" for error in self.global_errors)
            return "\n".join(lines) if len(lines) > 1 else "The submitted data is invalid."
        if self.kind is ErrorKind.NOT_FOUND:
            return f"The requested record could not be found (id: {self.entity_id})."
        if self.kind is ErrorKind.STATUS_CONFLICT:
            return (
                f"Cannot {self.requested_action} while the record is "
                f"{self.current_status}."
            )
        if self.kind is ErrorKind.PROVIDER:
            return PROVIDER_USER_MESSAGES.get(self.provider_code or "", DEFAULT_PROVIDER_MESSAGE)
        if self.kind is ErrorKind.INSUFFICIENT_BALANCE:
            return "The payout account balance is insufficient. Top up the account and retry."
        if self.kind is ErrorKind.PROCESSING:
            if self.stage:
                return f"Settlement processing failed at stage '{self.stage}'."
            return "Settlement processing failed. Please try again shortly."
        return "An unexpected error occurred."

    def __repr__(self) -> str:
        return f"<SettlementError(kind={self.kind.value!r}, message={self.message!r})>"


def validation_error(
    message: str,
    field_errors: Optional[dict[str, list[str]]] = None,
    global_errors: Optional[list[str]] = None,
) -> SettlementError:
    return SettlementError(
        ErrorKind.VALIDATION,
        message,
        field_errors=field_errors,
        global_errors=global_errors,
    )


def not_found(entity: str, entity_id: Any) -> SettlementError:
    return SettlementError(
        ErrorKind.NOT_FOUND,
        f"{entity} not found: {entity_id}",
        entity_id=str(entity_id),
    )


def status_conflict(
    entity_id: Any,
    current_status: str,
    requested_action: str,
) -> SettlementError:
    return SettlementError(
        ErrorKind.STATUS_CONFLICT,
        f"Cannot {requested_action} {entity_id}: current status is {current_status}",
        entity_id=str(entity_id) if entity_id is not None else None,
        current_status=current_status,
        requested_action=requested_action,
    )


def provider_error(
    message: str,
    code: Optional[str] = None,
    http_status: Optional[int] = None,
) -> SettlementError:
    return SettlementError(
        ErrorKind.PROVIDER,
        message,
        provider_code=code,
        http_status=http_status,
    )


def insufficient_balance(
    message: str,
    requested: Optional[Decimal] = None,
    available: Optional[Decimal] = None,
) -> SettlementError:
    return SettlementError(
        ErrorKind.INSUFFICIENT_BALANCE,
        message,
        provider_code="INSUFFICIENT_BALANCE",
        requested_amount=requested,
        available_amount=available,
        retryable=False,
    )


def processing_error(
    message: str,
    stage: Optional[str] = None,
    entity_id: Any = None,
    retryable: Optional[bool] = None,
) -> SettlementError:
    return SettlementError(
        ErrorKind.PROCESSING,
        message,
        stage=stage,
        entity_id=str(entity_id) if entity_id is not None else None,
        retryable=retryable,
    )
