"""
Payment-specific exceptions.

Every error surfaced by the payment core is a typed BaseApplicationError so
views can return a consistent JSON body and callers can branch on the class
or on ``error_code``. Domain errors also inherit the core category that
determines their HTTP status (NotFoundError → 404, ConflictError → 409,
ValidationError → 400, ExternalServiceError → 502).

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── PaymentNotFoundError / ProcessorNotFoundError / PayoutNotFoundError
    ├── UnknownPaymentReferenceError - webhook references no known payment
    ├── NoActiveProcessorError - business has nothing to route to
    ├── AllProcessorsExhaustedError - every candidate processor failed
    ├── OrderAlreadyPaidError - order already has a captured payment
    ├── InvalidSignatureError - webhook signature did not verify
    ├── InvalidWebhookPayloadError - webhook body is not a parseable event
    ├── InvalidPaymentStatusError - payment state forbids the operation
    ├── RefundExceedsBalanceError - refund larger than refundable balance
    ├── ScheduleLockedError - settlement already running for the pair
    └── ProcessorError - adapter-level provider failure
        ├── ProcessorAuthenticationError - bad credentials (permanent)
        ├── ProcessorDeclinedError - payment declined (permanent)
        ├── ProcessorRequestError - request rejected (permanent)
        ├── ProcessorTimeoutError - no answer in time (transient)
        └── ProcessorUnavailableError - provider down / circuit open (transient)

    LockAcquisitionError - Distributed lock not acquired (ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (ConflictError)

Usage:
    from payments.exceptions import ProcessorError, RefundExceedsBalanceError

    try:
        adapter.create_payment(request, credentials)
    except ProcessorError as e:
        if e.is_retryable:
            ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """Base exception for all payment operations."""

    default_error_code: str = "PAYMENT_ERROR"


class PaymentNotFoundError(PaymentError, NotFoundError):
    default_error_code: str = "PAYMENT_NOT_FOUND"


class ProcessorNotFoundError(PaymentError, NotFoundError):
    default_error_code: str = "PROCESSOR_NOT_FOUND"


class PayoutNotFoundError(PaymentError, NotFoundError):
    default_error_code: str = "PAYOUT_NOT_FOUND"


class UnknownPaymentReferenceError(PaymentError, NotFoundError):
    """
    A verified webhook referenced a provider payment id we never created.

    Rejected at the boundary without touching state; the provider will
    redeliver, which covers the race where the webhook beats our own
    Payment insert.
    """

    default_error_code: str = "UNKNOWN_PAYMENT_REFERENCE"


class NoActiveProcessorError(PaymentError, ConflictError):
    """The business has no active processor; payment creation must not start."""

    default_error_code: str = "NO_ACTIVE_PROCESSOR"


class AllProcessorsExhaustedError(PaymentError, ExternalServiceError):
    """
    Every candidate processor failed during fallback.

    ``details["attempts"]`` lists each processor tried with its error code.
    """

    default_error_code: str = "ALL_PROCESSORS_EXHAUSTED"


class OrderAlreadyPaidError(PaymentError, ConflictError):
    default_error_code: str = "ORDER_ALREADY_PAID"


class InvalidSignatureError(PaymentError, ValidationError):
    """Webhook signature did not verify against any stored secret (HTTP 400)."""

    default_error_code: str = "INVALID_SIGNATURE"


class InvalidWebhookPayloadError(PaymentError, ValidationError):
    """Webhook body could not be parsed into a provider event (HTTP 400)."""

    default_error_code: str = "INVALID_WEBHOOK_PAYLOAD"


class InvalidPaymentStatusError(PaymentError, ConflictError):
    default_error_code: str = "INVALID_PAYMENT_STATUS"


class RefundExceedsBalanceError(PaymentError, ValidationError):
    default_error_code: str = "REFUND_EXCEEDS_BALANCE"


class ScheduleLockedError(PaymentError, ConflictError):
    """
    Settlement is already running for this business + processor.

    Scheduled runs treat this as "no payout this cycle"; only manual
    triggers ask for it to be raised.
    """

    default_error_code: str = "SCHEDULE_LOCKED"


# =============================================================================
# Processor (adapter) Exceptions
# =============================================================================


class ProcessorError(PaymentError, ExternalServiceError):
    """
    Base exception for failures reported by a processor adapter.

    Adapters translate provider SDK/HTTP errors into this family so raw
    provider exceptions never cross the orchestrator boundary.

    Attributes:
        variant: Processor variant that failed
        provider_code: Provider's own error code, when one was returned
        is_retryable: True for transient failures (timeouts, outages)
    """

    default_error_code: str = "PROCESSOR_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        variant: str | None = None,
        provider_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if variant:
            details["variant"] = variant
        if provider_code:
            details["provider_code"] = provider_code
        super().__init__(message, error_code=error_code, details=details)
        self.variant = variant
        self.provider_code = provider_code


# -----------------------------------------------------------------------------
# Permanent Errors
# -----------------------------------------------------------------------------


class ProcessorAuthenticationError(ProcessorError):
    """Credentials were rejected by the provider (401/403, bad key)."""

    default_error_code: str = "PROCESSOR_AUTH_FAILED"
    is_retryable: bool = False


class ProcessorDeclinedError(ProcessorError):
    default_error_code: str = "PROCESSOR_DECLINED"
    is_retryable: bool = False


class ProcessorRequestError(ProcessorError):
    """The provider rejected the request parameters (other 4xx)."""

    default_error_code: str = "PROCESSOR_REQUEST_INVALID"
    is_retryable: bool = False


# -----------------------------------------------------------------------------
# Transient Errors
# -----------------------------------------------------------------------------


class ProcessorTimeoutError(ProcessorError):
    default_error_code: str = "PROCESSOR_TIMEOUT"
    is_retryable: bool = True


class ProcessorUnavailableError(ProcessorError):
    """Provider outage, 5xx, connection failure or open circuit breaker."""

    default_error_code: str = "PROCESSOR_UNAVAILABLE"
    is_retryable: bool = True


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Another process holds the lock and it couldn't be acquired within
    the timeout (or immediately, for non-blocking locks).
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a state machine transition is not allowed.

    Wraps django-fsm's TransitionNotAllowed in the standard error format.
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


__all__ = [
    # Payment domain
    "PaymentError",
    "PaymentNotFoundError",
    "ProcessorNotFoundError",
    "PayoutNotFoundError",
    "UnknownPaymentReferenceError",
    "NoActiveProcessorError",
    "AllProcessorsExhaustedError",
    "OrderAlreadyPaidError",
    "InvalidSignatureError",
    "InvalidWebhookPayloadError",
    "InvalidPaymentStatusError",
    "RefundExceedsBalanceError",
    "ScheduleLockedError",
    # Processor adapters
    "ProcessorError",
    "ProcessorAuthenticationError",
    "ProcessorDeclinedError",
    "ProcessorRequestError",
    "ProcessorTimeoutError",
    "ProcessorUnavailableError",
    # Concurrency control
    "LockAcquisitionError",
    "InvalidStateTransitionError",
]
