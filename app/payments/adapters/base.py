"""
Processor adapter contract.

Every processor variant implements ProcessorAdapter, translating the generic
"create payment / create refund / verify webhook" operations into its own
protocol. The orchestrator, webhook and refund services only ever talk to
this interface, so adding a provider means adding one subclass and one entry
in payments.adapters.ADAPTERS.

Guarantees every adapter gives its callers:
- Outbound calls use PAYMENT_PROCESSOR_TIMEOUT_SECONDS
- Provider SDK/HTTP exceptions are translated into the ProcessorError family
- Calls go through a per-variant circuit breaker; an open circuit raises
  ProcessorUnavailableError without touching the network
- Credentials are passed in per call and never logged

Usage:
    from payments.adapters import get_adapter

    adapter = get_adapter(config.variant)
    intent = adapter.create_payment(request, config.get_credentials())
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import requests
from django.conf import settings

from core.circuit_breaker import CircuitBreaker, CircuitOpenError
from payments.exceptions import (
    ProcessorAuthenticationError,
    ProcessorError,
    ProcessorRequestError,
    ProcessorTimeoutError,
    ProcessorUnavailableError,
)
from payments.state_machines import WebhookEventType

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping


# =============================================================================
# Data Types
# =============================================================================


@dataclass(frozen=True)
class PaymentRequest:
    """
    Provider-neutral payment creation request.

    Attributes:
        order_id: Order being paid (external reference)
        business_id: Business receiving the funds
        amount_cents: Amount in smallest currency unit
        currency: ISO 4217 code, lowercase
        description: Human-readable description shown by the provider
        idempotency_key: Deterministic key for this (order, processor config, attempt)
        return_url: Where redirect-based checkouts send the customer back
        callback_url: Where the provider posts its server-to-server callback
    """

    order_id: str
    business_id: str
    amount_cents: int
    currency: str
    description: str
    idempotency_key: str
    customer_email: str = ""
    customer_phone: str = ""
    return_url: str = ""
    callback_url: str = ""
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def merchant_reference(self) -> str:
        """Short reference derived from the idempotency key (max 34 chars)."""
        digest = hashlib.sha256(self.idempotency_key.encode()).hexdigest()[:32]
        return f"PF{digest}"


@dataclass
class ProviderPaymentIntent:
    """
    What a provider returned for a created payment.

    Exactly one confirmation artifact is set: ``client_secret`` for in-app
    confirmation or ``payment_url`` for hosted/redirect checkout. Some
    providers (Razorpay checkout) need neither and return everything the
    client needs in ``additional_data``.
    """

    provider_reference: str
    client_secret: str | None = None
    payment_url: str | None = None
    additional_data: dict[str, Any] = field(default_factory=dict)

    @property
    def requires_redirect(self) -> bool:
        return self.payment_url is not None


@dataclass(frozen=True)
class RefundRequest:
    """
    Provider-neutral refund request.

    ``refund_reference`` is our own refund identifier, sent to providers
    that require a merchant-side refund id.
    """

    provider_reference: str
    amount_cents: int
    currency: str
    idempotency_key: str
    refund_reference: str
    provider_charge_id: str = ""
    reason: str = ""


@dataclass
class ProviderRefund:
    provider_refund_id: str
    status: str  # "completed" | "pending"

    COMPLETED = "completed"
    PENDING = "pending"

    @property
    def is_completed(self) -> bool:
        return self.status == self.COMPLETED


@dataclass
class ParsedWebhookEvent:
    """
    A provider webhook normalized to the payment core's vocabulary.

    Attributes:
        event_id: Provider event id (stable across redeliveries)
        event_type: One of WebhookEventType
        raw_type: Event type as the provider named it
        provider_reference: Provider payment id the event targets
        provider_charge_id: Provider-side capture/transaction id, needed
            later for refunds on some providers
        amount_cents: Captured or refunded amount, when the provider sends one
        provider_refund_id: Refund id for refund events
        failure_reason: Provider's failure description for failed payments
    """

    event_id: str
    event_type: str
    raw_type: str = ""
    provider_reference: str = ""
    provider_charge_id: str = ""
    amount_cents: int | None = None
    provider_refund_id: str = ""
    failure_reason: str = ""
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_known(self) -> bool:
        return self.event_type != WebhookEventType.UNKNOWN


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for processor API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The same (operation, entity, attempt) always yields the same key, so a
    retried call is deduplicated by the provider instead of creating a
    second payment intent or refund.

    Example:
        key = IdempotencyKeyGenerator.generate("create_payment", order_id, attempt=2)
        # "create_payment:550e8400-e29b-41d4-a716-446655440000:2:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]
        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Adapter Interface
# =============================================================================


class ProcessorAdapter(ABC):
    """
    Uniform capability interface for one processor variant.

    Subclasses implement the underscore-prefixed network operations plus
    the local webhook operations. The public create_payment, create_refund
    and verify_credentials methods add timing logs and the circuit breaker.
    """

    variant: str = ""

    # Failures that say something about the provider's health
    TRANSIENT_ERRORS: tuple[type[ProcessorError], ...] = (
        ProcessorTimeoutError,
        ProcessorUnavailableError,
    )

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout or settings.PAYMENT_PROCESSOR_TIMEOUT_SECONDS
        self.breaker = CircuitBreaker(
            f"processor:{self.variant}",
            failure_threshold=settings.PAYMENT_CIRCUIT_FAILURE_THRESHOLD,
            recovery_timeout=settings.PAYMENT_CIRCUIT_RECOVERY_TIMEOUT,
        )

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # Public operations
    # =========================================================================

    def create_payment(self, request: PaymentRequest, credentials: Mapping[str, str]) -> ProviderPaymentIntent:
        """
        Create a payment at the provider.

        Raises:
            ProcessorError: Any provider failure (subclass tells which kind)
        """
        return self._guarded(
            "create_payment",
            lambda: self._create_payment(request, credentials),
            {"order_id": request.order_id, "amount_cents": request.amount_cents},
        )

    def create_refund(self, request: RefundRequest, credentials: Mapping[str, str]) -> ProviderRefund:
        return self._guarded(
            "create_refund",
            lambda: self._create_refund(request, credentials),
            {"provider_reference": request.provider_reference, "amount_cents": request.amount_cents},
        )

    def verify_credentials(self, credentials: Mapping[str, str]) -> None:
        """
        Check the credentials against the provider.

        Raises:
            ProcessorAuthenticationError: Credentials were rejected
            ProcessorError: The provider could not be reached
        """
        self._guarded("verify_credentials", lambda: self._verify_credentials(credentials), {})

    @abstractmethod
    def verify_webhook(self, raw_body: bytes, signature: str, credentials: Mapping[str, str]) -> bool:
        """Return True if ``signature`` authenticates ``raw_body`` for these credentials."""

    @abstractmethod
    def parse_webhook(self, raw_body: bytes) -> ParsedWebhookEvent:
        """
        Parse a verified webhook body.

        Raises:
            InvalidWebhookPayloadError: Body is not a recognizable event
        """

    # =========================================================================
    # Provider-specific hooks
    # =========================================================================

    @abstractmethod
    def _create_payment(self, request: PaymentRequest, credentials: Mapping[str, str]) -> ProviderPaymentIntent:
        ...

    @abstractmethod
    def _create_refund(self, request: RefundRequest, credentials: Mapping[str, str]) -> ProviderRefund:
        ...

    @abstractmethod
    def _verify_credentials(self, credentials: Mapping[str, str]) -> None:
        ...

    # =========================================================================
    # Helpers
    # =========================================================================

    def _guarded(self, operation: str, func: Callable[[], Any], log_context: dict[str, Any]) -> Any:
        logger = self.get_logger()
        log_context = {"operation": operation, "variant": self.variant, **log_context}

        start_time = time.time()
        logger.info("Starting processor operation", extra=log_context)

        try:
            with self.breaker.call(trip_on=self.TRANSIENT_ERRORS):
                result = func()
        except CircuitOpenError as e:
            logger.warning("Processor circuit open, call skipped", extra=log_context)
            raise ProcessorUnavailableError(
                f"{self.variant} is temporarily unavailable",
                error_code="CIRCUIT_OPEN",
                variant=self.variant,
            ) from e
        except ProcessorError as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.warning(
                "Processor operation failed",
                extra={
                    **log_context,
                    "duration_ms": duration_ms,
                    "error_code": e.error_code,
                    "provider_code": e.provider_code,
                    "retryable": e.is_retryable,
                },
            )
            raise
        except (KeyError, TypeError, ValueError) as e:
            logger.error(
                "Unexpected response shape from processor",
                extra={**log_context, "error_type": type(e).__name__},
                exc_info=True,
            )
            raise ProcessorUnavailableError(
                f"Unexpected response from {self.variant}",
                error_code="PROCESSOR_BAD_RESPONSE",
                variant=self.variant,
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        logger.info("Processor operation completed", extra={**log_context, "duration_ms": duration_ms})
        return result

    def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        """
        HTTP call with timeout and status-code translation.

        401/403 → ProcessorAuthenticationError, 429/5xx → ProcessorUnavailableError,
        other 4xx → ProcessorRequestError.
        """
        try:
            response = requests.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise ProcessorTimeoutError(
                f"{self.variant} did not respond within {self.timeout}s",
                variant=self.variant,
            ) from e
        except requests.RequestException as e:
            raise ProcessorUnavailableError(
                f"Could not connect to {self.variant}",
                variant=self.variant,
                details={"error_type": type(e).__name__},
            ) from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {"data": body}

        status = response.status_code
        if status in (401, 403):
            raise ProcessorAuthenticationError(
                f"{self.variant} rejected the credentials",
                variant=self.variant,
                provider_code=self._provider_code(body),
            )
        if status == 429 or status >= 500:
            raise ProcessorUnavailableError(
                f"{self.variant} returned HTTP {status}",
                variant=self.variant,
                provider_code=self._provider_code(body),
            )
        if status >= 400:
            raise ProcessorRequestError(
                self._provider_message(body) or f"{self.variant} returned HTTP {status}",
                variant=self.variant,
                provider_code=self._provider_code(body),
            )
        return body

    @staticmethod
    def _provider_code(body: dict[str, Any]) -> str | None:
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("code")
        return body.get("code")

    @staticmethod
    def _provider_message(body: dict[str, Any]) -> str:
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("description") or error.get("message") or ""
        return body.get("message") or ""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(variant={self.variant!r}, timeout={self.timeout})"


__all__ = [
    "IdempotencyKeyGenerator",
    "ParsedWebhookEvent",
    "PaymentRequest",
    "ProcessorAdapter",
    "ProviderPaymentIntent",
    "ProviderRefund",
    "RefundRequest",
]
