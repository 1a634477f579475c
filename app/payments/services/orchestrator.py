"""
Payment orchestrator: entry point for creating a payment for an order.

Walks the registry's candidate list in order, calling each processor's
adapter until one accepts the payment. A processor that fails is marked
failed (taking it out of selection for later payments) and the next
candidate is tried. Nothing here waits for confirmation; the payment is
driven to its terminal state by webhooks.

Flow:
    1. Validate the order
    2. Take the per-order lock
    3. Refuse orders that already have a captured payment
    4. Try candidates one by one (bounded: each active processor in the
       order currency once), refreshing the lock before each call
    5. Persist the Payment for the first processor that accepted

Usage:
    from payments.services import OrderInfo, PaymentOrchestrator

    result = PaymentOrchestrator().create_payment(
        OrderInfo(
            order_id=order.id,
            business_id=business.id,
            amount_cents=10000,
            currency="usd",
            description="Order #1042",
        ),
        business_id=business.id,
    )
    result.client_secret or result.payment_url
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import IntegrityError, transaction

from core.exceptions import ValidationError
from core.services import BaseService
from payments.adapters import IdempotencyKeyGenerator, PaymentRequest, get_adapter
from payments.exceptions import (
    AllProcessorsExhaustedError,
    LockAcquisitionError,
    NoActiveProcessorError,
    OrderAlreadyPaidError,
    PaymentNotFoundError,
    ProcessorError,
)
from payments.locks import order_lock
from payments.models import Payment
from payments.services.registry import ProcessorRegistry

if TYPE_CHECKING:
    from collections.abc import Mapping

    from payments.adapters.base import ProcessorAdapter, ProviderPaymentIntent
    from payments.models import PaymentProcessorConfig


CURRENCY_PATTERN = re.compile(r"^[A-Za-z]{3}$")


# =============================================================================
# Parameter & Result Types
# =============================================================================


@dataclass
class OrderInfo:
    """
    The order being paid, as supplied by the ordering system.

    Attributes:
        order_id: External order id
        business_id: Business that owns the order
        amount_cents: Amount in smallest currency unit (positive integer)
        currency: ISO 4217 code
        description: Shown to the customer by the processor
    """

    order_id: uuid.UUID | str
    business_id: uuid.UUID | str
    amount_cents: int
    currency: str
    description: str
    customer_email: str = ""
    customer_phone: str = ""

    def validate(self, business_id: uuid.UUID | str) -> None:
        """
        Raises:
            ValidationError: Listing each invalid field
        """
        errors: dict[str, str] = {}

        for name in ("order_id", "business_id"):
            try:
                uuid.UUID(str(getattr(self, name)))
            except ValueError:
                errors[name] = "must be a UUID"

        if isinstance(self.amount_cents, bool) or not isinstance(self.amount_cents, int):
            errors["amount_cents"] = "must be an integer amount in minor units"
        elif self.amount_cents <= 0:
            errors["amount_cents"] = "must be positive"

        if not CURRENCY_PATTERN.match(self.currency or ""):
            errors["currency"] = "must be a 3-letter ISO 4217 code"

        if not (self.description or "").strip():
            errors["description"] = "is required"

        if "business_id" not in errors and str(self.business_id) != str(business_id):
            errors["business_id"] = "does not match the business creating the payment"

        if errors:
            raise ValidationError(
                "Invalid order",
                error_code="INVALID_ORDER",
                details={"fields": errors},
            )


@dataclass
class PaymentIntentResult:
    """
    What the client needs to confirm a created payment.

    client_secret is set for in-app confirmation, payment_url for
    redirect checkout; additional_data carries provider-specific fields
    (Razorpay order id and key id, Paytm form parameters).
    """

    payment: Payment
    client_secret: str | None = None
    payment_url: str | None = None
    additional_data: dict[str, Any] = field(default_factory=dict)

    @property
    def requires_redirect(self) -> bool:
        return self.payment_url is not None


# =============================================================================
# Payment Orchestrator
# =============================================================================


class PaymentOrchestrator(BaseService):
    """
    Creates payments with deterministic processor fallback.

    Args:
        registry: ProcessorRegistry used for selection and health updates
        adapters: Optional variant -> adapter mapping (tests inject fakes)
    """

    def __init__(
        self,
        registry: ProcessorRegistry | None = None,
        adapters: Mapping[str, ProcessorAdapter] | None = None,
    ):
        self.adapters = adapters
        self.registry = registry or ProcessorRegistry(adapters=adapters)

    def create_payment(
        self,
        order: OrderInfo,
        business_id: uuid.UUID | str,
        preferred_processor_id: uuid.UUID | str | None = None,
        options: dict[str, Any] | None = None,
    ) -> PaymentIntentResult:
        """
        Create a payment for an order through the first processor that accepts it.

        Args:
            order: The order to collect money for
            business_id: Business creating the payment (must own the order)
            preferred_processor_id: Processor to try first, if active
            options: return_url and metadata forwarded to the adapter

        Raises:
            ValidationError: Invalid order
            OrderAlreadyPaidError: The order already has a captured payment
            NoActiveProcessorError: No active processor settles the order currency
            AllProcessorsExhaustedError: Every candidate processor failed
            LockAcquisitionError: Another creation for the order is in progress,
                or the lock expired between processor calls
        """
        order.validate(business_id)
        options = options or {}

        logger = self.get_logger()
        logger.info(
            "Creating payment",
            extra={
                "order_id": str(order.order_id),
                "business_id": str(business_id),
                "amount_cents": order.amount_cents,
                "preferred_processor_id": str(preferred_processor_id) if preferred_processor_id else None,
            },
        )

        with order_lock(order.order_id) as lock:
            if Payment.objects.filter(order_id=order.order_id).captured().exists():
                raise OrderAlreadyPaidError(
                    f"Order {order.order_id} is already paid",
                    details={"order_id": str(order.order_id)},
                )

            candidates = self.registry.candidates(business_id, preferred_processor_id, currency=order.currency)
            if not candidates:
                raise NoActiveProcessorError(
                    f"No active payment processor settles {order.currency.upper()} for this business",
                    details={"business_id": str(business_id), "currency": order.currency.lower()},
                )

            prior_payments = Payment.objects.filter(order_id=order.order_id).count()
            attempts: list[dict[str, Any]] = []

            for index, config in enumerate(candidates):
                attempt = index + 1
                request = self._build_request(order, config, prior_payments, options)
                adapter = get_adapter(config.variant, self.adapters)

                # A processor call can run for the full timeout; restart the TTL first.
                if not lock.extend():
                    raise LockAcquisitionError(
                        f"Lost lock '{lock.key}' before calling {config.variant}",
                        details={"key": lock.key, "order_id": str(order.order_id)},
                    )

                try:
                    intent = adapter.create_payment(request, config.get_credentials())
                except ProcessorError as e:
                    logger.warning(
                        "Processor failed, falling back",
                        extra={
                            "order_id": str(order.order_id),
                            "processor_id": str(config.id),
                            "variant": config.variant,
                            "attempt": attempt,
                            "error_code": e.error_code,
                            "provider_code": e.provider_code,
                        },
                    )
                    self.registry.mark_failed(config, str(e))
                    attempts.append(
                        {
                            "processor_id": str(config.id),
                            "variant": config.variant,
                            "error_code": e.error_code,
                            "error": str(e),
                        }
                    )
                    continue

                payment = self._record_payment(order, config, request, intent)
                self.registry.mark_used(config)

                logger.info(
                    "Payment created",
                    extra={
                        "payment_id": str(payment.id),
                        "order_id": str(order.order_id),
                        "processor_id": str(config.id),
                        "variant": config.variant,
                        "status": payment.status,
                        "attempt": attempt,
                        "fallbacks": len(attempts),
                    },
                )
                return PaymentIntentResult(
                    payment=payment,
                    client_secret=intent.client_secret,
                    payment_url=intent.payment_url,
                    additional_data=intent.additional_data,
                )

        logger.error(
            "All processors exhausted",
            extra={"order_id": str(order.order_id), "attempts": len(attempts)},
        )
        raise AllProcessorsExhaustedError(
            "Every configured payment processor failed",
            details={"order_id": str(order.order_id), "attempts": attempts},
        )

    def get_payment(
        self,
        payment_id: uuid.UUID | str,
        business_id: uuid.UUID | str | None = None,
    ) -> Payment:
        queryset = Payment.objects.select_related("processor")
        if business_id is not None:
            queryset = queryset.filter(business_id=business_id)
        try:
            return queryset.get(id=payment_id)
        except Payment.DoesNotExist:
            raise PaymentNotFoundError(
                f"Payment {payment_id} not found",
                details={"payment_id": str(payment_id)},
            ) from None

    # =========================================================================
    # Helpers
    # =========================================================================

    def _build_request(
        self,
        order: OrderInfo,
        config: PaymentProcessorConfig,
        prior_payments: int,
        options: dict[str, Any],
    ) -> PaymentRequest:
        """
        The idempotency key is scoped to (order, processor config) and numbered
        by the payments already recorded for the order, so a create retried
        after a crash reaches the same processor with the same key.
        """
        base = settings.PAYMENT_CALLBACK_BASE_URL.rstrip("/")
        return PaymentRequest(
            order_id=str(order.order_id),
            business_id=str(order.business_id),
            amount_cents=order.amount_cents,
            currency=order.currency.lower(),
            description=order.description,
            idempotency_key=IdempotencyKeyGenerator.generate(
                "create_payment", f"{order.order_id}:{config.id}", prior_payments + 1
            ),
            customer_email=order.customer_email,
            customer_phone=order.customer_phone,
            return_url=options.get("return_url") or "",
            callback_url=f"{base}/api/v1/payments/webhooks/{config.variant}/{config.id}/",
            metadata={str(k): str(v) for k, v in (options.get("metadata") or {}).items()},
        )

    def _record_payment(
        self,
        order: OrderInfo,
        config: PaymentProcessorConfig,
        request: PaymentRequest,
        intent: ProviderPaymentIntent,
    ) -> Payment:
        """
        Persist the accepted payment.

        A provider replaying an idempotent create returns a reference we
        already stored; that row is returned instead of a duplicate.
        """
        existing = Payment.objects.filter(
            processor_variant=config.variant,
            provider_reference=intent.provider_reference,
        ).first()
        if existing is not None:
            return existing

        payment = Payment(
            order_id=order.order_id,
            business_id=order.business_id,
            processor=config,
            processor_variant=config.variant,
            provider_reference=intent.provider_reference,
            idempotency_key=request.idempotency_key,
            amount_cents=order.amount_cents,
            currency=order.currency.lower(),
            description=order.description[:500],
            processor_fee_cents=config.fee_for(order.amount_cents),
            metadata=dict(request.metadata),
        )
        if not intent.requires_redirect:
            # In-app confirmation starts as soon as the client has the secret
            payment.start_processing()

        try:
            with transaction.atomic():
                payment.save()
        except IntegrityError:
            existing = Payment.objects.filter(
                processor_variant=config.variant,
                provider_reference=intent.provider_reference,
            ).first()
            if existing is None:
                raise
            return existing

        return payment
