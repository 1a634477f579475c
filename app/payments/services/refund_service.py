"""
Refund service for returning money to customers.

A refund always goes back through the processor config and variant that
captured the payment, even if that config has since been marked failed.
Refunds are never routed cross-processor.

Two-phase pattern:
    Lock:    DistributedLock("refund:payment:<id>") serializes refunds per payment
    Phase 1: atomic, payment row locked; validate balance, create Refund (processing)
    Phase 2: adapter call, outside any transaction
    Phase 3: atomic, payment row locked; apply the amount when the processor
             confirmed it, or leave the refund processing for the webhook

Refunds on payments that already belong to a payout create a
SettlementAdjustment; the next payout of the pair deducts it.

Usage:
    from payments.services import RefundService

    result = RefundService().create_refund(payment.id, amount_cents=2500, reason="Cold food")
    result.status  # "completed" or "processing"
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db.models import Sum

from core.exceptions import ValidationError
from core.services import BaseService
from payments.adapters import IdempotencyKeyGenerator, RefundRequest, get_adapter
from payments.exceptions import (
    InvalidPaymentStatusError,
    PaymentNotFoundError,
    ProcessorError,
    RefundExceedsBalanceError,
)
from payments.locks import refund_lock
from payments.models import Payment, Refund, SettlementAdjustment
from payments.state_machines import PAYMENT_REFUNDABLE_STATES, RefundState

if TYPE_CHECKING:
    from collections.abc import Mapping

    from payments.adapters.base import ProcessorAdapter, ProviderRefund


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class RefundResult:
    """
    Outcome of a refund request.

    status is the Refund's state: "completed" when the processor confirmed
    synchronously, "processing" while the refund webhook is awaited.
    """

    refund_id: uuid.UUID
    amount_cents: int
    status: str
    payment: Payment


# =============================================================================
# Shared helpers
# =============================================================================


def in_flight_refund_total(payment: Payment) -> int:
    """Sum of refunds requested or processing against a payment."""
    return (
        payment.refunds.filter(
            status__in=[RefundState.REQUESTED, RefundState.PROCESSING],
        ).aggregate(total=Sum("amount_cents"))["total"]
        or 0
    )


def apply_refund_to_payment(payment: Payment, refund: Refund) -> SettlementAdjustment | None:
    """
    Record a completed refund on its (row-locked) payment.

    Moves the payment to partially_refunded or refunded. If the payment is
    already part of a payout, the refunded amount becomes a settlement
    adjustment for the next payout of the same business + processor.

    Must run inside transaction.atomic() with the payment locked.
    """
    before = payment.refunded_amount_cents
    payment.apply_refund(refund.amount_cents, refund.provider_refund_id, refund.reason)
    payment.save()
    applied = payment.refunded_amount_cents - before

    if not payment.is_settled or applied <= 0:
        return None

    return SettlementAdjustment.objects.create(
        business_id=payment.business_id,
        processor_id=payment.processor_id,
        payment=payment,
        refund=refund,
        amount_cents=applied,
        reason=f"Refund {refund.id} on settled payment {payment.id}",
    )


# =============================================================================
# Refund Service
# =============================================================================


class RefundService(BaseService):
    """
    Creates refunds against captured payments.

    Args:
        adapters: Optional variant -> adapter mapping (tests inject fakes)
    """

    def __init__(self, adapters: Mapping[str, ProcessorAdapter] | None = None):
        self.adapters = adapters

    def create_refund(
        self,
        payment_id: uuid.UUID | str,
        amount_cents: int | None = None,
        reason: str = "",
    ) -> RefundResult:
        """
        Refund a captured payment through the processor that captured it.

        Args:
            payment_id: Payment to refund
            amount_cents: Amount to refund (None for the remaining balance)
            reason: Customer/admin-facing reason

        Raises:
            PaymentNotFoundError: Unknown payment
            InvalidPaymentStatusError: Payment is not succeeded/partially_refunded
            RefundExceedsBalanceError: Amount exceeds what is left to refund
            ProcessorError: The processor rejected the refund (refund marked failed)
            LockAcquisitionError: Another refund for the payment is in progress
        """
        if amount_cents is not None and amount_cents <= 0:
            raise ValidationError(
                "Refund amount must be positive",
                error_code="INVALID_AMOUNT",
                details={"amount_cents": amount_cents},
            )

        logger = self.get_logger()
        logger.info(
            "Starting refund",
            extra={"payment_id": str(payment_id), "amount_cents": amount_cents},
        )

        with refund_lock(payment_id):
            payment, refund = self._reserve(payment_id, amount_cents, reason)

            try:
                provider_refund = self._call_processor(payment, refund)
            except ProcessorError as e:
                logger.error(
                    "Processor rejected refund",
                    extra={
                        "refund_id": str(refund.id),
                        "payment_id": str(payment.id),
                        "variant": payment.processor_variant,
                        "error_code": e.error_code,
                        "provider_code": e.provider_code,
                    },
                )
                self._fail(refund, str(e))
                raise

            return self._record_outcome(payment.id, refund.id, provider_refund)

    # =========================================================================
    # Phases
    # =========================================================================

    def _reserve(
        self,
        payment_id: uuid.UUID | str,
        amount_cents: int | None,
        reason: str,
    ) -> tuple[Payment, Refund]:
        """Phase 1: validate under the row lock and create the Refund."""
        with self.atomic():
            try:
                payment = Payment.objects.select_for_update().select_related("processor").get(id=payment_id)
            except Payment.DoesNotExist:
                raise PaymentNotFoundError(
                    f"Payment {payment_id} not found",
                    details={"payment_id": str(payment_id)},
                ) from None

            if payment.status not in PAYMENT_REFUNDABLE_STATES:
                raise InvalidPaymentStatusError(
                    f"Payment in status '{payment.status}' cannot be refunded",
                    details={"payment_id": str(payment.id), "status": payment.status},
                )

            in_flight = in_flight_refund_total(payment)
            available = payment.refundable_balance - in_flight
            amount = available if amount_cents is None else amount_cents

            if amount <= 0 or amount > available:
                raise RefundExceedsBalanceError(
                    f"Refund of {amount} exceeds the refundable balance of {max(available, 0)}",
                    details={
                        "payment_id": str(payment.id),
                        "requested_cents": amount,
                        "refundable_cents": payment.refundable_balance,
                        "in_flight_cents": in_flight,
                    },
                )

            refund = Refund(payment=payment, amount_cents=amount, reason=reason or "")
            refund.idempotency_key = IdempotencyKeyGenerator.generate("create_refund", refund.id)
            refund.process()
            refund.save()

        self.get_logger().info(
            "Refund reserved",
            extra={
                "refund_id": str(refund.id),
                "payment_id": str(payment.id),
                "amount_cents": amount,
                "variant": payment.processor_variant,
            },
        )
        return payment, refund

    def _call_processor(self, payment: Payment, refund: Refund) -> ProviderRefund:
        """Phase 2: the adapter call, outside any transaction."""
        adapter = get_adapter(payment.processor_variant, self.adapters)
        request = RefundRequest(
            provider_reference=payment.provider_reference,
            amount_cents=refund.amount_cents,
            currency=payment.currency,
            idempotency_key=refund.idempotency_key,
            refund_reference=refund.id.hex,
            provider_charge_id=payment.metadata.get("provider_charge_id", ""),
            reason=refund.reason,
        )
        return adapter.create_refund(request, payment.processor.get_credentials())

    def _record_outcome(
        self,
        payment_id: uuid.UUID,
        refund_id: uuid.UUID,
        provider_refund: ProviderRefund,
    ) -> RefundResult:
        """Phase 3: apply a confirmed refund, or park it until the webhook."""
        with self.atomic():
            payment = Payment.objects.select_for_update().get(id=payment_id)
            refund = Refund.objects.select_for_update().get(id=refund_id)

            if refund.status != RefundState.PROCESSING:
                # The refund webhook won the race and already applied it
                pass
            elif provider_refund.is_completed:
                refund.complete(provider_refund.provider_refund_id)
                refund.save()
                apply_refund_to_payment(payment, refund)
            else:
                refund.provider_refund_id = provider_refund.provider_refund_id
                refund.save()

        self.get_logger().info(
            "Refund recorded",
            extra={
                "refund_id": str(refund.id),
                "payment_id": str(payment.id),
                "status": refund.status,
                "payment_status": payment.status,
            },
        )
        return RefundResult(
            refund_id=refund.id,
            amount_cents=refund.amount_cents,
            status=refund.status,
            payment=payment,
        )

    def _fail(self, refund: Refund, reason: str) -> None:
        with self.atomic():
            locked = Refund.objects.select_for_update().get(id=refund.id)
            if locked.is_in_flight:
                locked.fail(reason[:1000])
                locked.save()
