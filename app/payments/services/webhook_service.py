"""
Webhook ingestion and reconciliation.

Turns a provider callback into at most one payment state transition:

    1. Verify the signature with the stored secret of the processor config(s)
    2. Parse into a ParsedWebhookEvent (unknown event types are acknowledged)
    3. Lock the target Payment by (variant, provider_reference)
    4. Insert the (variant, event_id) ledger row; a duplicate means the
       event was already applied, so nothing happens
    5. Apply the transition the payment's state allows, or record a no-op

Everything from step 3 on runs in one transaction, so the ledger row and
the state change commit together. Settlement is never triggered here.

Usage:
    from payments.services import WebhookService

    result = WebhookService().handle_webhook("stripe", request.body, signature)
    result.processed, result.event_type, result.event_id
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.utils import timezone

from core.exceptions import ValidationError
from core.services import BaseService
from payments.adapters import get_adapter
from payments.credentials import CredentialDecryptionError
from payments.exceptions import (
    InvalidSignatureError,
    ProcessorNotFoundError,
    UnknownPaymentReferenceError,
)
from payments.models import Payment, PaymentProcessorConfig, Refund, WebhookEvent
from payments.services.refund_service import apply_refund_to_payment
from payments.state_machines import (
    PAYMENT_REFUNDABLE_STATES,
    PaymentStatus,
    ProcessorStatus,
    ProcessorVariant,
    RefundState,
    WebhookEventStatus,
    WebhookEventType,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Mapping

    from payments.adapters.base import ParsedWebhookEvent, ProcessorAdapter


PROVIDER_REFUND_REASON = "Refunded at processor"


@dataclass
class WebhookResult:
    """
    Outcome of one webhook delivery.

    processed is False only for a redelivered event id. Every other accepted
    event is True, including unknown types and events the payment's current
    state turns into a recorded no-op (note says why).
    """

    processed: bool
    event_type: str
    event_id: str
    note: str = ""


class WebhookService(BaseService):
    """
    Applies verified provider events to payments.

    Args:
        adapters: Optional variant -> adapter mapping (tests inject fakes)
    """

    def __init__(self, adapters: Mapping[str, ProcessorAdapter] | None = None):
        self.adapters = adapters

    def handle_webhook(
        self,
        variant: str,
        raw_body: bytes,
        signature: str,
        processor_id: uuid.UUID | str | None = None,
    ) -> WebhookResult:
        """
        Verify, parse and apply one webhook.

        Raises:
            ValidationError: Unknown variant
            InvalidSignatureError: No stored secret verifies the signature
            InvalidWebhookPayloadError: Verified body is not a parseable event
            UnknownPaymentReferenceError: Event targets a payment we never created
        """
        if variant not in ProcessorVariant.values:
            raise ValidationError(
                f"Unsupported processor variant: {variant}",
                error_code="UNSUPPORTED_PROCESSOR",
                details={"variant": variant},
            )

        logger = self.get_logger()
        adapter = get_adapter(variant, self.adapters)
        verified = self._verified_configs(adapter, variant, raw_body, signature, processor_id)

        event = adapter.parse_webhook(raw_body)
        log_context = {
            "variant": variant,
            "event_id": event.event_id,
            "event_type": event.event_type,
            "raw_type": event.raw_type,
        }

        if not event.is_known:
            logger.info("Ignoring unhandled webhook event type", extra=log_context)
            return WebhookResult(processed=True, event_type=event.raw_type, event_id=event.event_id)

        with transaction.atomic():
            payment = self._lock_payment(variant, event, verified)
            log_context["payment_id"] = str(payment.id)

            ledger = self._record_event(variant, event, payment)
            if ledger is None:
                logger.info("Duplicate webhook delivery, already applied", extra=log_context)
                return WebhookResult(
                    processed=False,
                    event_type=event.event_type,
                    event_id=event.event_id,
                    note="duplicate delivery",
                )

            if event.event_type == WebhookEventType.PAYMENT_SUCCEEDED:
                note = self._apply_succeeded(payment, event)
            elif event.event_type == WebhookEventType.PAYMENT_FAILED:
                note = self._apply_failed(payment, event)
            else:
                note = self._apply_refund(payment, event)

            ledger.status = WebhookEventStatus.IGNORED if note else WebhookEventStatus.PROCESSED
            ledger.note = note[:255]
            ledger.processed_at = timezone.now()
            ledger.save(update_fields=["status", "note", "processed_at", "updated_at"])

        if note:
            logger.info("Webhook recorded as no-op", extra={**log_context, "note": note})
        else:
            logger.info(
                "Webhook applied",
                extra={**log_context, "payment_status": payment.status},
            )

        return WebhookResult(
            processed=True,
            event_type=event.event_type,
            event_id=event.event_id,
            note=note,
        )

    def cleanup_old_events(self, days: int) -> int:
        """Delete ledger rows older than ``days`` that no longer reference a payment."""
        cutoff = timezone.now() - timedelta(days=days)
        deleted, _ = WebhookEvent.objects.filter(created_at__lt=cutoff, payment__isnull=True).delete()
        self.get_logger().info("Cleaned up webhook ledger", extra={"deleted": deleted, "days": days})
        return deleted

    # =========================================================================
    # Verification & lookup
    # =========================================================================

    def _verified_configs(
        self,
        adapter: ProcessorAdapter,
        variant: str,
        raw_body: bytes,
        signature: str,
        processor_id: uuid.UUID | str | None,
    ) -> list[PaymentProcessorConfig]:
        """Every config of the variant whose stored secret verifies the signature."""
        queryset = PaymentProcessorConfig.objects.filter(variant=variant).exclude(
            status=ProcessorStatus.DISCONNECTED
        )
        if processor_id is not None:
            queryset = queryset.filter(id=processor_id)
            if not queryset.exists():
                raise ProcessorNotFoundError(
                    f"No {variant} processor {processor_id}",
                    details={"processor_id": str(processor_id), "variant": variant},
                )

        verified = []
        for config in queryset:
            try:
                credentials = config.get_credentials()
            except CredentialDecryptionError:
                self.get_logger().error(
                    "Skipping processor with unreadable credentials",
                    extra={"processor_id": str(config.id), "variant": variant},
                )
                continue
            if adapter.verify_webhook(raw_body, signature, credentials):
                verified.append(config)

        if not verified:
            self.get_logger().warning(
                "Webhook signature verification failed",
                extra={"variant": variant, "processor_id": str(processor_id) if processor_id else None},
            )
            raise InvalidSignatureError(
                "Invalid webhook signature",
                details={"variant": variant},
            )
        return verified

    def _lock_payment(
        self,
        variant: str,
        event: ParsedWebhookEvent,
        verified: list[PaymentProcessorConfig],
    ) -> Payment:
        queryset = Payment.objects.select_for_update().filter(
            processor_variant=variant,
            processor__in=[config.id for config in verified],
        )
        payment = None
        if event.provider_reference:
            payment = queryset.filter(provider_reference=event.provider_reference).first()
        elif event.provider_charge_id:
            # Refund events of some providers only name the captured charge
            payment = queryset.filter(metadata__provider_charge_id=event.provider_charge_id).first()

        if payment is None:
            raise UnknownPaymentReferenceError(
                "Webhook references an unknown payment",
                details={
                    "variant": variant,
                    "provider_reference": event.provider_reference,
                    "event_id": event.event_id,
                },
            )
        return payment

    def _record_event(self, variant: str, event: ParsedWebhookEvent, payment: Payment) -> WebhookEvent | None:
        """Insert the ledger row; None if this event was already applied."""
        if WebhookEvent.objects.filter(processor_variant=variant, event_id=event.event_id).exists():
            return None
        try:
            with transaction.atomic():
                return WebhookEvent.objects.create(
                    processor_variant=variant,
                    event_id=event.event_id,
                    event_type=event.event_type,
                    raw_type=event.raw_type[:100],
                    payment=payment,
                    payload=event.payload,
                )
        except IntegrityError:
            # Concurrent redelivery inserted it first
            return None

    # =========================================================================
    # Transitions (return a note when the event is a no-op)
    # =========================================================================

    def _apply_succeeded(self, payment: Payment, event: ParsedWebhookEvent) -> str:
        if payment.status not in (PaymentStatus.PENDING, PaymentStatus.PROCESSING):
            return f"payment already {payment.status}"

        other_capture = (
            Payment.objects.filter(order_id=payment.order_id).captured().exclude(id=payment.id).first()
        )
        if other_capture is not None:
            self.get_logger().error(
                "Duplicate capture for order, manual refund required",
                extra={
                    "order_id": str(payment.order_id),
                    "payment_id": str(payment.id),
                    "captured_payment_id": str(other_capture.id),
                    "variant": payment.processor_variant,
                },
            )
            return f"duplicate capture; order already paid by {other_capture.id}"

        if event.amount_cents is not None and event.amount_cents != payment.amount_cents:
            self.get_logger().warning(
                "Captured amount differs from payment amount",
                extra={
                    "payment_id": str(payment.id),
                    "amount_cents": payment.amount_cents,
                    "captured_cents": event.amount_cents,
                },
            )

        payment.mark_succeeded(event_id=event.event_id)
        if event.provider_charge_id:
            payment.metadata = {**payment.metadata, "provider_charge_id": event.provider_charge_id}
        payment.save()
        return ""

    def _apply_failed(self, payment: Payment, event: ParsedWebhookEvent) -> str:
        if payment.status not in (PaymentStatus.PENDING, PaymentStatus.PROCESSING):
            return f"payment already {payment.status}"

        payment.mark_failed(reason=event.failure_reason, event_id=event.event_id)
        payment.save()
        return ""

    def _apply_refund(self, payment: Payment, event: ParsedWebhookEvent) -> str:
        if payment.status not in PAYMENT_REFUNDABLE_STATES:
            return f"payment is {payment.status}"

        refunds = Refund.objects.select_for_update().filter(payment=payment)
        refund = None
        if event.provider_refund_id:
            refund = refunds.filter(provider_refund_id=event.provider_refund_id).first()
        if refund is None and event.amount_cents is not None:
            # Refund confirmed before our own refund call recorded the provider id
            refund = refunds.filter(
                status=RefundState.PROCESSING,
                provider_refund_id="",
                amount_cents=event.amount_cents,
            ).first()

        if refund is not None:
            if refund.status == RefundState.COMPLETED:
                return "refund already applied"
            if not refund.is_in_flight:
                return f"refund is {refund.status}"
            refund.complete(event.provider_refund_id)
            refund.save()
            apply_refund_to_payment(payment, refund)
            return ""

        # Refund initiated outside this system (processor dashboard)
        if event.amount_cents is None:
            return "refund event carries no amount"
        amount = min(event.amount_cents, payment.refundable_balance)
        if amount <= 0:
            return "nothing left to refund"

        refund = Refund(
            payment=payment,
            amount_cents=amount,
            reason=PROVIDER_REFUND_REASON,
            metadata={"source": "webhook", "event_id": event.event_id},
        )
        refund.complete(event.provider_refund_id)
        refund.save()
        apply_refund_to_payment(payment, refund)
        return ""
