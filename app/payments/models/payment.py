"""
Payment model: one attempt to collect money for an order.

A Payment is created by the orchestrator once a processor adapter has
accepted the payment request, and is driven to a terminal state by
provider webhooks. The processor variant that captured it is fixed for
life; refunds are always routed back to it.

Usage:
    from payments.models import Payment
    from payments.state_machines import PaymentStatus

    payment.mark_succeeded(event_id="evt_123")  # processing -> succeeded
    payment.save()

    payment.apply_refund(2500)  # succeeded -> partially_refunded | refunded
    payment.save()
"""

from __future__ import annotations

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import models
from django.db.models import F, Q
from django.utils import timezone
from django_fsm import RETURN_VALUE, FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import (
    PAYMENT_REFUNDABLE_STATES,
    PAYMENT_SUCCESS_STATES,
    PaymentStatus,
    ProcessorVariant,
)


class PaymentQuerySet(models.QuerySet):
    def captured(self):
        """Payments in any success-family status."""
        return self.filter(status__in=PAYMENT_SUCCESS_STATES)

    def unsettled(self):
        """Captured payments with a settleable balance not yet in a payout."""
        return self.filter(status__in=PAYMENT_REFUNDABLE_STATES, payout__isnull=True)


class Payment(UUIDPrimaryKeyMixin, BaseModel):
    """
    A payment for one order through one processor.

    State Flow:
        PENDING -> PROCESSING (client confirmation started)
        PENDING/PROCESSING -> SUCCEEDED (webhook)
        PENDING/PROCESSING -> FAILED (webhook)
        SUCCEEDED/PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED | REFUNDED

    Invariants (enforced in the database):
        - at most one success-family payment per order_id
        - (processor_variant, provider_reference) is unique
        - refunded_amount_cents never exceeds amount_cents

    Note:
        Once succeeded, only refund fields and settlement fields change.
    """

    # ==========================================================================
    # Order & Ownership (external references)
    # ==========================================================================

    order_id = models.UUIDField(
        db_index=True,
        help_text="Order this payment collects money for",
    )

    business_id = models.UUIDField(
        db_index=True,
        help_text="Business receiving the funds",
    )

    # ==========================================================================
    # Processor
    # ==========================================================================

    processor = models.ForeignKey(
        "payments.PaymentProcessorConfig",
        on_delete=models.PROTECT,
        related_name="payments",
        help_text="Processor configuration that created this payment",
    )

    processor_variant = models.CharField(
        max_length=20,
        choices=ProcessorVariant.choices,
        help_text="Processor variant used; never changes once set",
    )

    provider_reference = models.CharField(
        max_length=255,
        help_text="Processor-side payment id (payment intent, order id, txn id)",
    )

    idempotency_key = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Idempotency key sent with the create call",
    )

    # ==========================================================================
    # Amount
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Payment amount in smallest currency unit",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    description = models.CharField(
        max_length=500,
        blank=True,
        default="",
    )

    processor_fee_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Processor fee snapshotted from the config at creation",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=PaymentStatus.PENDING,
        choices=PaymentStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current payment status (managed by FSM)",
    )

    confirmation_event_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Provider event id of the webhook that confirmed the payment",
    )

    succeeded_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Capture time; start of settlement eligibility",
    )

    failed_at = models.DateTimeField(null=True, blank=True)

    failure_reason = models.TextField(blank=True, default="")

    # ==========================================================================
    # Refunds
    # ==========================================================================

    refunded_amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Total confirmed refunds",
    )

    refund_reason = models.TextField(blank=True, default="")

    provider_refund_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Processor id of the most recent confirmed refund",
    )

    # ==========================================================================
    # Settlement
    # ==========================================================================

    payout = models.ForeignKey(
        "payments.Payout",
        on_delete=models.PROTECT,
        related_name="payments",
        null=True,
        blank=True,
        help_text="Settlement batch this payment was aggregated into",
    )

    settled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payment was attached to a payout",
    )

    # ==========================================================================
    # Concurrency & Metadata
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Incremented on each save",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata for extensibility",
    )

    objects = PaymentQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        indexes = [
            models.Index(fields=["business_id", "processor", "status"], name="payments_pa_busines_91b0de_idx"),
            models.Index(fields=["business_id", "succeeded_at"], name="payments_pa_busines_2d6f85_idx"),
            models.Index(fields=["order_id", "status"], name="payments_pa_order_i_7ac3e4_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["order_id"],
                condition=Q(status__in=PAYMENT_SUCCESS_STATES),
                name="payment_one_success_per_order",
            ),
            models.UniqueConstraint(
                fields=["processor_variant", "provider_reference"],
                name="payment_unique_provider_reference",
            ),
            models.CheckConstraint(
                condition=Q(amount_cents__gt=0),
                name="payment_amount_positive",
            ),
            models.CheckConstraint(
                condition=Q(refunded_amount_cents__lte=F("amount_cents")),
                name="payment_refund_within_amount",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount_cents / 100:.2f} {self.currency.upper()}"
        return f"Payment({self.id}, {self.processor_variant}, {self.status}, {amount_display})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_variant = instance.__dict__.get("processor_variant")
        return instance

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment.

        Refuses to change processor_variant on an existing row.
        """
        loaded_variant = getattr(self, "_loaded_variant", None)
        if loaded_variant and loaded_variant != self.processor_variant:
            raise DjangoValidationError(
                "processor_variant cannot change once set",
                code="processor_variant_immutable",
            )

        is_update = not self._state.adding
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])
        self._loaded_variant = self.processor_variant

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.PROCESSING,
    )
    def start_processing(self):
        pass

    @transition(
        field=status,
        source=[PaymentStatus.PENDING, PaymentStatus.PROCESSING],
        target=PaymentStatus.SUCCEEDED,
    )
    def mark_succeeded(self, event_id: str = ""):
        """Capture confirmed; the payment becomes a settlement candidate."""
        self.succeeded_at = timezone.now()
        self.confirmation_event_id = event_id or ""

    @transition(
        field=status,
        source=[PaymentStatus.PENDING, PaymentStatus.PROCESSING],
        target=PaymentStatus.FAILED,
    )
    def mark_failed(self, reason: str = "", event_id: str = ""):
        self.failed_at = timezone.now()
        self.failure_reason = reason or ""
        self.confirmation_event_id = event_id or ""

    @transition(
        field=status,
        source=list(PAYMENT_REFUNDABLE_STATES),
        target=RETURN_VALUE(PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED),
    )
    def apply_refund(self, amount_cents: int, provider_refund_id: str = "", reason: str = ""):
        """
        Record a confirmed refund.

        Callers validate the amount against refundable_balance first; the
        amount is clamped so the running total never exceeds the payment.
        """
        applied = min(amount_cents, self.refundable_balance)
        self.refunded_amount_cents += applied
        if provider_refund_id:
            self.provider_refund_id = provider_refund_id
        if reason:
            self.refund_reason = reason
        if self.refunded_amount_cents >= self.amount_cents:
            return PaymentStatus.REFUNDED
        return PaymentStatus.PARTIALLY_REFUNDED

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_captured(self) -> bool:
        return self.status in PAYMENT_SUCCESS_STATES

    @property
    def refundable_balance(self) -> int:
        return self.amount_cents - self.refunded_amount_cents

    @property
    def settleable_amount(self) -> int:
        """Gross contribution to a payout: amount less refunds."""
        return self.amount_cents - self.refunded_amount_cents

    @property
    def settleable_fee(self) -> int:
        """Fee contribution to a payout, never more than what is settled."""
        return min(self.processor_fee_cents, self.settleable_amount)

    @property
    def is_settled(self) -> bool:
        return self.payout_id is not None
