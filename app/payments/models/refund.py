"""
Refund model for money returned to customers.

One Payment may have several refunds (partial refunds accumulate). A refund
always goes back through the processor that captured the payment.

Usage:
    refund = Refund.objects.create(payment=payment, amount_cents=2500, reason="Late delivery")
    refund.process()  # requested -> processing
    refund.save()

    refund.complete(provider_refund_id="re_123")  # processing -> completed
    refund.save()
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import RefundState


class Refund(UUIDPrimaryKeyMixin, BaseModel):
    """
    Money returned to a customer from a captured payment.

    State Flow:
        REQUESTED -> PROCESSING -> COMPLETED
        REQUESTED/PROCESSING -> FAILED

    A refund initiated at the provider (dashboard refund) arrives only as a
    webhook and is recorded directly as COMPLETED.
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.PROTECT,
        related_name="refunds",
        help_text="Payment being refunded",
    )

    # ==========================================================================
    # Amount & Reason
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Refund amount in smallest currency unit",
    )

    reason = models.TextField(
        blank=True,
        default="",
        help_text="Customer/admin-facing refund reason",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=RefundState.REQUESTED,
        choices=RefundState.choices,
        db_index=True,
        protected=True,
        help_text="Current refund status (managed by FSM)",
    )

    # ==========================================================================
    # Processor Integration
    # ==========================================================================

    provider_refund_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Processor-side refund id",
    )

    idempotency_key = models.CharField(
        max_length=255,
        blank=True,
        default="",
    )

    # ==========================================================================
    # Timestamps & Errors
    # ==========================================================================

    completed_at = models.DateTimeField(null=True, blank=True)

    failed_at = models.DateTimeField(null=True, blank=True)

    failure_reason = models.TextField(blank=True, default="")

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata for extensibility",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Refund"
        verbose_name_plural = "Refunds"
        indexes = [
            models.Index(fields=["payment", "status"], name="payments_re_payment_6b8e27_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount_cents__gt=0),
                name="refund_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Refund({self.id}, {self.status}, {self.amount_cents})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=RefundState.REQUESTED,
        target=RefundState.PROCESSING,
    )
    def process(self):
        """Processor call is about to be made."""

    @transition(
        field=status,
        source=[RefundState.REQUESTED, RefundState.PROCESSING],
        target=RefundState.COMPLETED,
    )
    def complete(self, provider_refund_id: str = ""):
        self.completed_at = timezone.now()
        if provider_refund_id:
            self.provider_refund_id = provider_refund_id

    @transition(
        field=status,
        source=[RefundState.REQUESTED, RefundState.PROCESSING],
        target=RefundState.FAILED,
    )
    def fail(self, reason: str = ""):
        self.failed_at = timezone.now()
        self.failure_reason = reason or ""

    @property
    def is_in_flight(self) -> bool:
        return self.status in (RefundState.REQUESTED, RefundState.PROCESSING)
