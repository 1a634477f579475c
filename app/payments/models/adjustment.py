"""
Settlement adjustments (clawbacks).

When a refund completes on a payment that is already part of a payout, the
paid batch is never rewritten. Instead the refunded amount is recorded
here and deducted from the next payout of the same business + processor.
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class SettlementAdjustmentQuerySet(models.QuerySet):
    def unapplied(self):
        return self.filter(applied_payout__isnull=True)


class SettlementAdjustment(UUIDPrimaryKeyMixin, BaseModel):
    """A deduction owed by the business to be netted from a future payout."""

    business_id = models.UUIDField(db_index=True)

    processor = models.ForeignKey(
        "payments.PaymentProcessorConfig",
        on_delete=models.PROTECT,
        related_name="settlement_adjustments",
    )

    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.PROTECT,
        related_name="settlement_adjustments",
        help_text="Settled payment the refund was issued against",
    )

    refund = models.OneToOneField(
        "payments.Refund",
        on_delete=models.PROTECT,
        related_name="settlement_adjustment",
        help_text="Refund that caused the clawback",
    )

    amount_cents = models.PositiveBigIntegerField(
        help_text="Amount to deduct from a future payout",
    )

    reason = models.CharField(max_length=255, blank=True, default="")

    applied_payout = models.ForeignKey(
        "payments.Payout",
        on_delete=models.PROTECT,
        related_name="applied_adjustments",
        null=True,
        blank=True,
        help_text="Payout this adjustment was deducted from",
    )

    applied_at = models.DateTimeField(null=True, blank=True)

    objects = SettlementAdjustmentQuerySet.as_manager()

    class Meta:
        ordering = ["created_at"]
        verbose_name = "Settlement Adjustment"
        verbose_name_plural = "Settlement Adjustments"
        indexes = [
            models.Index(fields=["business_id", "processor", "applied_payout"], name="payments_se_busines_e41f6c_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount_cents__gt=0),
                name="settlement_adjustment_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        state = "applied" if self.applied_payout_id else "pending"
        return f"SettlementAdjustment({self.id}, {self.amount_cents}, {state})"
