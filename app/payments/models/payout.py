"""
Payout model: a settlement batch of captured payments.

One Payout aggregates N succeeded, unsettled payments of a business +
processor pair. The batch is fixed at creation; a failed payout is retried
by resending the same batch, never by re-aggregating.

Usage:
    payout.start_processing()             # pending -> processing
    payout.mark_paid("po_123")            # processing -> paid
    payout.mark_failed("account closed")  # pending/processing -> failed
    payout.retry()                        # failed -> pending
"""

from __future__ import annotations

from django.db import models
from django.db.models import F, Q
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import PayoutState


class Payout(UUIDPrimaryKeyMixin, BaseModel):
    """
    Settlement batch to a business.

    State Flow:
        PENDING -> PROCESSING -> PAID
        PENDING/PROCESSING -> FAILED -> PENDING (manual retry)

    Invariant (database check):
        net = gross - processor_fee - platform_fee - adjustment, net >= 0
    """

    # ==========================================================================
    # Ownership
    # ==========================================================================

    business_id = models.UUIDField(
        db_index=True,
        help_text="Business receiving the payout",
    )

    processor = models.ForeignKey(
        "payments.PaymentProcessorConfig",
        on_delete=models.PROTECT,
        related_name="payouts",
        help_text="Processor whose captured payments are settled",
    )

    # ==========================================================================
    # Period
    # ==========================================================================

    period_start = models.DateTimeField(
        help_text="Capture time of the oldest payment in the batch",
    )

    period_end = models.DateTimeField(
        help_text="When the batch was aggregated",
    )

    # ==========================================================================
    # Amounts (integer minor units)
    # ==========================================================================

    currency = models.CharField(max_length=3, default="usd")

    gross_amount_cents = models.PositiveBigIntegerField(
        help_text="Sum of payment amounts less refunds",
    )

    processor_fee_cents = models.PositiveBigIntegerField(default=0)

    platform_fee_cents = models.PositiveBigIntegerField(default=0)

    adjustment_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Clawbacks for refunds on previously settled payments",
    )

    net_amount_cents = models.PositiveBigIntegerField(
        help_text="Amount to disburse",
    )

    payment_count = models.PositiveIntegerField(default=0)

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=PayoutState.PENDING,
        choices=PayoutState.choices,
        db_index=True,
        protected=True,
        help_text="Current payout status (managed by FSM)",
    )

    provider_transaction_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Disbursement reference returned by the bank/processor",
    )

    # ==========================================================================
    # Retry & Timestamps
    # ==========================================================================

    retry_count = models.PositiveIntegerField(default=0)

    next_retry_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the disbursement step should pick this payout up again",
    )

    paid_at = models.DateTimeField(null=True, blank=True)

    failed_at = models.DateTimeField(null=True, blank=True)

    failure_reason = models.TextField(blank=True, default="")

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

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payout"
        verbose_name_plural = "Payouts"
        indexes = [
            models.Index(fields=["business_id", "status"], name="payments_po_busines_8f2a13_idx"),
            models.Index(fields=["processor", "status"], name="payments_po_process_4e7c90_idx"),
            models.Index(fields=["status", "next_retry_at"], name="payments_po_status_a3d5b2_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(
                    net_amount_cents=F("gross_amount_cents")
                    - F("processor_fee_cents")
                    - F("platform_fee_cents")
                    - F("adjustment_cents")
                ),
                name="payout_net_equals_gross_minus_fees",
            ),
            models.CheckConstraint(
                condition=Q(net_amount_cents__gte=0),
                name="payout_net_non_negative",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.net_amount_cents / 100:.2f} {self.currency.upper()}"
        return f"Payout({self.id}, {self.status}, {amount_display})"

    def save(self, *args, **kwargs):
        is_update = not self._state.adding
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=PayoutState.PENDING,
        target=PayoutState.PROCESSING,
    )
    def start_processing(self):
        """Disbursement has been submitted."""
        self.next_retry_at = None

    @transition(
        field=status,
        source=PayoutState.PROCESSING,
        target=PayoutState.PAID,
    )
    def mark_paid(self, provider_transaction_id: str = ""):
        self.paid_at = timezone.now()
        if provider_transaction_id:
            self.provider_transaction_id = provider_transaction_id

    @transition(
        field=status,
        source=[PayoutState.PENDING, PayoutState.PROCESSING],
        target=PayoutState.FAILED,
    )
    def mark_failed(self, reason: str = ""):
        self.failed_at = timezone.now()
        self.failure_reason = reason or ""

    @transition(
        field=status,
        source=PayoutState.FAILED,
        target=PayoutState.PENDING,
    )
    def retry(self):
        """
        Manual retry: resend the same batch as soon as possible.

        The payments attached to this payout are untouched.
        """
        self.retry_count += 1
        self.next_retry_at = timezone.now()
        self.failed_at = None
        self.failure_reason = ""

    @property
    def can_retry(self) -> bool:
        return self.status == PayoutState.FAILED
