"""
Payout schedule per business + processor.

Created lazily the first time settlement runs (or the owner opens the
schedule screen) and mutated only by the business owner.
"""

from __future__ import annotations

from datetime import date, timedelta

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import PayoutFrequency

DEFAULT_MIN_PAYOUT_THRESHOLD_CENTS = 50_000
DEFAULT_MAX_HOLD_PERIOD_DAYS = 7
MAX_MONTHLY_DAY = 28


class PayoutSchedule(UUIDPrimaryKeyMixin, BaseModel):
    """
    Settlement rules for one business + processor pair.

    Threshold/hold rules:
        - is_manually_held: never settle while set
        - gross below min_payout_threshold_cents: wait, unless the oldest
          unsettled payment is at least max_hold_period_days old
    """

    # ==========================================================================
    # Ownership
    # ==========================================================================

    business_id = models.UUIDField(
        db_index=True,
        help_text="Business this schedule settles for",
    )

    processor = models.ForeignKey(
        "payments.PaymentProcessorConfig",
        on_delete=models.CASCADE,
        related_name="payout_schedules",
        help_text="Processor whose captured payments are settled",
    )

    # ==========================================================================
    # Cadence
    # ==========================================================================

    is_active = models.BooleanField(default=True)

    frequency = models.CharField(
        max_length=10,
        choices=PayoutFrequency.choices,
        default=PayoutFrequency.WEEKLY,
    )

    weekly_day_of_week = models.PositiveSmallIntegerField(
        default=0,
        validators=[MaxValueValidator(6)],
        help_text="Weekday for weekly payouts (0=Monday ... 6=Sunday)",
    )

    monthly_day_of_month = models.PositiveSmallIntegerField(
        default=1,
        validators=[MinValueValidator(1), MaxValueValidator(MAX_MONTHLY_DAY)],
        help_text="Day of month for monthly payouts (1-28)",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="Only payments in this currency are aggregated",
    )

    # ==========================================================================
    # Threshold & Hold
    # ==========================================================================

    min_payout_threshold_cents = models.PositiveBigIntegerField(
        default=DEFAULT_MIN_PAYOUT_THRESHOLD_CENTS,
        help_text="Minimum gross before a payout is created",
    )

    max_hold_period_days = models.PositiveIntegerField(
        default=DEFAULT_MAX_HOLD_PERIOD_DAYS,
        help_text="Oldest unsettled payment age that forces a payout",
    )

    is_manually_held = models.BooleanField(
        default=False,
        help_text="Owner-requested hold; no payouts while set",
    )

    hold_reason = models.TextField(blank=True, default="")

    hold_started_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Notifications
    # ==========================================================================

    email_notifications_enabled = models.BooleanField(default=True)

    notification_email = models.EmailField(blank=True, default="")

    # ==========================================================================
    # Tracking
    # ==========================================================================

    last_payout_at = models.DateTimeField(null=True, blank=True)

    next_payout_date = models.DateField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Date the scheduler next runs settlement for this pair",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payout Schedule"
        verbose_name_plural = "Payout Schedules"
        constraints = [
            models.UniqueConstraint(
                fields=["business_id", "processor"],
                name="payout_schedule_unique_pair",
            ),
            models.CheckConstraint(
                condition=Q(monthly_day_of_month__gte=1) & Q(monthly_day_of_month__lte=MAX_MONTHLY_DAY),
                name="payout_schedule_monthly_day_range",
            ),
            models.CheckConstraint(
                condition=Q(weekly_day_of_week__lte=6),
                name="payout_schedule_weekday_range",
            ),
        ]

    def __str__(self) -> str:
        return f"PayoutSchedule({self.business_id}, {self.frequency}, held={self.is_manually_held})"

    def compute_next_payout_date(self, from_date: date) -> date:
        """
        Next settlement date strictly after ``from_date``.

        daily: next weekday (Saturday/Sunday skipped)
        weekly: next occurrence of weekly_day_of_week
        monthly: monthly_day_of_month (capped at 28) of the following month
        """
        if self.frequency == PayoutFrequency.DAILY:
            next_date = from_date + timedelta(days=1)
            while next_date.weekday() >= 5:
                next_date += timedelta(days=1)
            return next_date

        if self.frequency == PayoutFrequency.MONTHLY:
            day = min(self.monthly_day_of_month or 1, MAX_MONTHLY_DAY)
            if from_date.month == 12:
                return date(from_date.year + 1, 1, day)
            return date(from_date.year, from_date.month + 1, day)

        days_ahead = (self.weekly_day_of_week - from_date.weekday()) % 7 or 7
        return from_date + timedelta(days=days_ahead)

    def is_due(self, today: date) -> bool:
        return self.next_payout_date is None or self.next_payout_date <= today
