"""
Payout service: payout lifecycle hooks and payout schedule management.

Disbursing money to the business's bank account is done by an external
collaborator; it drives payouts through the hooks here:

    mark_processing(payout_id)                 pending -> processing
    mark_paid(payout_id, provider_txn_id)      processing -> paid
    mark_failed(payout_id, reason)             pending/processing -> failed
    retry_payout(payout_id)                    failed -> pending (same batch)

Usage:
    from payments.services import PayoutService

    payout = PayoutService.retry_payout(payout_id)
    schedule = PayoutService.get_or_create_schedule(business_id, processor)
    PayoutService.update_schedule(schedule, frequency="daily")
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from django.utils import timezone
from django_fsm import TransitionNotAllowed

from core.exceptions import ValidationError
from core.services import BaseService
from payments.exceptions import InvalidStateTransitionError, PayoutNotFoundError
from payments.models import Payout, PayoutSchedule
from payments.models.schedule import MAX_MONTHLY_DAY
from payments.state_machines import PayoutFrequency

if TYPE_CHECKING:
    from datetime import datetime

    from django.db.models import QuerySet

    from payments.models import PaymentProcessorConfig


# Fields the business owner may change through update_schedule
SCHEDULE_EDITABLE_FIELDS = (
    "is_active",
    "frequency",
    "weekly_day_of_week",
    "monthly_day_of_month",
    "min_payout_threshold_cents",
    "max_hold_period_days",
    "email_notifications_enabled",
    "notification_email",
)

CADENCE_FIELDS = {"frequency", "weekly_day_of_week", "monthly_day_of_month"}


class PayoutService(BaseService):
    """
    Payout state hooks and schedule management.

    All methods are class methods - no instance state is maintained.
    """

    # =========================================================================
    # Payouts
    # =========================================================================

    @classmethod
    def get_payout(cls, payout_id: uuid.UUID | str, business_id: uuid.UUID | str | None = None) -> Payout:
        queryset = Payout.objects.select_related("processor")
        if business_id is not None:
            queryset = queryset.filter(business_id=business_id)
        try:
            return queryset.get(id=payout_id)
        except Payout.DoesNotExist:
            raise PayoutNotFoundError(
                f"Payout {payout_id} not found",
                details={"payout_id": str(payout_id)},
            ) from None

    @classmethod
    def retry_payout(cls, payout_id: uuid.UUID | str) -> Payout:
        """
        Reset a failed payout to pending for another disbursement attempt.

        The payout keeps exactly the payments it was created with.

        Raises:
            PayoutNotFoundError: Unknown payout
            InvalidStateTransitionError: Payout is not failed
        """
        return cls._transition(payout_id, "retry")

    @classmethod
    def mark_processing(cls, payout_id: uuid.UUID | str) -> Payout:
        return cls._transition(payout_id, "start_processing")

    @classmethod
    def mark_paid(cls, payout_id: uuid.UUID | str, provider_transaction_id: str = "") -> Payout:
        return cls._transition(payout_id, "mark_paid", provider_transaction_id)

    @classmethod
    def mark_failed(cls, payout_id: uuid.UUID | str, reason: str = "") -> Payout:
        return cls._transition(payout_id, "mark_failed", reason)

    @classmethod
    def payout_history(
        cls,
        business_id: uuid.UUID | str,
        status: str | None = None,
        processor_id: uuid.UUID | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> QuerySet[Payout]:
        """Payouts of a business, newest first, optionally filtered."""
        queryset = Payout.objects.filter(business_id=business_id).select_related("processor")
        if status:
            queryset = queryset.filter(status=status)
        if processor_id:
            queryset = queryset.filter(processor_id=processor_id)
        if start:
            queryset = queryset.filter(created_at__gte=start)
        if end:
            queryset = queryset.filter(created_at__lt=end)
        return queryset.order_by("-created_at", "-id")

    @classmethod
    def _transition(cls, payout_id: uuid.UUID | str, name: str, *args: Any) -> Payout:
        with cls.atomic():
            try:
                payout = Payout.objects.select_for_update().get(id=payout_id)
            except Payout.DoesNotExist:
                raise PayoutNotFoundError(
                    f"Payout {payout_id} not found",
                    details={"payout_id": str(payout_id)},
                ) from None

            previous = payout.status
            try:
                getattr(payout, name)(*args)
            except TransitionNotAllowed as e:
                raise InvalidStateTransitionError(
                    f"Cannot {name.replace('_', ' ')} payout in status '{previous}'",
                    details={"payout_id": str(payout.id), "status": previous, "transition": name},
                ) from e
            payout.save()

        cls.get_logger().info(
            "Payout transitioned",
            extra={
                "payout_id": str(payout.id),
                "from_status": previous,
                "to_status": payout.status,
                "retry_count": payout.retry_count,
            },
        )
        return payout

    # =========================================================================
    # Schedules
    # =========================================================================

    @classmethod
    def get_or_create_schedule(
        cls,
        business_id: uuid.UUID | str,
        processor: PaymentProcessorConfig,
    ) -> PayoutSchedule:
        """Schedule for the pair, created with the processor's defaults on first use."""
        schedule, created = PayoutSchedule.objects.get_or_create(
            business_id=business_id,
            processor=processor,
            defaults={
                "frequency": processor.settlement_schedule,
                "currency": processor.currency,
            },
        )
        if created:
            cls.get_logger().info(
                "Payout schedule created",
                extra={
                    "schedule_id": str(schedule.id),
                    "business_id": str(business_id),
                    "processor_id": str(processor.id),
                    "frequency": schedule.frequency,
                },
            )
        return schedule

    @classmethod
    def update_schedule(cls, schedule: PayoutSchedule, **fields: Any) -> PayoutSchedule:
        """
        Change owner-editable schedule settings.

        Changing the cadence recomputes next_payout_date from today.

        Raises:
            ValidationError: Unknown field or out-of-range value
        """
        errors: dict[str, str] = {}
        unknown = sorted(set(fields) - set(SCHEDULE_EDITABLE_FIELDS))
        for name in unknown:
            errors[name] = "cannot be changed"

        if "frequency" in fields and fields["frequency"] not in PayoutFrequency.values:
            errors["frequency"] = f"must be one of {', '.join(PayoutFrequency.values)}"
        if "weekly_day_of_week" in fields and not 0 <= int(fields["weekly_day_of_week"]) <= 6:
            errors["weekly_day_of_week"] = "must be between 0 (Monday) and 6 (Sunday)"
        if "monthly_day_of_month" in fields and not 1 <= int(fields["monthly_day_of_month"]) <= MAX_MONTHLY_DAY:
            errors["monthly_day_of_month"] = f"must be between 1 and {MAX_MONTHLY_DAY}"
        for name in ("min_payout_threshold_cents", "max_hold_period_days"):
            if name in fields and int(fields[name]) < 0:
                errors[name] = "must not be negative"

        if errors:
            raise ValidationError(
                "Invalid payout schedule",
                error_code="INVALID_SCHEDULE",
                details={"fields": errors},
            )

        for name, value in fields.items():
            setattr(schedule, name, value)
        if CADENCE_FIELDS & set(fields):
            schedule.next_payout_date = schedule.compute_next_payout_date(timezone.localdate())
        schedule.save()

        cls.get_logger().info(
            "Payout schedule updated",
            extra={"schedule_id": str(schedule.id), "fields": sorted(fields)},
        )
        return schedule

    @classmethod
    def set_hold(cls, schedule: PayoutSchedule, held: bool, reason: str = "") -> PayoutSchedule:
        """Place or release an owner hold; no payouts are created while held."""
        if held:
            schedule.is_manually_held = True
            schedule.hold_reason = reason
            schedule.hold_started_at = schedule.hold_started_at or timezone.now()
        else:
            schedule.is_manually_held = False
            schedule.hold_reason = ""
            schedule.hold_started_at = None
        schedule.save()

        cls.get_logger().info(
            "Payout hold changed",
            extra={"schedule_id": str(schedule.id), "held": held},
        )
        return schedule
