"""
Settlement: batch captured payments of a business + processor into payouts.

run_schedule is single-flight per pair (non-blocking settlement lock) and
creates at most one Payout per call:

    gross         = sum(amount - refunded) of the unsettled payments
    processor_fee = sum(fee snapshot, capped at each payment's settled amount)
    platform_fee  = ceil(gross * PLATFORM_FEE_BASIS_POINTS / 10000)
    adjustment    = unapplied refund clawbacks that fit, oldest first
    net           = gross - processor_fee - platform_fee - adjustment

Integer minor units throughout; every rounding step rounds up, towards the
platform. Threshold and hold rules come from the PayoutSchedule.

Usage:
    from payments.services import SettlementService

    payout = SettlementService.run_schedule(business_id, processor_id)
    payouts = SettlementService.run_due_schedules()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db.models import F, Q
from django.utils import timezone

from core.exceptions import BaseApplicationError
from core.services import BaseService
from payments.exceptions import ProcessorNotFoundError, ScheduleLockedError
from payments.locks import settlement_lock
from payments.models import (
    Payment,
    PaymentProcessorConfig,
    Payout,
    PayoutSchedule,
    SettlementAdjustment,
)
from payments.models.processor import ceil_div
from payments.services.payout_service import PayoutService

if TYPE_CHECKING:
    import uuid
    from datetime import datetime


logger = logging.getLogger(__name__)


@dataclass
class SettlementTotals:
    """Amounts for one prospective payout."""

    gross_cents: int = 0
    processor_fee_cents: int = 0
    platform_fee_cents: int = 0
    adjustment_cents: int = 0
    adjustments: list[SettlementAdjustment] = field(default_factory=list)

    @property
    def net_cents(self) -> int:
        return self.gross_cents - self.processor_fee_cents - self.platform_fee_cents - self.adjustment_cents


def platform_fee_for(gross_cents: int, processor_fee_cents: int) -> int:
    """Platform fee on a payout's gross, never more than what the processor fee leaves."""
    fee = ceil_div(gross_cents * settings.PLATFORM_FEE_BASIS_POINTS, 10_000)
    return max(0, min(fee, gross_cents - processor_fee_cents))


def compute_totals(payments: list[Payment], adjustments: list[SettlementAdjustment]) -> SettlementTotals:
    """
    Totals for a batch; adjustments are taken whole, in order, until the
    next one would push the net below zero.
    """
    totals = SettlementTotals(
        gross_cents=sum(p.settleable_amount for p in payments),
        processor_fee_cents=sum(p.settleable_fee for p in payments),
    )
    totals.platform_fee_cents = platform_fee_for(totals.gross_cents, totals.processor_fee_cents)

    for adjustment in adjustments:
        if adjustment.amount_cents > totals.net_cents:
            break
        totals.adjustments.append(adjustment)
        totals.adjustment_cents += adjustment.amount_cents

    return totals


class SettlementService(BaseService):
    """
    Creates payout batches according to each pair's PayoutSchedule.

    All methods are class methods - no instance state is maintained.
    """

    @classmethod
    def run_schedule(
        cls,
        business_id: uuid.UUID | str,
        processor_id: uuid.UUID | str,
        now: datetime | None = None,
        raise_on_locked: bool = False,
    ) -> Payout | None:
        """
        Settle the unsettled captured payments of one business + processor.

        Returns the new Payout, or None when nothing was created this cycle
        (schedule held or inactive, nothing to settle, below threshold, or
        another run holding the lock).

        Raises:
            ProcessorNotFoundError: Processor does not belong to the business
            ScheduleLockedError: Lock held elsewhere and raise_on_locked is set
        """
        now = now or timezone.now()
        log_context = {"business_id": str(business_id), "processor_id": str(processor_id)}

        lock = settlement_lock(business_id, processor_id)
        if not lock.try_acquire():
            logger.info("Settlement already running for pair, skipping", extra=log_context)
            if raise_on_locked:
                raise ScheduleLockedError(
                    "Settlement is already running for this processor",
                    details=log_context,
                )
            return None

        try:
            return cls._settle(business_id, processor_id, now, log_context)
        finally:
            lock.release()

    @classmethod
    def run_due_schedules(cls, now: datetime | None = None) -> list[Payout]:
        """
        Run every active, unheld schedule that is due, plus pairs with
        unsettled payments that have no schedule yet.

        A failing pair is logged and does not stop the others.
        """
        now = now or timezone.now()
        today = timezone.localdate(now)

        due = PayoutSchedule.objects.filter(is_active=True, is_manually_held=False).filter(
            Q(next_payout_date__isnull=True) | Q(next_payout_date__lte=today)
        )
        pairs = list(due.values_list("business_id", "processor_id"))

        scheduled = PayoutSchedule.objects.values_list("business_id", "processor_id")
        unscheduled = Payment.objects.unsettled().order_by().values_list("business_id", "processor_id").distinct()
        known = set(scheduled)
        pairs.extend(pair for pair in unscheduled if pair not in known)

        payouts = []
        for business_id, processor_id in dict.fromkeys(pairs):
            try:
                payout = cls.run_schedule(business_id, processor_id, now=now)
            except BaseApplicationError as e:
                logger.error(
                    "Scheduled settlement failed",
                    extra={
                        "business_id": str(business_id),
                        "processor_id": str(processor_id),
                        "error_code": e.error_code,
                    },
                    exc_info=True,
                )
                continue
            if payout is not None:
                payouts.append(payout)

        logger.info(
            "Due settlement schedules run",
            extra={"pairs": len(pairs), "payouts_created": len(payouts)},
        )
        return payouts

    # =========================================================================
    # Internals
    # =========================================================================

    @classmethod
    def _settle(
        cls,
        business_id: uuid.UUID | str,
        processor_id: uuid.UUID | str,
        now: datetime,
        log_context: dict[str, str],
    ) -> Payout | None:
        try:
            processor = PaymentProcessorConfig.objects.for_business(business_id).get(id=processor_id)
        except PaymentProcessorConfig.DoesNotExist:
            raise ProcessorNotFoundError(
                f"Processor {processor_id} not found",
                details=log_context,
            ) from None

        schedule = PayoutService.get_or_create_schedule(business_id, processor)
        if schedule.is_manually_held or not schedule.is_active:
            logger.info(
                "Payout schedule held or inactive, skipping",
                extra={**log_context, "held": schedule.is_manually_held},
            )
            return None

        today = timezone.localdate(now)

        with cls.atomic():
            payments = list(
                Payment.objects.select_for_update()
                .unsettled()
                .filter(
                    business_id=business_id,
                    processor=processor,
                    currency=schedule.currency,
                    succeeded_at__lte=now,
                )
                .order_by("succeeded_at", "id")
            )

            if not payments:
                cls._advance(schedule, today)
                logger.info("Nothing to settle", extra=log_context)
                return None

            adjustments = list(
                SettlementAdjustment.objects.select_for_update()
                .unapplied()
                .filter(business_id=business_id, processor=processor)
                .order_by("created_at", "id")
            )
            totals = compute_totals(payments, adjustments)

            oldest = payments[0].succeeded_at
            forced = now - oldest >= timedelta(days=schedule.max_hold_period_days)
            below_threshold = totals.gross_cents < schedule.min_payout_threshold_cents

            if below_threshold and not forced:
                cls._advance(schedule, today)
                logger.info(
                    "Below payout threshold, holding",
                    extra={
                        **log_context,
                        "gross_cents": totals.gross_cents,
                        "threshold_cents": schedule.min_payout_threshold_cents,
                        "oldest_age_days": (now - oldest).days,
                    },
                )
                return None

            payout = Payout.objects.create(
                business_id=business_id,
                processor=processor,
                period_start=oldest,
                period_end=now,
                currency=schedule.currency,
                gross_amount_cents=totals.gross_cents,
                processor_fee_cents=totals.processor_fee_cents,
                platform_fee_cents=totals.platform_fee_cents,
                adjustment_cents=totals.adjustment_cents,
                net_amount_cents=totals.net_cents,
                payment_count=len(payments),
                metadata={"forced_by_hold_period": below_threshold},
            )

            Payment.objects.filter(id__in=[p.id for p in payments]).update(
                payout=payout,
                settled_at=now,
                version=F("version") + 1,
                updated_at=now,
            )
            SettlementAdjustment.objects.filter(id__in=[a.id for a in totals.adjustments]).update(
                applied_payout=payout,
                applied_at=now,
                updated_at=now,
            )

            schedule.last_payout_at = now
            cls._advance(schedule, today)

        logger.info(
            "Payout created",
            extra={
                **log_context,
                "payout_id": str(payout.id),
                "payment_count": payout.payment_count,
                "gross_cents": payout.gross_amount_cents,
                "net_cents": payout.net_amount_cents,
                "adjustment_cents": payout.adjustment_cents,
                "forced": forced,
            },
        )
        return payout

    @staticmethod
    def _advance(schedule: PayoutSchedule, today) -> None:
        schedule.next_payout_date = schedule.compute_next_payout_date(today)
        schedule.save(update_fields=["last_payout_at", "next_payout_date", "updated_at"])
