"""
Tests for SettlementService.

Covers payout amounts (fees, platform fee, adjustments), the threshold and
maximum hold rules, manual holds, single-flight locking and the due-schedule
sweep. Time-dependent cases are pinned with freezegun.
"""

import uuid
from datetime import date, datetime, timedelta
from datetime import timezone as dt_timezone

import pytest
from django.test import override_settings
from freezegun import freeze_time

from payments.exceptions import ProcessorNotFoundError, ScheduleLockedError
from payments.models import Payment, Payout, PayoutSchedule, SettlementAdjustment
from payments.services import SettlementService
from payments.services.settlement_service import compute_totals, platform_fee_for
from payments.state_machines import PaymentStatus, PayoutFrequency, PayoutState
from payments.tests.factories import (
    PaymentFactory,
    PaymentProcessorConfigFactory,
    PayoutFactory,
    PayoutScheduleFactory,
    SettlementAdjustmentFactory,
)

# Friday
NOW = datetime(2026, 10, 16, 12, 0, tzinfo=dt_timezone.utc)


def settled_payments(payout):
    return Payment.objects.filter(payout=payout)


# =============================================================================
# Amount Calculation
# =============================================================================


@pytest.mark.django_db
class TestComputeTotals:
    def test_gross_fee_net(self, stripe_processor):
        payments = [PaymentFactory(processor=stripe_processor, captured=True) for _ in range(2)]

        totals = compute_totals(payments, [])

        assert totals.gross_cents == 20000
        assert totals.processor_fee_cents == 640
        assert totals.platform_fee_cents == 0
        assert totals.net_cents == 19360

    def test_refunds_reduce_gross_and_cap_fee(self, stripe_processor):
        payment = PaymentFactory(processor=stripe_processor, captured=True)
        Payment.objects.filter(id=payment.id).update(refunded_amount_cents=9900)
        payment = Payment.objects.get(id=payment.id)

        totals = compute_totals([payment], [])

        assert totals.gross_cents == 100
        assert totals.processor_fee_cents == 100
        assert totals.net_cents == 0

    def test_adjustments_taken_whole_until_net_exhausted(self, stripe_processor):
        payment = PaymentFactory(processor=stripe_processor, captured=True)
        first = SettlementAdjustmentFactory(payment=PaymentFactory(processor=stripe_processor, captured=True))
        SettlementAdjustment.objects.filter(id=first.id).update(amount_cents=5000)
        second = SettlementAdjustmentFactory(payment=PaymentFactory(processor=stripe_processor, captured=True))
        SettlementAdjustment.objects.filter(id=second.id).update(amount_cents=5000)
        adjustments = list(SettlementAdjustment.objects.order_by("created_at"))

        totals = compute_totals([payment], adjustments)

        # 9680 net covers the first 5000 but not both
        assert totals.adjustment_cents == 5000
        assert [a.id for a in totals.adjustments] == [first.id]
        assert totals.net_cents == 4680

    @override_settings(PLATFORM_FEE_BASIS_POINTS=150)
    def test_platform_fee_rounds_up(self):
        # 10001 * 1.5% = 150.015 -> 151
        assert platform_fee_for(10001, 320) == 151

    @override_settings(PLATFORM_FEE_BASIS_POINTS=5000)
    def test_platform_fee_never_exceeds_remainder(self):
        assert platform_fee_for(1000, 900) == 100


# =============================================================================
# run_schedule
# =============================================================================


@pytest.mark.django_db
class TestRunSchedule:
    """Payout creation for one business + processor pair."""

    def test_creates_payout(self, business_id, stripe_processor, schedule, captured_payment):
        payout = SettlementService.run_schedule(business_id, stripe_processor.id)

        assert payout is not None
        assert payout.status == PayoutState.PENDING
        assert payout.gross_amount_cents == 10000
        assert payout.processor_fee_cents == 320
        assert payout.platform_fee_cents == 0
        assert payout.net_amount_cents == 9680
        assert payout.payment_count == 1
        assert payout.period_start == captured_payment.succeeded_at

        payment = Payment.objects.get(id=captured_payment.id)
        assert payment.payout_id == payout.id
        assert payment.settled_at is not None
        assert payment.version == 2

    @override_settings(PLATFORM_FEE_BASIS_POINTS=100)
    def test_platform_fee_applied(self, business_id, stripe_processor, schedule, captured_payment):
        payout = SettlementService.run_schedule(business_id, stripe_processor.id)

        assert payout.platform_fee_cents == 100
        assert payout.net_amount_cents == 9580

    def test_each_payment_settled_once(self, business_id, stripe_processor, schedule, captured_payment):
        first = SettlementService.run_schedule(business_id, stripe_processor.id)
        second = SettlementService.run_schedule(business_id, stripe_processor.id)

        assert first is not None
        assert second is None
        assert Payout.objects.count() == 1

    def test_only_captured_payments_of_pair(self, business_id, stripe_processor, razorpay_processor, schedule):
        included = PaymentFactory(processor=stripe_processor, captured=True)
        PaymentFactory(processor=stripe_processor)
        PaymentFactory(processor=stripe_processor, status=PaymentStatus.FAILED)
        PaymentFactory(processor=razorpay_processor, captured=True)
        PaymentFactory(captured=True)

        payout = SettlementService.run_schedule(business_id, stripe_processor.id)

        assert list(settled_payments(payout)) == [included]

    def test_partially_refunded_payment_settles_remaining(self, business_id, stripe_processor, schedule):
        payment = PaymentFactory(processor=stripe_processor, captured=True)
        Payment.objects.filter(id=payment.id).update(
            refunded_amount_cents=2500, status=PaymentStatus.PARTIALLY_REFUNDED
        )

        payout = SettlementService.run_schedule(business_id, stripe_processor.id)

        assert payout.gross_amount_cents == 7500
        assert payout.net_amount_cents == 7500 - 320

    def test_fully_refunded_payment_not_settled(self, business_id, stripe_processor, schedule):
        payment = PaymentFactory(processor=stripe_processor, captured=True)
        Payment.objects.filter(id=payment.id).update(refunded_amount_cents=10000, status=PaymentStatus.REFUNDED)

        assert SettlementService.run_schedule(business_id, stripe_processor.id) is None

    def test_nothing_to_settle_advances_schedule(self, business_id, stripe_processor, schedule):
        with freeze_time(NOW):
            assert SettlementService.run_schedule(business_id, stripe_processor.id) is None

        assert PayoutSchedule.objects.get(id=schedule.id).next_payout_date == date(2026, 10, 19)

    def test_creates_schedule_on_first_run(self, business_id, stripe_processor, captured_payment):
        SettlementService.run_schedule(business_id, stripe_processor.id)

        schedule = PayoutSchedule.objects.get(business_id=business_id, processor=stripe_processor)
        assert schedule.frequency == stripe_processor.settlement_schedule
        assert schedule.min_payout_threshold_cents == 50_000

    def test_processor_must_belong_to_business(self, stripe_processor):
        with pytest.raises(ProcessorNotFoundError):
            SettlementService.run_schedule(uuid.uuid4(), stripe_processor.id)

    def test_adjustments_deducted_and_marked_applied(self, business_id, stripe_processor, schedule):
        PaymentFactory(processor=stripe_processor, captured=True)
        adjustment = SettlementAdjustmentFactory(
            payment=PaymentFactory(processor=stripe_processor, captured=True),
        )
        Payment.objects.filter(id=adjustment.payment_id).update(payout=PayoutFactory(processor=stripe_processor))

        payout = SettlementService.run_schedule(business_id, stripe_processor.id)

        assert payout.adjustment_cents == 2500
        assert payout.net_amount_cents == 10000 - 320 - 2500
        adjustment = SettlementAdjustment.objects.get(id=adjustment.id)
        assert adjustment.applied_payout_id == payout.id
        assert adjustment.applied_at is not None

    def test_adjustment_larger_than_net_carried_forward(self, business_id, stripe_processor, schedule):
        PaymentFactory(processor=stripe_processor, captured=True, amount_cents=1000)
        adjustment = SettlementAdjustmentFactory(
            payment=PaymentFactory(processor=stripe_processor, captured=True),
        )
        Payment.objects.filter(id=adjustment.payment_id).update(payout=PayoutFactory(processor=stripe_processor))

        payout = SettlementService.run_schedule(business_id, stripe_processor.id)

        assert payout.adjustment_cents == 0
        assert SettlementAdjustment.objects.get(id=adjustment.id).applied_payout is None


# =============================================================================
# Threshold & Holds
# =============================================================================


@pytest.mark.django_db
class TestThresholdAndHolds:
    def test_below_threshold_holds(self, business_id, stripe_processor):
        schedule = PayoutScheduleFactory(processor=stripe_processor, min_payout_threshold_cents=5000)
        with freeze_time(NOW - timedelta(days=2)):
            PaymentFactory(processor=stripe_processor, captured=True, amount_cents=2000)

        with freeze_time(NOW):
            payout = SettlementService.run_schedule(business_id, stripe_processor.id)

        assert payout is None
        assert PayoutSchedule.objects.get(id=schedule.id).next_payout_date == date(2026, 10, 19)
        assert Payment.objects.unsettled().count() == 1

    def test_max_hold_period_forces_payout(self, business_id, stripe_processor):
        PayoutScheduleFactory(processor=stripe_processor, min_payout_threshold_cents=5000, max_hold_period_days=7)
        with freeze_time(NOW - timedelta(days=8)):
            PaymentFactory(processor=stripe_processor, captured=True, amount_cents=2000)
            PaymentFactory(processor=stripe_processor, captured=True, amount_cents=2000)

        with freeze_time(NOW):
            payout = SettlementService.run_schedule(business_id, stripe_processor.id)

        assert payout is not None
        assert payout.gross_amount_cents == 4000
        assert payout.payment_count == 2
        assert payout.metadata["forced_by_hold_period"] is True

    def test_threshold_met_settles(self, business_id, stripe_processor):
        PayoutScheduleFactory(processor=stripe_processor, min_payout_threshold_cents=5000)
        PaymentFactory(processor=stripe_processor, captured=True, amount_cents=6000)

        payout = SettlementService.run_schedule(business_id, stripe_processor.id)

        assert payout.gross_amount_cents == 6000
        assert payout.metadata["forced_by_hold_period"] is False

    def test_manual_hold_blocks_payout(self, business_id, stripe_processor, captured_payment):
        PayoutScheduleFactory(processor=stripe_processor, is_manually_held=True, hold_reason="Audit")

        assert SettlementService.run_schedule(business_id, stripe_processor.id) is None
        assert Payout.objects.count() == 0

    def test_inactive_schedule_skipped(self, business_id, stripe_processor, captured_payment):
        PayoutScheduleFactory(processor=stripe_processor, is_active=False)

        assert SettlementService.run_schedule(business_id, stripe_processor.id) is None


# =============================================================================
# Single-flight
# =============================================================================


@pytest.mark.django_db
class TestSettlementLock:
    def test_locked_pair_returns_none(self, business_id, stripe_processor, schedule, captured_payment, fake_redis):
        fake_redis.set(f"lock:settlement:{business_id}:{stripe_processor.id}", "other", nx=True, ex=60)

        assert SettlementService.run_schedule(business_id, stripe_processor.id) is None
        assert Payout.objects.count() == 0

    def test_locked_pair_raises_for_manual_trigger(
        self, business_id, stripe_processor, schedule, captured_payment, fake_redis
    ):
        fake_redis.set(f"lock:settlement:{business_id}:{stripe_processor.id}", "other", nx=True, ex=60)

        with pytest.raises(ScheduleLockedError):
            SettlementService.run_schedule(business_id, stripe_processor.id, raise_on_locked=True)

    def test_lock_released_after_run(self, business_id, stripe_processor, schedule, captured_payment, fake_redis):
        SettlementService.run_schedule(business_id, stripe_processor.id)

        assert fake_redis.keys("lock:settlement:*") == []


# =============================================================================
# run_due_schedules
# =============================================================================


@pytest.mark.django_db
class TestRunDueSchedules:
    def test_runs_due_and_skips_future(self, business_id, stripe_processor, razorpay_processor):
        with freeze_time(NOW):
            PayoutScheduleFactory(processor=stripe_processor, next_payout_date=date(2026, 10, 16))
            PayoutScheduleFactory(processor=razorpay_processor, next_payout_date=date(2026, 10, 20))
            PaymentFactory(processor=stripe_processor, captured=True)
            PaymentFactory(processor=razorpay_processor, captured=True)

            payouts = SettlementService.run_due_schedules()

        assert [p.processor_id for p in payouts] == [stripe_processor.id]

    def test_held_schedules_skipped(self, stripe_processor):
        PayoutScheduleFactory(processor=stripe_processor, is_manually_held=True)
        PaymentFactory(processor=stripe_processor, captured=True)

        assert SettlementService.run_due_schedules() == []

    def test_pairs_without_schedule_included(self, stripe_processor):
        PaymentFactory(processor=stripe_processor, captured=True, amount_cents=60000)

        payouts = SettlementService.run_due_schedules()

        assert len(payouts) == 1
        assert PayoutSchedule.objects.filter(processor=stripe_processor).exists()

    def test_failing_pair_does_not_stop_others(self, business_id, stripe_processor, mocker):
        other = PaymentProcessorConfigFactory()
        PayoutScheduleFactory(processor=stripe_processor)
        PayoutScheduleFactory(processor=other)
        PaymentFactory(processor=stripe_processor, captured=True)
        PaymentFactory(processor=other, captured=True)

        original = SettlementService._settle.__func__

        def flaky_settle(cls, biz_id, processor_id, now, log_context):
            if processor_id == stripe_processor.id:
                raise ProcessorNotFoundError("gone")
            return original(cls, biz_id, processor_id, now, log_context)

        mocker.patch.object(SettlementService, "_settle", classmethod(flaky_settle))

        payouts = SettlementService.run_due_schedules()

        assert [p.processor_id for p in payouts] == [other.id]

    def test_monthly_schedule_advances(self, business_id, stripe_processor):
        with freeze_time(NOW):
            schedule = PayoutScheduleFactory(
                processor=stripe_processor,
                frequency=PayoutFrequency.MONTHLY,
                monthly_day_of_month=5,
            )
            PaymentFactory(processor=stripe_processor, captured=True)

            SettlementService.run_due_schedules()

        schedule = PayoutSchedule.objects.get(id=schedule.id)
        assert schedule.next_payout_date == date(2026, 11, 5)
        assert schedule.last_payout_at is not None
