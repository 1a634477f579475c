"""
Tests for the payments Celery tasks.

Tasks are called directly (synchronously); they are thin wrappers, so
these tests check the wiring and the returned summaries.
"""

from datetime import timedelta

import pytest
from django.test import override_settings
from django.utils import timezone
from django_celery_beat.models import PeriodicTask
from freezegun import freeze_time

from payments.exceptions import ProcessorAuthenticationError
from payments.models import PaymentProcessorConfig, Payout, WebhookEvent
from payments.state_machines import ProcessorStatus, ProcessorVariant
from payments.tasks import (
    cleanup_old_webhooks,
    reverify_failed_processors,
    run_due_schedules,
    run_settlement_schedule,
)
from payments.tests.factories import PaymentProcessorConfigFactory, WebhookEventFactory


@pytest.fixture
def installed_adapters(mocker, fake_adapters):
    mocker.patch.dict(
        "payments.adapters.ADAPTERS",
        {variant: (lambda adapter=adapter: adapter) for variant, adapter in fake_adapters.items()},
    )
    return fake_adapters


@pytest.mark.django_db
class TestSettlementTasks:
    def test_run_settlement_schedule(self, business_id, stripe_processor, schedule, captured_payment):
        result = run_settlement_schedule(str(business_id), str(stripe_processor.id))

        payout = Payout.objects.get()
        assert result == {"payout_id": str(payout.id)}

    def test_run_settlement_schedule_nothing_to_settle(self, business_id, stripe_processor, schedule):
        assert run_settlement_schedule(str(business_id), str(stripe_processor.id)) == {"payout_id": None}

    def test_run_settlement_schedule_locked(self, business_id, stripe_processor, schedule, captured_payment, fake_redis):
        fake_redis.set(f"lock:settlement:{business_id}:{stripe_processor.id}", "other", nx=True, ex=60)

        assert run_settlement_schedule(str(business_id), str(stripe_processor.id)) == {"payout_id": None}
        assert not Payout.objects.exists()

    def test_run_due_schedules(self, schedule, captured_payment):
        schedule.next_payout_date = timezone.localdate() - timedelta(days=1)
        schedule.save()

        result = run_due_schedules()

        assert result["payouts_created"] == 1
        assert result["payout_ids"] == [str(Payout.objects.get().id)]


@pytest.mark.django_db
class TestMaintenanceTasks:
    def test_reverify_failed_processors(self, business_id, installed_adapters):
        recovering = PaymentProcessorConfigFactory(business_id=business_id, status=ProcessorStatus.FAILED)
        still_broken = PaymentProcessorConfigFactory(
            business_id=business_id,
            variant=ProcessorVariant.RAZORPAY,
            status=ProcessorStatus.FAILED,
        )
        installed_adapters[ProcessorVariant.RAZORPAY].verify_error = ProcessorAuthenticationError("revoked")

        result = reverify_failed_processors()

        assert result == {"recovered_count": 1}
        assert PaymentProcessorConfig.objects.get(id=recovering.id).status == ProcessorStatus.ACTIVE
        assert PaymentProcessorConfig.objects.get(id=still_broken.id).status == ProcessorStatus.FAILED

    @override_settings(WEBHOOK_RETENTION_DAYS=30)
    def test_cleanup_uses_retention_setting(self):
        with freeze_time(timezone.now() - timedelta(days=45)):
            WebhookEventFactory()
        recent = WebhookEventFactory()

        assert cleanup_old_webhooks() == {"deleted_count": 1}
        assert list(WebhookEvent.objects.all()) == [recent]

    def test_cleanup_with_explicit_window(self):
        with freeze_time(timezone.now() - timedelta(days=45)):
            WebhookEventFactory()

        assert cleanup_old_webhooks(days=60) == {"deleted_count": 0}


@pytest.mark.django_db
class TestBeatSchedules:
    def test_periodic_tasks_installed(self):
        tasks = set(PeriodicTask.objects.values_list("task", flat=True))

        assert {
            "payments.tasks.run_due_schedules",
            "payments.tasks.reverify_failed_processors",
            "payments.tasks.cleanup_old_webhooks",
        } <= tasks
