"""
Factory Boy factories for payment test data.

Factories create rows directly in the state a test needs; status fields
are FSM-protected, so they can only be set when the row is built.

Usage:
    from payments.tests.factories import PaymentFactory, PaymentProcessorConfigFactory

    processor = PaymentProcessorConfigFactory(variant=ProcessorVariant.RAZORPAY)
    payment = PaymentFactory(processor=processor, captured=True)
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import factory
from django.utils import timezone

from payments.adapters import IdempotencyKeyGenerator
from payments.credentials import encrypt_credentials
from payments.models import (
    Payment,
    PaymentProcessorConfig,
    Payout,
    PayoutSchedule,
    Refund,
    SettlementAdjustment,
    WebhookEvent,
)
from payments.state_machines import (
    PaymentStatus,
    PayoutFrequency,
    ProcessorStatus,
    ProcessorVariant,
    RefundState,
    WebhookEventType,
)

TEST_CREDENTIALS = {
    ProcessorVariant.STRIPE: {"secret_key": "sk_test_123", "webhook_secret": "whsec_stripe_test"},
    ProcessorVariant.RAZORPAY: {
        "key_id": "rzp_test_key",
        "key_secret": "rzp_test_secret",
        "webhook_secret": "whsec_razorpay_test",
    },
    ProcessorVariant.PHONEPE: {"merchant_id": "PGTESTPAYUAT", "salt_key": "phonepe-salt", "salt_index": "1"},
    ProcessorVariant.PAYTM: {"merchant_id": "PAYTMTEST01", "merchant_key": "paytm_key_1234567"},
}


class PaymentProcessorConfigFactory(factory.django.DjangoModelFactory):
    """
    Factory for PaymentProcessorConfig.

    Default is an active Stripe config charging 2.90% + 30. Credentials
    come from TEST_CREDENTIALS for the variant unless passed explicitly.

    Example:
        config = PaymentProcessorConfigFactory(
            variant=ProcessorVariant.PHONEPE,
            status=ProcessorStatus.FAILED,
            priority=2,
        )
    """

    class Meta:
        model = PaymentProcessorConfig
        skip_postgeneration_save = True

    class Params:
        credentials = factory.LazyAttribute(lambda o: TEST_CREDENTIALS[o.variant])

    business_id = factory.LazyFunction(uuid.uuid4)
    variant = ProcessorVariant.STRIPE
    display_name = factory.LazyAttribute(lambda o: f"{o.variant} test")
    status = ProcessorStatus.ACTIVE
    priority = factory.Sequence(lambda n: n + 1)
    fee_percentage = Decimal("2.90")
    fixed_fee_cents = 30
    settlement_schedule = PayoutFrequency.WEEKLY
    currency = "usd"
    encrypted_credentials = factory.LazyAttribute(lambda o: encrypt_credentials(o.credentials))


class PaymentFactory(factory.django.DjangoModelFactory):
    """
    Factory for Payment.

    Default is a processing payment of 10000 with the processor's fee
    snapshotted. Use ``captured=True`` for a succeeded payment.
    """

    class Meta:
        model = Payment
        skip_postgeneration_save = True

    class Params:
        captured = factory.Trait(
            status=PaymentStatus.SUCCEEDED,
            succeeded_at=factory.LazyFunction(timezone.now),
        )

    processor = factory.SubFactory(PaymentProcessorConfigFactory)
    business_id = factory.SelfAttribute("processor.business_id")
    processor_variant = factory.SelfAttribute("processor.variant")
    order_id = factory.LazyFunction(uuid.uuid4)
    provider_reference = factory.Sequence(lambda n: f"ref_{n:06d}")
    idempotency_key = factory.LazyAttribute(
        lambda o: IdempotencyKeyGenerator.generate("create_payment", o.order_id, 1)
    )
    amount_cents = 10000
    currency = "usd"
    description = "Order for two"
    processor_fee_cents = factory.LazyAttribute(lambda o: o.processor.fee_for(o.amount_cents))
    status = PaymentStatus.PROCESSING


class RefundFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Refund
        skip_postgeneration_save = True

    payment = factory.SubFactory(PaymentFactory, captured=True)
    amount_cents = 2500
    reason = "Item missing"
    status = RefundState.PROCESSING
    idempotency_key = factory.LazyFunction(lambda: f"create_refund:{uuid.uuid4()}:1:test")


class PayoutScheduleFactory(factory.django.DjangoModelFactory):
    """
    Factory for PayoutSchedule.

    Defaults to a daily schedule with no threshold, so settlement creates
    a payout whenever there is something to settle.
    """

    class Meta:
        model = PayoutSchedule
        skip_postgeneration_save = True

    processor = factory.SubFactory(PaymentProcessorConfigFactory)
    business_id = factory.SelfAttribute("processor.business_id")
    frequency = PayoutFrequency.DAILY
    currency = "usd"
    min_payout_threshold_cents = 0
    max_hold_period_days = 7


class PayoutFactory(factory.django.DjangoModelFactory):
    """Factory for Payout; net is derived so the amount invariant holds."""

    class Meta:
        model = Payout
        skip_postgeneration_save = True

    processor = factory.SubFactory(PaymentProcessorConfigFactory)
    business_id = factory.SelfAttribute("processor.business_id")
    period_start = factory.LazyFunction(lambda: timezone.now() - timedelta(days=1))
    period_end = factory.LazyFunction(timezone.now)
    currency = "usd"
    gross_amount_cents = 10000
    processor_fee_cents = 320
    platform_fee_cents = 0
    adjustment_cents = 0
    net_amount_cents = factory.LazyAttribute(
        lambda o: o.gross_amount_cents - o.processor_fee_cents - o.platform_fee_cents - o.adjustment_cents
    )
    payment_count = 1


class SettlementAdjustmentFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = SettlementAdjustment
        skip_postgeneration_save = True

    payment = factory.SubFactory(PaymentFactory, captured=True)
    processor = factory.SelfAttribute("payment.processor")
    business_id = factory.SelfAttribute("payment.business_id")
    refund = factory.SubFactory(
        RefundFactory,
        payment=factory.SelfAttribute("..payment"),
        status=RefundState.COMPLETED,
    )
    amount_cents = factory.SelfAttribute("refund.amount_cents")
    reason = "Refund on settled payment"


class WebhookEventFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = WebhookEvent
        skip_postgeneration_save = True

    processor_variant = ProcessorVariant.STRIPE
    event_id = factory.Sequence(lambda n: f"evt_{n:08d}")
    event_type = WebhookEventType.PAYMENT_SUCCEEDED
    raw_type = "payment_intent.succeeded"
    payload = factory.LazyFunction(dict)
