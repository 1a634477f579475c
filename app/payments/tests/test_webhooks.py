"""
Tests for WebhookService.

Most scenarios use FakeAdapter, whose webhook body is a JSON dict of
ParsedWebhookEvent fields and whose signature is the config's
webhook_secret. TestRazorpayWebhooks runs the real Razorpay adapter with
HMAC-signed bodies end to end.
"""

import hashlib
import hmac
import json
from datetime import timedelta

import pytest
from django.utils import timezone
from freezegun import freeze_time

from core.exceptions import ValidationError
from payments.exceptions import (
    InvalidSignatureError,
    InvalidWebhookPayloadError,
    ProcessorNotFoundError,
    UnknownPaymentReferenceError,
)
from payments.models import Payment, Refund, SettlementAdjustment, WebhookEvent
from payments.services import WebhookService
from payments.services.webhook_service import PROVIDER_REFUND_REASON
from payments.state_machines import (
    PaymentStatus,
    ProcessorStatus,
    ProcessorVariant,
    RefundState,
    WebhookEventStatus,
    WebhookEventType,
)
from payments.tests.factories import (
    TEST_CREDENTIALS,
    PaymentFactory,
    PaymentProcessorConfigFactory,
    PayoutFactory,
    RefundFactory,
    WebhookEventFactory,
)

STRIPE_SECRET = TEST_CREDENTIALS[ProcessorVariant.STRIPE]["webhook_secret"]


@pytest.fixture
def service(fake_adapters):
    return WebhookService(adapters=fake_adapters)


@pytest.fixture
def deliver(service):
    """Deliver a Stripe-variant event signed with the test secret."""

    def _deliver(signature=STRIPE_SECRET, processor_id=None, **event):
        body = json.dumps(event).encode()
        return service.handle_webhook(ProcessorVariant.STRIPE, body, signature, processor_id=processor_id)

    return _deliver


def succeeded_event(payment, event_id="evt_succeeded", **extra):
    return {
        "event_id": event_id,
        "event_type": WebhookEventType.PAYMENT_SUCCEEDED,
        "raw_type": "payment_intent.succeeded",
        "provider_reference": payment.provider_reference,
        "amount_cents": payment.amount_cents,
        **extra,
    }


def refund_event(payment, event_id="evt_refund", **extra):
    return {
        "event_id": event_id,
        "event_type": WebhookEventType.REFUND_SUCCEEDED,
        "raw_type": "charge.refunded",
        "provider_reference": payment.provider_reference,
        **extra,
    }


# =============================================================================
# Payment Events
# =============================================================================


@pytest.mark.django_db
class TestPaymentEvents:
    """Capture and failure events."""

    def test_success_marks_payment_succeeded(self, deliver, processing_payment):
        result = deliver(**succeeded_event(processing_payment, provider_charge_id="ch_123"))

        assert result.processed is True
        assert result.event_type == WebhookEventType.PAYMENT_SUCCEEDED
        assert result.event_id == "evt_succeeded"

        payment = Payment.objects.get(id=processing_payment.id)
        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.succeeded_at is not None
        assert payment.confirmation_event_id == "evt_succeeded"
        assert payment.metadata["provider_charge_id"] == "ch_123"

        ledger = WebhookEvent.objects.get(event_id="evt_succeeded")
        assert ledger.status == WebhookEventStatus.PROCESSED
        assert ledger.payment_id == payment.id
        assert ledger.processed_at is not None

    def test_pending_payment_can_succeed(self, deliver, stripe_processor):
        payment = PaymentFactory(processor=stripe_processor, status=PaymentStatus.PENDING)

        deliver(**succeeded_event(payment))

        assert Payment.objects.get(id=payment.id).status == PaymentStatus.SUCCEEDED

    def test_failure_marks_payment_failed(self, deliver, processing_payment):
        result = deliver(
            event_id="evt_failed",
            event_type=WebhookEventType.PAYMENT_FAILED,
            raw_type="payment_intent.payment_failed",
            provider_reference=processing_payment.provider_reference,
            failure_reason="card_declined",
        )

        assert result.processed is True
        payment = Payment.objects.get(id=processing_payment.id)
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "card_declined"

    def test_late_failure_after_capture_is_acknowledged_no_op(self, deliver, captured_payment):
        result = deliver(
            event_id="evt_late_failed",
            event_type=WebhookEventType.PAYMENT_FAILED,
            raw_type="payment_intent.payment_failed",
            provider_reference=captured_payment.provider_reference,
            failure_reason="card_declined",
        )

        assert result.processed is True
        assert result.note == "payment already succeeded"
        assert Payment.objects.get(id=captured_payment.id).status == PaymentStatus.SUCCEEDED
        assert WebhookEvent.objects.get(event_id="evt_late_failed").status == WebhookEventStatus.IGNORED

    def test_success_after_failure_is_ignored(self, deliver, stripe_processor):
        payment = PaymentFactory(processor=stripe_processor, status=PaymentStatus.FAILED)

        result = deliver(**succeeded_event(payment))

        assert result.processed is True
        assert result.note == "payment already failed"
        assert Payment.objects.get(id=payment.id).status == PaymentStatus.FAILED
        assert WebhookEvent.objects.get(event_id="evt_succeeded").status == WebhookEventStatus.IGNORED

    def test_duplicate_capture_for_order_is_not_applied(self, deliver, stripe_processor, razorpay_processor):
        captured = PaymentFactory(processor=razorpay_processor, captured=True)
        second = PaymentFactory(processor=stripe_processor, order_id=captured.order_id)

        result = deliver(**succeeded_event(second))

        assert result.processed is True
        assert "duplicate capture" in result.note
        assert Payment.objects.get(id=second.id).status == PaymentStatus.PROCESSING
        assert Payment.objects.filter(order_id=captured.order_id).captured().count() == 1


# =============================================================================
# Idempotency & Rejection
# =============================================================================


@pytest.mark.django_db
class TestDeliveryGuards:
    def test_redelivery_applied_once(self, deliver, processing_payment):
        first = deliver(**succeeded_event(processing_payment))
        payment_version = Payment.objects.get(id=processing_payment.id).version

        second = deliver(**succeeded_event(processing_payment))

        assert first.processed is True
        assert second.processed is False
        assert second.note == "duplicate delivery"
        assert WebhookEvent.objects.filter(event_id="evt_succeeded").count() == 1
        assert Payment.objects.get(id=processing_payment.id).version == payment_version

    def test_invalid_signature_rejected(self, deliver, processing_payment):
        with pytest.raises(InvalidSignatureError):
            deliver(signature="whsec_wrong", **succeeded_event(processing_payment))

        assert Payment.objects.get(id=processing_payment.id).status == PaymentStatus.PROCESSING
        assert not WebhookEvent.objects.exists()

    def test_missing_signature_rejected(self, deliver, processing_payment):
        with pytest.raises(InvalidSignatureError):
            deliver(signature="", **succeeded_event(processing_payment))

    def test_disconnected_processor_secret_not_trusted(self, deliver, business_id):
        config = PaymentProcessorConfigFactory(business_id=business_id, status=ProcessorStatus.DISCONNECTED)
        payment = PaymentFactory(processor=config)

        with pytest.raises(InvalidSignatureError):
            deliver(**succeeded_event(payment))

    def test_unknown_reference_rejected(self, deliver, stripe_processor):
        with pytest.raises(UnknownPaymentReferenceError):
            deliver(
                event_id="evt_orphan",
                event_type=WebhookEventType.PAYMENT_SUCCEEDED,
                provider_reference="pi_never_created",
            )

        assert not WebhookEvent.objects.exists()

    def test_unknown_event_type_acknowledged(self, deliver, processing_payment):
        result = deliver(
            event_id="evt_other",
            event_type=WebhookEventType.UNKNOWN,
            raw_type="customer.created",
        )

        assert result.processed is True
        assert result.event_type == "customer.created"
        assert not WebhookEvent.objects.exists()
        assert Payment.objects.get(id=processing_payment.id).status == PaymentStatus.PROCESSING

    def test_unsupported_variant(self, service):
        with pytest.raises(ValidationError) as exc_info:
            service.handle_webhook("square", b"{}", "sig")

        assert exc_info.value.error_code == "UNSUPPORTED_PROCESSOR"

    def test_signature_scopes_payment_lookup(self, deliver, stripe_processor):
        """A secret of one business cannot move another business's payment."""
        other = PaymentProcessorConfigFactory(
            credentials={"secret_key": "sk_other", "webhook_secret": "whsec_other"},
        )
        payment = PaymentFactory(processor=stripe_processor)

        with pytest.raises(UnknownPaymentReferenceError):
            deliver(signature="whsec_other", **succeeded_event(payment))

        assert other.business_id != payment.business_id
        assert Payment.objects.get(id=payment.id).status == PaymentStatus.PROCESSING

    def test_processor_id_in_url_must_exist(self, deliver, processing_payment, razorpay_processor):
        with pytest.raises(ProcessorNotFoundError):
            deliver(processor_id=razorpay_processor.id, **succeeded_event(processing_payment))

    def test_processor_id_in_url(self, deliver, processing_payment, stripe_processor):
        result = deliver(processor_id=stripe_processor.id, **succeeded_event(processing_payment))

        assert result.processed is True


# =============================================================================
# Refund Events
# =============================================================================


@pytest.mark.django_db
class TestRefundEvents:
    def test_completes_refund_by_provider_id(self, deliver, captured_payment):
        refund = RefundFactory(payment=captured_payment, provider_refund_id="re_1", amount_cents=2500)

        result = deliver(**refund_event(captured_payment, provider_refund_id="re_1", amount_cents=2500))

        assert result.processed is True
        assert Refund.objects.get(id=refund.id).status == RefundState.COMPLETED
        payment = Payment.objects.get(id=captured_payment.id)
        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED
        assert payment.refunded_amount_cents == 2500

    def test_matches_in_flight_refund_by_amount(self, deliver, captured_payment):
        """The webhook can arrive before the refund call stored the provider id."""
        refund = RefundFactory(payment=captured_payment, amount_cents=4000)

        deliver(**refund_event(captured_payment, provider_refund_id="re_early", amount_cents=4000))

        refund = Refund.objects.get(id=refund.id)
        assert refund.status == RefundState.COMPLETED
        assert refund.provider_refund_id == "re_early"
        assert Refund.objects.filter(payment=captured_payment).count() == 1

    def test_already_completed_refund_ignored(self, deliver, captured_payment):
        RefundFactory(
            payment=captured_payment,
            provider_refund_id="re_1",
            status=RefundState.COMPLETED,
        )
        Payment.objects.filter(id=captured_payment.id).update(
            refunded_amount_cents=2500, status=PaymentStatus.PARTIALLY_REFUNDED
        )

        result = deliver(**refund_event(captured_payment, provider_refund_id="re_1", amount_cents=2500))

        assert result.processed is True
        assert result.note == "refund already applied"
        assert Payment.objects.get(id=captured_payment.id).refunded_amount_cents == 2500

    def test_provider_initiated_refund_recorded(self, deliver, captured_payment):
        result = deliver(**refund_event(captured_payment, provider_refund_id="re_dash", amount_cents=10000))

        assert result.processed is True
        refund = Refund.objects.get(payment=captured_payment)
        assert refund.status == RefundState.COMPLETED
        assert refund.reason == PROVIDER_REFUND_REASON
        assert refund.provider_refund_id == "re_dash"
        assert Payment.objects.get(id=captured_payment.id).status == PaymentStatus.REFUNDED

    def test_refund_clamped_to_balance(self, deliver, captured_payment):
        Payment.objects.filter(id=captured_payment.id).update(
            refunded_amount_cents=9000, status=PaymentStatus.PARTIALLY_REFUNDED
        )

        deliver(**refund_event(captured_payment, provider_refund_id="re_big", amount_cents=5000))

        assert Refund.objects.get(provider_refund_id="re_big").amount_cents == 1000
        payment = Payment.objects.get(id=captured_payment.id)
        assert payment.refunded_amount_cents == 10000
        assert payment.status == PaymentStatus.REFUNDED

    def test_refund_on_uncaptured_payment_ignored(self, deliver, processing_payment):
        result = deliver(**refund_event(processing_payment, provider_refund_id="re_x", amount_cents=100))

        assert result.processed is True
        assert result.note == "payment is processing"

    def test_refund_on_settled_payment_creates_adjustment(self, deliver, captured_payment):
        payout = PayoutFactory(processor=captured_payment.processor)
        Payment.objects.filter(id=captured_payment.id).update(payout=payout, settled_at=timezone.now())

        deliver(**refund_event(captured_payment, provider_refund_id="re_late", amount_cents=3000))

        adjustment = SettlementAdjustment.objects.get(payment=captured_payment)
        assert adjustment.amount_cents == 3000
        assert adjustment.applied_payout is None
        assert adjustment.processor_id == captured_payment.processor_id


# =============================================================================
# Ledger Retention
# =============================================================================


@pytest.mark.django_db
class TestCleanupOldEvents:
    def test_deletes_only_old_unlinked_rows(self, service, processing_payment):
        with freeze_time(timezone.now() - timedelta(days=100)):
            old_unlinked = WebhookEventFactory()
            old_linked = WebhookEventFactory(payment=processing_payment)
        recent = WebhookEventFactory()

        deleted = service.cleanup_old_events(days=90)

        assert deleted == 1
        assert not WebhookEvent.objects.filter(id=old_unlinked.id).exists()
        assert WebhookEvent.objects.filter(id__in=[old_linked.id, recent.id]).count() == 2


# =============================================================================
# Razorpay (real adapter)
# =============================================================================


def razorpay_sign(body: bytes) -> str:
    secret = TEST_CREDENTIALS[ProcessorVariant.RAZORPAY]["webhook_secret"]
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


@pytest.mark.django_db
class TestRazorpayWebhooks:
    """Signature verification and parsing through RazorpayAdapter."""

    @pytest.fixture
    def razorpay_payment(self, razorpay_processor):
        return PaymentFactory(processor=razorpay_processor, provider_reference="order_Rzp123", currency="inr")

    def test_captured_event(self, razorpay_payment):
        body = json.dumps(
            {
                "event": "payment.captured",
                "payload": {"payment": {"entity": {"id": "pay_Abc", "order_id": "order_Rzp123", "amount": 10000}}},
            }
        ).encode()

        result = WebhookService().handle_webhook(ProcessorVariant.RAZORPAY, body, razorpay_sign(body))

        assert result.processed is True
        assert result.event_id == "pay_Abc:payment.captured"
        payment = Payment.objects.get(id=razorpay_payment.id)
        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.metadata["provider_charge_id"] == "pay_Abc"

    def test_refund_event_found_by_charge_id(self, razorpay_payment):
        Payment.objects.filter(id=razorpay_payment.id).update(
            status=PaymentStatus.SUCCEEDED,
            succeeded_at=timezone.now(),
            metadata={"provider_charge_id": "pay_Abc"},
        )
        body = json.dumps(
            {
                "event": "refund.processed",
                "payload": {"refund": {"entity": {"id": "rfnd_1", "payment_id": "pay_Abc", "amount": 2500}}},
            }
        ).encode()

        result = WebhookService().handle_webhook(ProcessorVariant.RAZORPAY, body, razorpay_sign(body))

        assert result.processed is True
        payment = Payment.objects.get(id=razorpay_payment.id)
        assert payment.refunded_amount_cents == 2500
        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED

    def test_tampered_body_rejected(self, razorpay_payment):
        body = json.dumps({"event": "payment.captured", "payload": {}}).encode()
        signature = razorpay_sign(body)

        with pytest.raises(InvalidSignatureError):
            WebhookService().handle_webhook(ProcessorVariant.RAZORPAY, body + b" ", signature)

    def test_malformed_body(self, razorpay_payment):
        body = b"not json"

        with pytest.raises(InvalidWebhookPayloadError):
            WebhookService().handle_webhook(ProcessorVariant.RAZORPAY, body, razorpay_sign(body))
