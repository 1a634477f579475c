"""
API tests for the payments endpoints.

Services run for real against the test database; processor calls go to
the FakeAdapter instances, installed in place of the real adapter classes.
The webhook endpoint is exercised with the real Razorpay adapter.
"""

import hashlib
import hmac
import json
import uuid

import pytest
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from payments.exceptions import ProcessorAuthenticationError
from payments.models import Payment, PaymentProcessorConfig, PayoutSchedule
from payments.state_machines import (
    PaymentStatus,
    PayoutFrequency,
    PayoutState,
    ProcessorStatus,
    ProcessorVariant,
    RefundState,
)
from payments.tests.factories import TEST_CREDENTIALS, PaymentFactory, PayoutFactory


@pytest.fixture
def api_client(django_user_model):
    user = django_user_model.objects.create_user(username="owner", password="not-used")
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def installed_adapters(mocker, fake_adapters):
    """Make get_adapter() hand out the FakeAdapter instances."""
    mocker.patch.dict(
        "payments.adapters.ADAPTERS",
        {variant: (lambda adapter=adapter: adapter) for variant, adapter in fake_adapters.items()},
    )
    return fake_adapters


@pytest.mark.django_db
class TestAuthentication:
    def test_requires_authentication(self, business_id):
        response = APIClient().get(reverse("payments:processor_list"), {"business_id": str(business_id)})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_webhooks_are_public(self):
        response = APIClient().post(
            reverse("payments:webhook", args=["square"]),
            data=b"{}",
            content_type="application/json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "UNSUPPORTED_PROCESSOR"


# =============================================================================
# Processors
# =============================================================================


@pytest.mark.django_db
class TestProcessorEndpoints:
    def test_list_in_selection_order(self, api_client, business_id, stripe_processor, razorpay_processor):
        response = api_client.get(reverse("payments:processor_list"), {"business_id": str(business_id)})

        assert response.status_code == status.HTTP_200_OK
        assert [p["id"] for p in response.data] == [str(stripe_processor.id), str(razorpay_processor.id)]
        assert "encrypted_credentials" not in response.data[0]
        assert "credentials" not in response.data[0]

    def test_list_requires_business(self, api_client):
        response = api_client.get(reverse("payments:processor_list"))

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_connect_and_verify(self, api_client, business_id, installed_adapters):
        response = api_client.post(
            reverse("payments:processor_list"),
            {
                "business_id": str(business_id),
                "variant": "razorpay",
                "credentials": TEST_CREDENTIALS[ProcessorVariant.RAZORPAY],
                "priority": 3,
            },
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["verified"] is True
        assert response.data["processor"]["status"] == ProcessorStatus.ACTIVE
        assert response.data["processor"]["fee_percentage"] == "2.00"
        assert "rzp_test_secret" not in json.dumps(response.json())

    def test_connect_with_rejected_credentials(self, api_client, business_id, installed_adapters):
        installed_adapters[ProcessorVariant.STRIPE].verify_error = ProcessorAuthenticationError("bad key")

        response = api_client.post(
            reverse("payments:processor_list"),
            {
                "business_id": str(business_id),
                "variant": "stripe",
                "credentials": TEST_CREDENTIALS[ProcessorVariant.STRIPE],
            },
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["verified"] is False
        assert response.data["error_code"] == "PROCESSOR_AUTH_FAILED"
        assert response.data["processor"]["status"] == ProcessorStatus.FAILED

    def test_connect_with_missing_credentials(self, api_client, business_id, installed_adapters):
        response = api_client.post(
            reverse("payments:processor_list"),
            {"business_id": str(business_id), "variant": "phonepe", "credentials": {"merchant_id": "M1"}},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert not PaymentProcessorConfig.objects.exists()

    def test_disconnect(self, api_client, stripe_processor):
        url = reverse("payments:processor_disconnect", args=[stripe_processor.id])

        response = api_client.post(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == ProcessorStatus.DISCONNECTED
        assert api_client.post(url).status_code == status.HTTP_409_CONFLICT

    def test_verify_disconnected_processor(self, api_client, stripe_processor, installed_adapters):
        api_client.post(reverse("payments:processor_disconnect", args=[stripe_processor.id]))

        response = api_client.post(reverse("payments:processor_verify", args=[stripe_processor.id]))

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "PROCESSOR_DISCONNECTED"

    def test_unknown_processor(self, api_client):
        response = api_client.post(reverse("payments:processor_verify", args=[uuid.uuid4()]))

        assert response.status_code == status.HTTP_404_NOT_FOUND


# =============================================================================
# Payments & Refunds
# =============================================================================


@pytest.mark.django_db
class TestPaymentEndpoints:
    def payment_body(self, business_id, **overrides):
        body = {
            "order_id": str(uuid.uuid4()),
            "business_id": str(business_id),
            "amount_cents": 10000,
            "currency": "usd",
            "description": "Order #1042",
        }
        body.update(overrides)
        return body

    def test_create_payment(self, api_client, business_id, stripe_processor, installed_adapters):
        response = api_client.post(reverse("payments:payment_create"), self.payment_body(business_id), format="json")

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["requires_redirect"] is False
        assert response.data["client_secret"].endswith("_secret")
        assert response.data["payment"]["status"] == PaymentStatus.PROCESSING
        assert response.data["payment"]["processor_id"] == str(stripe_processor.id)

    def test_create_payment_without_processors(self, api_client, business_id, installed_adapters):
        response = api_client.post(reverse("payments:payment_create"), self.payment_body(business_id), format="json")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "NO_ACTIVE_PROCESSOR"

    def test_all_processors_failing(self, api_client, business_id, stripe_processor, installed_adapters):
        installed_adapters[ProcessorVariant.STRIPE].create_error = ProcessorAuthenticationError("bad key")

        response = api_client.post(reverse("payments:payment_create"), self.payment_body(business_id), format="json")

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert response.data["details"]["attempts"][0]["error_code"] == "PROCESSOR_AUTH_FAILED"

    def test_invalid_amount(self, api_client, business_id):
        response = api_client.post(
            reverse("payments:payment_create"),
            self.payment_body(business_id, amount_cents=0),
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "amount_cents" in response.data

    def test_payment_detail(self, api_client, captured_payment):
        response = api_client.get(reverse("payments:payment_detail", args=[captured_payment.id]))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["refundable_balance"] == 10000
        assert api_client.get(reverse("payments:payment_detail", args=[uuid.uuid4()])).status_code == 404

    def test_refund(self, api_client, captured_payment, installed_adapters):
        response = api_client.post(
            reverse("payments:refund_create", args=[captured_payment.id]),
            {"amount_cents": 2500, "reason": "Cold food"},
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["status"] == RefundState.COMPLETED
        assert response.data["payment"]["refunded_amount_cents"] == 2500
        assert response.data["payment"]["status"] == PaymentStatus.PARTIALLY_REFUNDED

    def test_refund_exceeding_balance(self, api_client, captured_payment, installed_adapters):
        response = api_client.post(
            reverse("payments:refund_create", args=[captured_payment.id]),
            {"amount_cents": 20000},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["details"]["refundable_cents"] == 10000

    def test_refund_uncaptured_payment(self, api_client, processing_payment, installed_adapters):
        response = api_client.post(reverse("payments:refund_create", args=[processing_payment.id]), {}, format="json")

        assert response.status_code == status.HTTP_409_CONFLICT


# =============================================================================
# Payouts & Schedules
# =============================================================================


@pytest.mark.django_db
class TestPayoutEndpoints:
    def test_history(self, api_client, business_id, stripe_processor):
        paid = PayoutFactory(processor=stripe_processor, status=PayoutState.PAID)
        PayoutFactory(processor=stripe_processor)

        response = api_client.get(
            reverse("payments:payout_list"),
            {"business_id": str(business_id), "status": PayoutState.PAID},
        )

        assert response.status_code == status.HTTP_200_OK
        assert [p["id"] for p in response.data] == [str(paid.id)]

    def test_retry_failed_payout(self, api_client, stripe_processor):
        payout = PayoutFactory(processor=stripe_processor, status=PayoutState.FAILED)

        response = api_client.post(reverse("payments:payout_retry", args=[payout.id]))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == PayoutState.PENDING
        assert response.data["retry_count"] == 1

    def test_retry_pending_payout(self, api_client, stripe_processor):
        payout = PayoutFactory(processor=stripe_processor)

        response = api_client.post(reverse("payments:payout_retry", args=[payout.id]))

        assert response.status_code == status.HTTP_409_CONFLICT

    def test_payout_detail_not_found(self, api_client):
        response = api_client.get(reverse("payments:payout_detail", args=[uuid.uuid4()]))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error_code"] == "PAYOUT_NOT_FOUND"


@pytest.mark.django_db
class TestScheduleEndpoints:
    def schedule_url(self, business_id, processor):
        return f"{reverse('payments:schedule')}?business_id={business_id}&processor_id={processor.id}"

    def test_get_creates_schedule(self, api_client, business_id, stripe_processor):
        response = api_client.get(self.schedule_url(business_id, stripe_processor))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["frequency"] == PayoutFrequency.WEEKLY
        assert PayoutSchedule.objects.filter(business_id=business_id, processor=stripe_processor).exists()

    def test_update(self, api_client, business_id, stripe_processor):
        response = api_client.put(
            self.schedule_url(business_id, stripe_processor),
            {"frequency": "monthly", "monthly_day_of_month": 15, "min_payout_threshold_cents": 0},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["frequency"] == PayoutFrequency.MONTHLY
        assert response.data["next_payout_date"].endswith("-15")

    def test_update_rejects_out_of_range_day(self, api_client, business_id, stripe_processor):
        response = api_client.put(
            self.schedule_url(business_id, stripe_processor),
            {"monthly_day_of_month": 31},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_processor_of_other_business(self, api_client, stripe_processor):
        response = api_client.get(self.schedule_url(uuid.uuid4(), stripe_processor))

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_hold(self, api_client, schedule):
        response = api_client.post(
            reverse("payments:schedule_hold", args=[schedule.id]),
            {"held": True, "reason": "Chargeback review"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["is_manually_held"] is True
        assert PayoutSchedule.objects.get(id=schedule.id).hold_reason == "Chargeback review"

    def test_hold_unknown_schedule(self, api_client):
        response = api_client.post(
            reverse("payments:schedule_hold", args=[uuid.uuid4()]),
            {"held": True},
            format="json",
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error_code"] == "SCHEDULE_NOT_FOUND"

    def test_run_now(self, api_client, schedule, captured_payment):
        url = reverse("payments:schedule_run", args=[schedule.id])

        response = api_client.post(url)

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["payout"]["net_amount_cents"] == 9680
        assert Payment.objects.get(id=captured_payment.id).payout_id is not None

        again = api_client.post(url)
        assert again.status_code == status.HTTP_200_OK
        assert again.data["payout"] is None

    def test_run_while_locked(self, api_client, schedule, captured_payment, fake_redis):
        fake_redis.set(f"lock:settlement:{schedule.business_id}:{schedule.processor_id}", "other", nx=True, ex=60)

        response = api_client.post(reverse("payments:schedule_run", args=[schedule.id]))

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "SCHEDULE_LOCKED"


# =============================================================================
# Reports
# =============================================================================


@pytest.mark.django_db
class TestReportEndpoint:
    def test_report(self, api_client, business_id, captured_payment):
        response = api_client.get(
            reverse("payments:settlement_report"),
            {
                "business_id": str(business_id),
                "start": "2000-01-01T00:00:00Z",
                "end": "2100-01-01T00:00:00Z",
            },
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["summary"]["payment_count"] == 1
        assert response.data["summary"]["net_cents"] == 9680
        assert response.data["by_processor"][0]["average_fee_percentage"] == "3.20"

    def test_inverted_period(self, api_client, business_id):
        response = api_client.get(
            reverse("payments:settlement_report"),
            {
                "business_id": str(business_id),
                "start": "2026-11-01T00:00:00Z",
                "end": "2026-10-01T00:00:00Z",
            },
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST


# =============================================================================
# Webhooks
# =============================================================================


def razorpay_sign(body: bytes) -> str:
    secret = TEST_CREDENTIALS[ProcessorVariant.RAZORPAY]["webhook_secret"]
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


@pytest.mark.django_db
class TestWebhookEndpoint:
    @pytest.fixture
    def razorpay_payment(self, razorpay_processor):
        return PaymentFactory(processor=razorpay_processor, provider_reference="order_View1", currency="inr")

    def captured_body(self):
        return json.dumps(
            {
                "event": "payment.captured",
                "payload": {"payment": {"entity": {"id": "pay_View1", "order_id": "order_View1", "amount": 10000}}},
            }
        ).encode()

    def post(self, body, signature, path_args=("razorpay",)):
        return APIClient().post(
            reverse("payments:webhook" if len(path_args) == 1 else "payments:processor_webhook", args=path_args),
            data=body,
            content_type="application/json",
            HTTP_X_RAZORPAY_SIGNATURE=signature,
        )

    def test_captured(self, razorpay_payment):
        body = self.captured_body()

        response = self.post(body, razorpay_sign(body))

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "processed": True,
            "event_type": "payment.succeeded",
            "event_id": "pay_View1:payment.captured",
        }
        assert Payment.objects.get(id=razorpay_payment.id).status == PaymentStatus.SUCCEEDED

    def test_redelivery_acknowledged(self, razorpay_payment):
        body = self.captured_body()
        self.post(body, razorpay_sign(body))

        response = self.post(body, razorpay_sign(body))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["processed"] is False

    def test_processor_scoped_route(self, razorpay_payment, razorpay_processor):
        body = self.captured_body()

        response = self.post(body, razorpay_sign(body), path_args=("razorpay", razorpay_processor.id))

        assert response.status_code == status.HTTP_200_OK

    def test_bad_signature(self, razorpay_payment):
        response = self.post(self.captured_body(), "0" * 64)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert Payment.objects.get(id=razorpay_payment.id).status == PaymentStatus.PROCESSING

    def test_get_not_allowed(self):
        response = APIClient().get(reverse("payments:webhook", args=["razorpay"]))

        assert response.status_code == status.HTTP_405_METHOD_NOT_ALLOWED
