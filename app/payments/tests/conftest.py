"""
Pytest fixtures for payment tests.

Provides:
    - An in-memory Redis double behind payments.locks (autouse)
    - A cleared local-memory cache so circuit breakers start closed (autouse)
    - FakeAdapter: a scriptable processor adapter injected into services
    - Processor, payment and schedule fixtures in common states

Usage:
    def test_fallback(business_id, fake_adapters, stripe_processor):
        fake_adapters["stripe"].create_error = ProcessorTimeoutError("slow")
        ...
"""

import fnmatch
import json
import time
import uuid
from decimal import Decimal

import pytest
from django.core.cache import cache

from payments.adapters.base import ParsedWebhookEvent, ProviderPaymentIntent, ProviderRefund
from payments.state_machines import ProcessorVariant
from payments.tests.factories import (
    PaymentFactory,
    PaymentProcessorConfigFactory,
    PayoutScheduleFactory,
)


# =============================================================================
# Infrastructure Doubles
# =============================================================================


class InMemoryRedis:
    """
    The subset of the redis client used by DistributedLock.

    Understands SET NX EX and the two Lua scripts (release and extend),
    distinguished by the command they run.
    """

    def __init__(self):
        self.store: dict[str, tuple[str, float | None]] = {}

    def _live(self, key):
        value = self.store.get(key)
        if value is None:
            return None
        token, expires_at = value
        if expires_at is not None and expires_at <= time.monotonic():
            del self.store[key]
            return None
        return token

    def set(self, key, value, nx=False, ex=None):
        if nx and self._live(key) is not None:
            return None
        expires_at = time.monotonic() + ex if ex else None
        self.store[key] = (value, expires_at)
        return True

    def get(self, key):
        return self._live(key)

    def eval(self, script, numkeys, key, token, *args):
        if self._live(key) != token:
            return 0
        if '"del"' in script:
            del self.store[key]
            return 1
        self.store[key] = (token, time.monotonic() + int(args[0]))
        return 1

    def keys(self, pattern="*"):
        return [key for key in self.store if fnmatch.fnmatch(key, pattern) and self._live(key)]


@pytest.fixture(autouse=True)
def fake_redis(mocker):
    """Route every distributed lock to an in-memory store."""
    redis = InMemoryRedis()
    mocker.patch("payments.locks.get_redis_connection", return_value=redis)
    return redis


@pytest.fixture(autouse=True)
def clear_cache():
    """Circuit breaker state lives in the cache; start every test closed."""
    cache.clear()
    yield
    cache.clear()


class FakeAdapter:
    """
    Scriptable stand-in for a ProcessorAdapter.

    Set ``create_error``, ``refund_error`` or ``verify_error`` to make the
    next calls raise. Webhook bodies are JSON dicts of ParsedWebhookEvent
    fields, and the signature is valid when it equals the config's
    ``webhook_secret``.
    """

    def __init__(self, variant, redirect=False):
        self.variant = variant
        self.redirect = redirect
        self.refund_status = ProviderRefund.COMPLETED
        self.create_error = None
        self.refund_error = None
        self.verify_error = None
        self.create_requests = []
        self.refund_requests = []
        self.verified_credentials = []

    def create_payment(self, request, credentials):
        self.create_requests.append(request)
        if self.create_error is not None:
            raise self.create_error

        reference = f"{self.variant}_{request.merchant_reference}"
        if self.redirect:
            return ProviderPaymentIntent(
                provider_reference=reference,
                payment_url=f"https://pay.example.test/{reference}",
            )
        return ProviderPaymentIntent(provider_reference=reference, client_secret=f"{reference}_secret")

    def create_refund(self, request, credentials):
        self.refund_requests.append(request)
        if self.refund_error is not None:
            raise self.refund_error
        return ProviderRefund(provider_refund_id=f"rf_{request.refund_reference[:12]}", status=self.refund_status)

    def verify_credentials(self, credentials):
        self.verified_credentials.append(credentials)
        if self.verify_error is not None:
            raise self.verify_error

    def verify_webhook(self, raw_body, signature, credentials):
        return bool(signature) and signature == credentials.get("webhook_secret")

    def parse_webhook(self, raw_body):
        return ParsedWebhookEvent(**json.loads(raw_body))


@pytest.fixture
def fake_adapters():
    """One FakeAdapter per variant; PhonePe and Paytm use redirect checkout."""
    return {
        ProcessorVariant.STRIPE: FakeAdapter(ProcessorVariant.STRIPE),
        ProcessorVariant.RAZORPAY: FakeAdapter(ProcessorVariant.RAZORPAY),
        ProcessorVariant.PHONEPE: FakeAdapter(ProcessorVariant.PHONEPE, redirect=True),
        ProcessorVariant.PAYTM: FakeAdapter(ProcessorVariant.PAYTM, redirect=True),
    }


# =============================================================================
# Processor Fixtures
# =============================================================================


@pytest.fixture
def business_id():
    return uuid.uuid4()


@pytest.fixture
def stripe_processor(db, business_id):
    """Active Stripe config, priority 1, 2.90% + 30."""
    return PaymentProcessorConfigFactory(business_id=business_id, priority=1)


@pytest.fixture
def razorpay_processor(db, business_id):
    """Active Razorpay config, priority 2, 2.00% flat."""
    return PaymentProcessorConfigFactory(
        business_id=business_id,
        variant=ProcessorVariant.RAZORPAY,
        priority=2,
        fee_percentage=Decimal("2.00"),
        fixed_fee_cents=0,
    )


# =============================================================================
# Payment Fixtures
# =============================================================================


@pytest.fixture
def processing_payment(db, stripe_processor):
    return PaymentFactory(processor=stripe_processor)


@pytest.fixture
def captured_payment(db, stripe_processor):
    """Succeeded payment of 10000 with a fee snapshot of 320."""
    return PaymentFactory(
        processor=stripe_processor,
        captured=True,
        metadata={"provider_charge_id": "ch_test_123"},
    )


@pytest.fixture
def schedule(db, stripe_processor):
    """Daily schedule for the Stripe pair with no threshold."""
    return PayoutScheduleFactory(processor=stripe_processor)
