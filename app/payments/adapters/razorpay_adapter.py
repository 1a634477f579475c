"""
Razorpay adapter (UPI, plus cards/netbanking through Razorpay Checkout).

create_payment creates a Razorpay Order; the client opens Razorpay Checkout
with the returned order id and key id, so no redirect is needed. Our
provider reference is the Razorpay order id; the Razorpay payment id
(``pay_...``) only arrives with the payment.captured webhook and is needed
for refunds.

Credentials:
    key_id, key_secret: HTTP basic auth for the REST API
    webhook_secret: secret configured on the webhook endpoint

Webhook signature: hex HMAC-SHA256 of the raw body with webhook_secret,
sent in X-Razorpay-Signature.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import TYPE_CHECKING

from django.conf import settings

from payments.adapters.base import (
    ParsedWebhookEvent,
    ProcessorAdapter,
    ProviderPaymentIntent,
    ProviderRefund,
)
from payments.exceptions import InvalidWebhookPayloadError, ProcessorRequestError
from payments.state_machines import ProcessorVariant, WebhookEventType

if TYPE_CHECKING:
    from collections.abc import Mapping

    from payments.adapters.base import PaymentRequest, RefundRequest


class RazorpayAdapter(ProcessorAdapter):
    variant = ProcessorVariant.RAZORPAY

    @property
    def api_base(self) -> str:
        return settings.RAZORPAY_API_BASE.rstrip("/")

    @staticmethod
    def _auth(credentials: Mapping[str, str]) -> tuple[str, str]:
        return (credentials["key_id"], credentials["key_secret"])

    def _create_payment(self, request: PaymentRequest, credentials: Mapping[str, str]) -> ProviderPaymentIntent:
        order = self._request(
            "POST",
            f"{self.api_base}/v1/orders",
            json={
                "amount": request.amount_cents,
                "currency": request.currency.upper(),
                # Razorpay limits receipts to 40 characters
                "receipt": request.merchant_reference,
                "notes": {
                    "order_id": request.order_id,
                    "business_id": request.business_id,
                },
            },
            auth=self._auth(credentials),
        )

        return ProviderPaymentIntent(
            provider_reference=order["id"],
            additional_data={
                "razorpay_order_id": order["id"],
                "key_id": credentials["key_id"],
                "amount": order.get("amount", request.amount_cents),
                "currency": order.get("currency", request.currency.upper()),
                "description": request.description,
            },
        )

    def _create_refund(self, request: RefundRequest, credentials: Mapping[str, str]) -> ProviderRefund:
        if not request.provider_charge_id:
            raise ProcessorRequestError(
                "Razorpay payment id is not known yet; the capture webhook has not been applied",
                error_code="PROVIDER_CHARGE_UNKNOWN",
                variant=self.variant,
            )

        refund = self._request(
            "POST",
            f"{self.api_base}/v1/payments/{request.provider_charge_id}/refund",
            json={
                "amount": request.amount_cents,
                "receipt": request.refund_reference[:40],
                "notes": {"reason": request.reason[:250] or "Seller initiated refund"},
            },
            auth=self._auth(credentials),
        )

        status = ProviderRefund.COMPLETED if refund.get("status") == "processed" else ProviderRefund.PENDING
        return ProviderRefund(provider_refund_id=refund["id"], status=status)

    def _verify_credentials(self, credentials: Mapping[str, str]) -> None:
        self._request(
            "GET",
            f"{self.api_base}/v1/orders",
            params={"count": 1},
            auth=self._auth(credentials),
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    def verify_webhook(self, raw_body: bytes, signature: str, credentials: Mapping[str, str]) -> bool:
        if not signature:
            return False
        expected = hmac.new(
            credentials["webhook_secret"].encode(),
            raw_body,
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, signature)

    def parse_webhook(self, raw_body: bytes) -> ParsedWebhookEvent:
        try:
            event = json.loads(raw_body)
            raw_type = event["event"]
            payload = event.get("payload") or {}
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidWebhookPayloadError("Malformed Razorpay event") from e

        payment_entity = (payload.get("payment") or {}).get("entity") or {}
        refund_entity = (payload.get("refund") or {}).get("entity") or {}

        if raw_type == "payment.captured":
            event_type = WebhookEventType.PAYMENT_SUCCEEDED
        elif raw_type == "payment.failed":
            event_type = WebhookEventType.PAYMENT_FAILED
        elif raw_type == "refund.processed" or (
            raw_type == "refund.created" and refund_entity.get("status") == "processed"
        ):
            event_type = WebhookEventType.REFUND_SUCCEEDED
        else:
            event_type = WebhookEventType.UNKNOWN

        # Razorpay puts the event id in a header only; entity id + event name
        # is stable across redeliveries of the same event.
        entity_id = refund_entity.get("id") or payment_entity.get("id") or ""
        event_id = f"{entity_id}:{raw_type}" if entity_id else event.get("id", "")
        if not event_id:
            raise InvalidWebhookPayloadError("Razorpay event carries no entity id")

        parsed = ParsedWebhookEvent(
            event_id=event_id,
            event_type=event_type,
            raw_type=raw_type,
            provider_reference=payment_entity.get("order_id") or "",
            provider_charge_id=payment_entity.get("id") or refund_entity.get("payment_id") or "",
            payload=event,
        )

        if event_type == WebhookEventType.PAYMENT_SUCCEEDED:
            parsed.amount_cents = payment_entity.get("amount")
        elif event_type == WebhookEventType.PAYMENT_FAILED:
            parsed.failure_reason = (
                payment_entity.get("error_description") or payment_entity.get("error_code") or "payment_failed"
            )
        elif event_type == WebhookEventType.REFUND_SUCCEEDED:
            parsed.provider_refund_id = refund_entity.get("id", "")
            parsed.amount_cents = refund_entity.get("amount")

        return parsed
