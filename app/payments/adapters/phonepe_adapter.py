"""
PhonePe adapter (UPI via the PhonePe hosted pay page).

Redirect-based: create_payment returns the pay page URL and the payment
stays PENDING until PhonePe posts its server-to-server callback.

Credentials:
    merchant_id, salt_key, salt_index

Request checksum (X-VERIFY header):
    sha256(base64_payload + api_path + salt_key) + "###" + salt_index
Callback body is {"response": <base64 JSON>} and is verified with:
    sha256(base64_response + salt_key) + "###" + salt_index
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from typing import TYPE_CHECKING, Any

from django.conf import settings

from payments.adapters.base import (
    ParsedWebhookEvent,
    ProcessorAdapter,
    ProviderPaymentIntent,
    ProviderRefund,
)
from payments.exceptions import (
    InvalidWebhookPayloadError,
    ProcessorAuthenticationError,
    ProcessorDeclinedError,
)
from payments.state_machines import ProcessorVariant, WebhookEventType

if TYPE_CHECKING:
    from collections.abc import Mapping

    from payments.adapters.base import PaymentRequest, RefundRequest

PAY_PATH = "/pg/v1/pay"
REFUND_PATH = "/pg/v1/refund"


def build_x_verify(payload: str, salt_key: str, salt_index: str, path: str = "") -> str:
    checksum = hashlib.sha256(f"{payload}{path}{salt_key}".encode()).hexdigest()
    return f"{checksum}###{salt_index}"


class PhonePeAdapter(ProcessorAdapter):
    variant = ProcessorVariant.PHONEPE

    @property
    def api_base(self) -> str:
        return settings.PHONEPE_API_BASE.rstrip("/")

    def _post_signed(self, path: str, body: dict[str, Any], credentials: Mapping[str, str]) -> dict[str, Any]:
        payload = base64.b64encode(json.dumps(body).encode()).decode()
        response = self._request(
            "POST",
            f"{self.api_base}{path}",
            json={"request": payload},
            headers={
                "Content-Type": "application/json",
                "X-VERIFY": build_x_verify(
                    payload, credentials["salt_key"], credentials["salt_index"], path
                ),
            },
        )
        if not response.get("success"):
            raise ProcessorDeclinedError(
                response.get("message") or "PhonePe rejected the request",
                variant=self.variant,
                provider_code=response.get("code"),
            )
        return response.get("data") or {}

    def _create_payment(self, request: PaymentRequest, credentials: Mapping[str, str]) -> ProviderPaymentIntent:
        merchant_transaction_id = request.merchant_reference
        body = {
            "merchantId": credentials["merchant_id"],
            "merchantTransactionId": merchant_transaction_id,
            "merchantUserId": request.business_id.replace("-", "")[:32],
            "amount": request.amount_cents,
            "redirectUrl": request.return_url,
            "redirectMode": "POST",
            "callbackUrl": request.callback_url,
            "paymentInstrument": {"type": "PAY_PAGE"},
        }
        phone = "".join(ch for ch in request.customer_phone if ch.isdigit())[-10:]
        if phone:
            body["mobileNumber"] = phone

        data = self._post_signed(PAY_PATH, body, credentials)

        return ProviderPaymentIntent(
            provider_reference=merchant_transaction_id,
            payment_url=data["instrumentResponse"]["redirectInfo"]["url"],
            additional_data={
                "merchant_transaction_id": merchant_transaction_id,
                "transaction_id": data.get("transactionId"),
            },
        )

    def _create_refund(self, request: RefundRequest, credentials: Mapping[str, str]) -> ProviderRefund:
        body = {
            "merchantId": credentials["merchant_id"],
            "merchantTransactionId": request.refund_reference,
            "originalTransactionId": request.provider_reference,
            "amount": request.amount_cents,
            "callbackUrl": self._callback_url(),
        }
        data = self._post_signed(REFUND_PATH, body, credentials)

        status = ProviderRefund.COMPLETED if data.get("state") == "COMPLETED" else ProviderRefund.PENDING
        # Refund callbacks identify the refund by our merchant transaction id
        return ProviderRefund(provider_refund_id=request.refund_reference, status=status)

    def _verify_credentials(self, credentials: Mapping[str, str]) -> None:
        # PhonePe has no credential-check endpoint; validate the format
        if len(credentials["merchant_id"]) < 5 or len(credentials["salt_key"]) < 10:
            raise ProcessorAuthenticationError(
                "Invalid merchant_id or salt_key format",
                variant=self.variant,
            )
        if not str(credentials["salt_index"]).isdigit():
            raise ProcessorAuthenticationError("salt_index must be numeric", variant=self.variant)

    def _callback_url(self) -> str:
        base = settings.PAYMENT_CALLBACK_BASE_URL.rstrip("/")
        return f"{base}/api/v1/payments/webhooks/{self.variant}/"

    # =========================================================================
    # Webhooks
    # =========================================================================

    def verify_webhook(self, raw_body: bytes, signature: str, credentials: Mapping[str, str]) -> bool:
        if not signature:
            return False
        try:
            encoded = json.loads(raw_body)["response"]
        except (ValueError, KeyError, TypeError):
            return False
        expected = build_x_verify(encoded, credentials["salt_key"], credentials["salt_index"])
        return hmac.compare_digest(expected, signature)

    def parse_webhook(self, raw_body: bytes) -> ParsedWebhookEvent:
        try:
            decoded = json.loads(base64.b64decode(json.loads(raw_body)["response"]))
            data = decoded["data"]
            state = data.get("state", "")
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidWebhookPayloadError("Malformed PhonePe callback") from e

        merchant_transaction_id = data.get("merchantTransactionId", "")
        transaction_id = data.get("transactionId", "")
        is_refund = "originalTransactionId" in data
        raw_type = f"{'refund' if is_refund else 'payment'}.{state.lower() or 'unknown'}"

        parsed = ParsedWebhookEvent(
            event_id=f"{transaction_id or merchant_transaction_id}:{state}",
            event_type=WebhookEventType.UNKNOWN,
            raw_type=raw_type,
            payload=decoded,
        )

        if is_refund:
            parsed.provider_reference = data["originalTransactionId"]
            if state == "COMPLETED":
                parsed.event_type = WebhookEventType.REFUND_SUCCEEDED
                parsed.provider_refund_id = merchant_transaction_id
                parsed.amount_cents = data.get("amount")
            return parsed

        parsed.provider_reference = merchant_transaction_id
        parsed.provider_charge_id = transaction_id
        if state == "COMPLETED":
            parsed.event_type = WebhookEventType.PAYMENT_SUCCEEDED
            parsed.amount_cents = data.get("amount")
        elif state == "FAILED":
            parsed.event_type = WebhookEventType.PAYMENT_FAILED
            parsed.failure_reason = data.get("responseCode") or decoded.get("code") or "Payment failed"
        return parsed
