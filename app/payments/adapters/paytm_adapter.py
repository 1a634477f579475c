"""
Paytm adapter (Paytm wallet, hosted checkout).

Redirect-based: create_payment builds the signed form the client posts to
Paytm's processTransaction page, so no API call is made until the refund.
The payment stays PENDING until Paytm posts its callback.

Credentials:
    merchant_id, merchant_key
    website, industry_type: optional (default "DEFAULT" / "Retail")

Checksum: sha256("&".join(sorted "KEY=value" pairs) + merchant_key), sent
as the CHECKSUMHASH field.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING
from urllib.parse import parse_qsl

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

CHECKSUM_FIELD = "CHECKSUMHASH"


def generate_checksum(params: Mapping[str, str], merchant_key: str) -> str:
    sorted_params = "&".join(f"{key}={params[key]}" for key in sorted(params))
    return hashlib.sha256(f"{sorted_params}{merchant_key}".encode()).hexdigest()


def cents_to_amount(amount_cents: int) -> str:
    return f"{Decimal(amount_cents) / 100:.2f}"


def amount_to_cents(amount: str | None) -> int | None:
    if not amount:
        return None
    try:
        return int((Decimal(amount) * 100).to_integral_value())
    except InvalidOperation:
        return None


def parse_callback(raw_body: bytes) -> dict[str, str]:
    """Paytm posts callbacks form-encoded; JSON bodies are accepted too."""
    text = raw_body.decode("utf-8")
    try:
        params = json.loads(text)
    except ValueError:
        params = dict(parse_qsl(text, keep_blank_values=True))
    if not isinstance(params, dict):
        raise InvalidWebhookPayloadError("Malformed Paytm callback")
    return {str(k): str(v) for k, v in params.items()}


class PaytmAdapter(ProcessorAdapter):
    variant = ProcessorVariant.PAYTM

    @property
    def api_base(self) -> str:
        return settings.PAYTM_API_BASE.rstrip("/")

    def _create_payment(self, request: PaymentRequest, credentials: Mapping[str, str]) -> ProviderPaymentIntent:
        paytm_order_id = request.merchant_reference
        params = {
            "MID": credentials["merchant_id"],
            "WEBSITE": credentials.get("website") or "DEFAULT",
            "INDUSTRY_TYPE_ID": credentials.get("industry_type") or "Retail",
            "CHANNEL_ID": "WEB",
            "ORDER_ID": paytm_order_id,
            "CUST_ID": request.business_id[:64],
            "MOBILE_NO": "".join(ch for ch in request.customer_phone if ch.isdigit())[-10:],
            "EMAIL": request.customer_email,
            "TXN_AMOUNT": cents_to_amount(request.amount_cents),
            "CALLBACK_URL": request.callback_url,
        }
        params[CHECKSUM_FIELD] = generate_checksum(params, credentials["merchant_key"])

        return ProviderPaymentIntent(
            provider_reference=paytm_order_id,
            payment_url=f"{self.api_base}/theia/processTransaction",
            additional_data={"paytm_order_id": paytm_order_id, "form_params": params},
        )

    def _create_refund(self, request: RefundRequest, credentials: Mapping[str, str]) -> ProviderRefund:
        params = {
            "MID": credentials["merchant_id"],
            "ORDERID": request.provider_reference,
            "TXNID": request.provider_charge_id,
            "REFID": request.refund_reference,
            "REFUNDAMOUNT": cents_to_amount(request.amount_cents),
            "TXNTYPE": "REFUND",
        }
        params[CHECKSUM_FIELD] = generate_checksum(params, credentials["merchant_key"])

        response = self._request(
            "POST",
            f"{self.api_base}/refund/apply",
            json=params,
            headers={"Content-Type": "application/json"},
        )

        status = response.get("STATUS")
        if status == "TXN_SUCCESS":
            return ProviderRefund(provider_refund_id=request.refund_reference, status=ProviderRefund.COMPLETED)
        if status == "PENDING":
            return ProviderRefund(provider_refund_id=request.refund_reference, status=ProviderRefund.PENDING)
        raise ProcessorDeclinedError(
            response.get("RESPMSG") or "Paytm refund failed",
            variant=self.variant,
            provider_code=response.get("RESPCODE"),
        )

    def _verify_credentials(self, credentials: Mapping[str, str]) -> None:
        # Paytm has no credential-check endpoint; validate the format
        if len(credentials["merchant_id"]) < 5 or len(credentials["merchant_key"]) < 8:
            raise ProcessorAuthenticationError(
                "Invalid merchant_id or merchant_key format",
                variant=self.variant,
            )

    # =========================================================================
    # Webhooks
    # =========================================================================

    def verify_webhook(self, raw_body: bytes, signature: str, credentials: Mapping[str, str]) -> bool:
        try:
            params = parse_callback(raw_body)
        except (InvalidWebhookPayloadError, UnicodeDecodeError):
            return False
        received = signature or params.get(CHECKSUM_FIELD, "")
        params.pop(CHECKSUM_FIELD, None)
        if not received:
            return False
        expected = generate_checksum(params, credentials["merchant_key"])
        return hmac.compare_digest(expected, received)

    def parse_webhook(self, raw_body: bytes) -> ParsedWebhookEvent:
        try:
            params = parse_callback(raw_body)
        except UnicodeDecodeError as e:
            raise InvalidWebhookPayloadError("Malformed Paytm callback") from e
        params.pop(CHECKSUM_FIELD, None)

        order_id = params.get("ORDERID", "")
        status = params.get("STATUS", "")
        if not order_id:
            raise InvalidWebhookPayloadError("Paytm callback carries no ORDERID")

        is_refund = params.get("TXNTYPE") == "REFUND" or "REFID" in params
        txn_id = params.get("TXNID", "")

        if is_refund:
            refund_id = params.get("REFID", "")
            parsed = ParsedWebhookEvent(
                event_id=f"{refund_id or txn_id}:{status}",
                event_type=(
                    WebhookEventType.REFUND_SUCCEEDED if status == "TXN_SUCCESS" else WebhookEventType.UNKNOWN
                ),
                raw_type=f"refund.{status.lower()}",
                provider_reference=order_id,
                provider_charge_id=txn_id,
                provider_refund_id=refund_id,
                amount_cents=amount_to_cents(params.get("REFUNDAMOUNT")),
                payload=params,
            )
            return parsed

        if status == "TXN_SUCCESS":
            event_type = WebhookEventType.PAYMENT_SUCCEEDED
        elif status == "TXN_FAILURE":
            event_type = WebhookEventType.PAYMENT_FAILED
        else:
            event_type = WebhookEventType.UNKNOWN

        return ParsedWebhookEvent(
            event_id=f"{txn_id or order_id}:{status}",
            event_type=event_type,
            raw_type=f"payment.{status.lower()}",
            provider_reference=order_id,
            provider_charge_id=txn_id,
            amount_cents=amount_to_cents(params.get("TXNAMOUNT")),
            failure_reason=params.get("RESPMSG", "") if event_type == WebhookEventType.PAYMENT_FAILED else "",
            payload=params,
        )
