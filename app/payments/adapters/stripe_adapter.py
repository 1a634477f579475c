"""
Stripe adapter (card payments).

Confirmation happens in-app: create_payment returns the PaymentIntent's
client_secret and the payment stays PROCESSING until the
payment_intent.succeeded / payment_intent.payment_failed webhook arrives.

Each call passes the business's own secret key (``api_key=``), so no
global Stripe key is configured.

Credentials:
    secret_key: sk_live_... / sk_test_...
    webhook_secret: whsec_... (endpoint signing secret)
    publishable_key: optional, returned to the client when present
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, NoReturn

import stripe

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
    ProcessorRequestError,
    ProcessorTimeoutError,
    ProcessorUnavailableError,
)
from payments.state_machines import ProcessorVariant, WebhookEventType

if TYPE_CHECKING:
    from collections.abc import Mapping

    from payments.adapters.base import PaymentRequest, RefundRequest


EVENT_TYPE_MAP = {
    "payment_intent.succeeded": WebhookEventType.PAYMENT_SUCCEEDED,
    "payment_intent.payment_failed": WebhookEventType.PAYMENT_FAILED,
    "charge.refunded": WebhookEventType.REFUND_SUCCEEDED,
}


class StripeAdapter(ProcessorAdapter):
    """Card gateway backed by the Stripe SDK."""

    variant = ProcessorVariant.STRIPE

    def _configure_stripe(self) -> None:
        """Apply the processor timeout; fallback is handled by the orchestrator, not SDK retries."""
        stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)
        stripe.max_network_retries = 0

    # =========================================================================
    # Core Operations
    # =========================================================================

    def _create_payment(self, request: PaymentRequest, credentials: Mapping[str, str]) -> ProviderPaymentIntent:
        self._configure_stripe()
        try:
            intent = stripe.PaymentIntent.create(
                amount=request.amount_cents,
                currency=request.currency,
                description=request.description[:1000],
                metadata={
                    "order_id": request.order_id,
                    "business_id": request.business_id,
                    **request.metadata,
                },
                receipt_email=request.customer_email or None,
                automatic_payment_methods={"enabled": True},
                idempotency_key=request.idempotency_key,
                api_key=credentials["secret_key"],
            )
        except stripe.StripeError as e:
            self._handle_stripe_error(e)

        additional_data: dict[str, Any] = {"payment_intent_id": intent.id}
        if credentials.get("publishable_key"):
            additional_data["publishable_key"] = credentials["publishable_key"]

        return ProviderPaymentIntent(
            provider_reference=intent.id,
            client_secret=intent.client_secret,
            additional_data=additional_data,
        )

    def _create_refund(self, request: RefundRequest, credentials: Mapping[str, str]) -> ProviderRefund:
        self._configure_stripe()
        try:
            refund = stripe.Refund.create(
                payment_intent=request.provider_reference,
                amount=request.amount_cents,
                metadata={
                    "refund_reference": request.refund_reference,
                    "reason": request.reason[:500],
                },
                idempotency_key=request.idempotency_key,
                api_key=credentials["secret_key"],
            )
        except stripe.StripeError as e:
            self._handle_stripe_error(e)

        if refund.status in ("failed", "canceled"):
            raise ProcessorDeclinedError(
                f"Stripe refund {refund.status}",
                variant=self.variant,
                provider_code=getattr(refund, "failure_reason", None),
            )

        status = ProviderRefund.COMPLETED if refund.status == "succeeded" else ProviderRefund.PENDING
        return ProviderRefund(provider_refund_id=refund.id, status=status)

    def _verify_credentials(self, credentials: Mapping[str, str]) -> None:
        self._configure_stripe()
        try:
            stripe.Balance.retrieve(api_key=credentials["secret_key"])
        except stripe.StripeError as e:
            self._handle_stripe_error(e)

    # =========================================================================
    # Webhooks
    # =========================================================================

    def verify_webhook(self, raw_body: bytes, signature: str, credentials: Mapping[str, str]) -> bool:
        if not signature:
            return False
        try:
            stripe.Webhook.construct_event(raw_body, signature, credentials["webhook_secret"])
        except (stripe.SignatureVerificationError, ValueError):
            return False
        return True

    def parse_webhook(self, raw_body: bytes) -> ParsedWebhookEvent:
        try:
            event = json.loads(raw_body)
            event_id = event["id"]
            raw_type = event["type"]
            obj = event["data"]["object"]
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidWebhookPayloadError("Malformed Stripe event") from e

        event_type = EVENT_TYPE_MAP.get(raw_type, WebhookEventType.UNKNOWN)
        parsed = ParsedWebhookEvent(event_id=event_id, event_type=event_type, raw_type=raw_type, payload=event)

        if event_type == WebhookEventType.PAYMENT_SUCCEEDED:
            parsed.provider_reference = obj.get("id", "")
            parsed.provider_charge_id = obj.get("latest_charge") or ""
            parsed.amount_cents = obj.get("amount_received") or obj.get("amount")
        elif event_type == WebhookEventType.PAYMENT_FAILED:
            parsed.provider_reference = obj.get("id", "")
            error = obj.get("last_payment_error") or {}
            parsed.failure_reason = error.get("message") or error.get("code") or "payment_failed"
        elif event_type == WebhookEventType.REFUND_SUCCEEDED:
            parsed.provider_reference = obj.get("payment_intent") or ""
            parsed.provider_charge_id = obj.get("id", "")
            refunds = (obj.get("refunds") or {}).get("data") or []
            if refunds:
                # Most recent refund first
                parsed.provider_refund_id = refunds[0].get("id", "")
                parsed.amount_cents = refunds[0].get("amount")

        return parsed

    # =========================================================================
    # Error Handling
    # =========================================================================

    def _handle_stripe_error(self, error: stripe.StripeError) -> NoReturn:
        """Translate Stripe SDK exceptions into the ProcessorError family."""
        code = getattr(error, "code", None)

        if isinstance(error, stripe.CardError):
            raise ProcessorDeclinedError(
                str(error.user_message or error),
                variant=self.variant,
                provider_code=getattr(error, "decline_code", None) or code,
            ) from error

        if isinstance(error, (stripe.AuthenticationError, stripe.PermissionError)):
            self.get_logger().critical(
                "Stripe authentication failed - check API key",
                extra={"variant": self.variant},
            )
            raise ProcessorAuthenticationError(
                "Stripe authentication failed",
                variant=self.variant,
                provider_code=code,
            ) from error

        if isinstance(error, stripe.APIConnectionError):
            if "timed out" in str(error).lower() or "timeout" in str(error).lower():
                raise ProcessorTimeoutError(
                    f"Stripe did not respond within {self.timeout}s",
                    variant=self.variant,
                ) from error
            raise ProcessorUnavailableError(
                "Could not connect to Stripe",
                variant=self.variant,
                provider_code="api_connection_error",
            ) from error

        if isinstance(error, (stripe.RateLimitError, stripe.APIError)):
            raise ProcessorUnavailableError(
                "Stripe service error",
                variant=self.variant,
                provider_code=code or type(error).__name__,
            ) from error

        if isinstance(error, (stripe.InvalidRequestError, stripe.IdempotencyError)):
            raise ProcessorRequestError(
                str(error.user_message or error),
                variant=self.variant,
                provider_code=code,
            ) from error

        raise ProcessorUnavailableError(
            f"Unexpected Stripe error: {type(error).__name__}",
            variant=self.variant,
            provider_code="unknown_error",
        ) from error
