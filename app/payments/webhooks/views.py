"""
Webhook endpoint views for all supported processors.

The view reads the provider's signature header and hands the raw body to
WebhookService, which verifies, records and applies the event
synchronously in one transaction.

Usage:
    # In urls.py
    from payments.webhooks.views import processor_webhook

    urlpatterns = [
        path("webhooks/<str:variant>/", processor_webhook, name="webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from core.exceptions import BaseApplicationError, http_status_for
from payments.services import WebhookService
from payments.state_machines import ProcessorVariant

logger = logging.getLogger(__name__)


# Paytm sends its checksum in the CHECKSUMHASH body field, not a header
SIGNATURE_HEADERS = {
    ProcessorVariant.STRIPE: "Stripe-Signature",
    ProcessorVariant.RAZORPAY: "X-Razorpay-Signature",
    ProcessorVariant.PHONEPE: "X-VERIFY",
}


@csrf_exempt
@require_POST
def processor_webhook(request: HttpRequest, variant: str, processor_id=None) -> JsonResponse:
    """
    Receive and apply a processor webhook.

    Returns:
        JsonResponse with status:
        - 200: {"processed", "event_type", "event_id"} (new, duplicate or ignored)
        - 400: Unknown variant, invalid signature or unparseable payload
        - 404: Event references a payment that was never created

    Providers retry on non-2xx, so only genuinely bad deliveries are
    rejected; redeliveries of applied events return 200.
    """
    header = SIGNATURE_HEADERS.get(variant)
    signature = request.headers.get(header, "") if header else ""

    try:
        result = WebhookService().handle_webhook(
            variant,
            request.body,
            signature,
            processor_id=processor_id,
        )
    except BaseApplicationError as e:
        logger.warning(
            "Webhook rejected",
            extra={
                "variant": variant,
                "processor_id": str(processor_id) if processor_id else None,
                "error_code": e.error_code,
            },
        )
        return JsonResponse(e.to_dict(), status=http_status_for(e))

    return JsonResponse(
        {
            "processed": result.processed,
            "event_type": result.event_type,
            "event_id": result.event_id,
        }
    )
