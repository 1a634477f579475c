"""
Processor adapters, one per ProcessorVariant.

All processor API calls go through these adapters to ensure consistent
error translation, timeouts, idempotency and circuit breaking.

Usage:
    from payments.adapters import get_adapter

    adapter = get_adapter(ProcessorVariant.RAZORPAY)
    intent = adapter.create_payment(request, config.get_credentials())

Services accept an ``adapters`` mapping (variant -> adapter instance) for
injection; get_adapter(variant, adapters) resolves against it first.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import ValidationError
from payments.adapters.base import (
    IdempotencyKeyGenerator,
    ParsedWebhookEvent,
    PaymentRequest,
    ProcessorAdapter,
    ProviderPaymentIntent,
    ProviderRefund,
    RefundRequest,
)
from payments.adapters.paytm_adapter import PaytmAdapter
from payments.adapters.phonepe_adapter import PhonePeAdapter
from payments.adapters.razorpay_adapter import RazorpayAdapter
from payments.adapters.stripe_adapter import StripeAdapter
from payments.state_machines import ProcessorVariant

if TYPE_CHECKING:
    from collections.abc import Mapping

ADAPTERS: dict[str, type[ProcessorAdapter]] = {
    ProcessorVariant.STRIPE: StripeAdapter,
    ProcessorVariant.RAZORPAY: RazorpayAdapter,
    ProcessorVariant.PHONEPE: PhonePeAdapter,
    ProcessorVariant.PAYTM: PaytmAdapter,
}


def get_adapter(variant: str, adapters: Mapping[str, ProcessorAdapter] | None = None) -> ProcessorAdapter:
    """
    Resolve the adapter for a processor variant.

    Raises:
        ValidationError: UNSUPPORTED_PROCESSOR for an unknown variant
    """
    if adapters is not None and variant in adapters:
        return adapters[variant]

    adapter_class = ADAPTERS.get(variant)
    if adapter_class is None:
        raise ValidationError(
            f"Unsupported processor variant: {variant}",
            error_code="UNSUPPORTED_PROCESSOR",
            details={"variant": variant},
        )
    return adapter_class()


__all__ = [
    "ADAPTERS",
    "IdempotencyKeyGenerator",
    "ParsedWebhookEvent",
    "PaymentRequest",
    "PaytmAdapter",
    "PhonePeAdapter",
    "ProcessorAdapter",
    "ProviderPaymentIntent",
    "ProviderRefund",
    "RazorpayAdapter",
    "RefundRequest",
    "StripeAdapter",
    "get_adapter",
]
