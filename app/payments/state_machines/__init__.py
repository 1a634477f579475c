"""
State machine enums for payment models.
"""

from payments.state_machines.states import (
    PAYMENT_REFUNDABLE_STATES,
    PAYMENT_SUCCESS_STATES,
    VARIANT_FAMILIES,
    PaymentMethodFamily,
    PaymentStatus,
    PayoutFrequency,
    PayoutState,
    ProcessorStatus,
    ProcessorVariant,
    RefundState,
    WebhookEventStatus,
    WebhookEventType,
)

__all__ = [
    "PAYMENT_REFUNDABLE_STATES",
    "PAYMENT_SUCCESS_STATES",
    "VARIANT_FAMILIES",
    "PaymentMethodFamily",
    "PaymentStatus",
    "PayoutFrequency",
    "PayoutState",
    "ProcessorStatus",
    "ProcessorVariant",
    "RefundState",
    "WebhookEventStatus",
    "WebhookEventType",
]
