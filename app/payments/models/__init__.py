"""
Payment domain models.

- PaymentProcessorConfig: A business's configured processor (credentials, priority, fees)
- Payment: One payment attempt for an order through one processor
- Refund: Money returned to a customer from a captured payment
- PayoutSchedule: Settlement rules per business + processor
- Payout: Settlement batch of captured payments
- SettlementAdjustment: Clawback for refunds on already-settled payments
- WebhookEvent: Ledger of applied provider events (idempotency)
"""

from payments.models.adjustment import SettlementAdjustment
from payments.models.payment import Payment
from payments.models.payout import Payout
from payments.models.processor import PaymentProcessorConfig
from payments.models.refund import Refund
from payments.models.schedule import PayoutSchedule
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "Payment",
    "PaymentProcessorConfig",
    "Payout",
    "PayoutSchedule",
    "Refund",
    "SettlementAdjustment",
    "WebhookEvent",
]
