"""
State enums for payment models.

These are Django TextChoices for database storage and admin integration;
the models drive them with django-fsm transitions.

State Machines Overview:

Processor config:
    pending_verification → active | failed
    active → failed | disconnected
    failed → active | disconnected
    disconnected → pending_verification (reconnect)

Payment:
    pending → processing
    pending/processing → succeeded | failed
    succeeded/partially_refunded → partially_refunded | refunded

Refund:
    requested → processing → completed | failed

Payout:
    pending → processing → paid
    pending/processing → failed → pending (manual retry)
"""

from django.db import models


class ProcessorVariant(models.TextChoices):
    """
    Closed set of supported payment processor integrations.

    Adding a provider means adding a member here and one adapter in
    payments.adapters; the orchestrator is untouched.
    """

    STRIPE = "stripe", "Stripe"
    RAZORPAY = "razorpay", "Razorpay"
    PHONEPE = "phonepe", "PhonePe"
    PAYTM = "paytm", "Paytm"


class PaymentMethodFamily(models.TextChoices):
    """Payment rail a processor variant serves."""

    CARD = "card", "Card"
    UPI = "upi", "UPI"
    WALLET = "wallet", "Wallet"


VARIANT_FAMILIES = {
    ProcessorVariant.STRIPE: PaymentMethodFamily.CARD,
    ProcessorVariant.RAZORPAY: PaymentMethodFamily.UPI,
    ProcessorVariant.PHONEPE: PaymentMethodFamily.UPI,
    ProcessorVariant.PAYTM: PaymentMethodFamily.WALLET,
}


class ProcessorStatus(models.TextChoices):
    """
    Lifecycle of a business's processor configuration.

    Only ACTIVE configs are eligible for selection.
    """

    PENDING_VERIFICATION = "pending_verification", "Pending Verification"
    ACTIVE = "active", "Active"
    FAILED = "failed", "Failed"
    DISCONNECTED = "disconnected", "Disconnected"


class PaymentStatus(models.TextChoices):
    """
    States for the Payment model lifecycle.

    SUCCESS_STATES are the statuses of a captured payment; at most one
    payment per order may be in any of them.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"
    REFUNDED = "refunded", "Refunded"


PAYMENT_SUCCESS_STATES = (
    PaymentStatus.SUCCEEDED,
    PaymentStatus.PARTIALLY_REFUNDED,
    PaymentStatus.REFUNDED,
)

# Captured payments that still carry a settleable/refundable balance
PAYMENT_REFUNDABLE_STATES = (
    PaymentStatus.SUCCEEDED,
    PaymentStatus.PARTIALLY_REFUNDED,
)


class RefundState(models.TextChoices):
    """
    States for the Refund model lifecycle.

    A refund stays PROCESSING until the processor confirms it, either in the
    synchronous API response or through a refund webhook.
    """

    REQUESTED = "requested", "Requested"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class PayoutState(models.TextChoices):
    """
    States for the Payout (settlement batch) lifecycle.

    FAILED payouts return to PENDING only through a manual retry, which
    resends the same batch of payments.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"


class PayoutFrequency(models.TextChoices):
    """Settlement cadence of a payout schedule."""

    DAILY = "daily", "Daily"
    WEEKLY = "weekly", "Weekly"
    MONTHLY = "monthly", "Monthly"


class WebhookEventStatus(models.TextChoices):
    """
    Outcome recorded in the webhook ledger.

    PROCESSED events changed state; IGNORED events were valid but requested
    a transition the payment's current state does not allow.
    """

    PROCESSED = "processed", "Processed"
    IGNORED = "ignored", "Ignored"


class WebhookEventType(models.TextChoices):
    """Provider-neutral event types produced by adapter parsers."""

    PAYMENT_SUCCEEDED = "payment.succeeded", "Payment Succeeded"
    PAYMENT_FAILED = "payment.failed", "Payment Failed"
    REFUND_SUCCEEDED = "refund.succeeded", "Refund Succeeded"
    UNKNOWN = "unknown", "Unknown"
