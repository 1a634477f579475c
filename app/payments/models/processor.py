"""
Payment processor configuration owned by a business.

A business connects one or more processor variants (card gateway, UPI
gateways, wallet gateway). Each config carries encrypted credentials, a
priority used for deterministic selection and fallback, and the fee
schedule snapshotted onto every payment routed through it.

Usage:
    from payments.models import PaymentProcessorConfig

    config = PaymentProcessorConfig.objects.create(
        business_id=business_id,
        variant=ProcessorVariant.STRIPE,
        priority=1,
        fee_percentage=Decimal("2.90"),
        fixed_fee_cents=30,
        encrypted_credentials=encrypt_credentials({...}),
    )
    config.activate()
    config.save()

    config.fee_for(10000)  # 320
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.credentials import ProcessorCredentials, decrypt_credentials
from payments.state_machines import (
    VARIANT_FAMILIES,
    PayoutFrequency,
    ProcessorStatus,
    ProcessorVariant,
)

DEFAULT_PRIORITY = 999

# Published list rates, used when a business doesn't negotiate its own
DEFAULT_FEE_PERCENTAGES = {
    ProcessorVariant.STRIPE: Decimal("2.90"),
    ProcessorVariant.RAZORPAY: Decimal("2.00"),
    ProcessorVariant.PHONEPE: Decimal("1.18"),
    ProcessorVariant.PAYTM: Decimal("2.36"),
}


def ceil_div(numerator: int, denominator: int) -> int:
    """Integer division rounding up (towards the platform)."""
    return -(-numerator // denominator)


class PaymentProcessorConfigQuerySet(models.QuerySet):
    def for_business(self, business_id):
        return self.filter(business_id=business_id)

    def active(self):
        return self.filter(status=ProcessorStatus.ACTIVE)

    def in_selection_order(self):
        """Ascending priority, then creation order, then id."""
        return self.order_by("priority", "created_at", "id")


class PaymentProcessorConfig(UUIDPrimaryKeyMixin, BaseModel):
    """
    A business's configuration for one processor variant.

    State Flow:
        PENDING_VERIFICATION -> ACTIVE (credentials verified)
        PENDING_VERIFICATION -> FAILED (verification failed)
        ACTIVE -> FAILED (adapter failure during payment creation)
        FAILED -> ACTIVE (re-verified)
        ACTIVE/FAILED/PENDING_VERIFICATION -> DISCONNECTED
        DISCONNECTED -> PENDING_VERIFICATION (reconnect)

    Note:
        Priorities need not be unique; selection order is
        (priority, created_at, id) so it is always deterministic.
    """

    # ==========================================================================
    # Ownership & Identity
    # ==========================================================================

    business_id = models.UUIDField(
        db_index=True,
        help_text="Business that owns this processor configuration",
    )

    variant = models.CharField(
        max_length=20,
        choices=ProcessorVariant.choices,
        help_text="Processor integration used for this configuration",
    )

    display_name = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Optional label shown to the business owner",
    )

    # ==========================================================================
    # State & Selection
    # ==========================================================================

    status = FSMField(
        default=ProcessorStatus.PENDING_VERIFICATION,
        choices=ProcessorStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current processor status (managed by FSM)",
    )

    priority = models.PositiveIntegerField(
        default=DEFAULT_PRIORITY,
        help_text="Selection priority, lower values are tried first",
    )

    # ==========================================================================
    # Fees & Settlement
    # ==========================================================================

    fee_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Percentage fee charged by the processor (2.90 = 2.9%)",
    )

    fixed_fee_cents = models.PositiveIntegerField(
        default=0,
        help_text="Fixed per-payment fee in smallest currency unit",
    )

    settlement_schedule = models.CharField(
        max_length=10,
        choices=PayoutFrequency.choices,
        default=PayoutFrequency.WEEKLY,
        help_text="Default frequency for newly created payout schedules",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="Settlement currency (ISO 4217, lowercase)",
    )

    # ==========================================================================
    # Credentials (encrypted, never serialized)
    # ==========================================================================

    encrypted_credentials = models.TextField(
        help_text="Fernet-encrypted JSON credentials",
    )

    # ==========================================================================
    # Health
    # ==========================================================================

    last_error = models.TextField(
        blank=True,
        default="",
        help_text="Most recent adapter or verification error",
    )

    last_used_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When a payment was last created through this processor",
    )

    verified_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When credentials were last verified successfully",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata for extensibility",
    )

    objects = PaymentProcessorConfigQuerySet.as_manager()

    class Meta:
        ordering = ["priority", "created_at"]
        verbose_name = "Payment Processor"
        verbose_name_plural = "Payment Processors"
        indexes = [
            models.Index(fields=["business_id", "status", "priority"], name="payments_pa_busines_5c1e7a_idx"),
            models.Index(fields=["variant", "status"], name="payments_pa_variant_0b9d41_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(fee_percentage__gte=0) & models.Q(fee_percentage__lt=100),
                name="processor_fee_percentage_range",
            ),
        ]

    def __str__(self) -> str:
        return f"PaymentProcessorConfig({self.id}, {self.variant}, {self.status}, p={self.priority})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[ProcessorStatus.PENDING_VERIFICATION, ProcessorStatus.FAILED],
        target=ProcessorStatus.ACTIVE,
    )
    def activate(self):
        """Credentials verified; the processor rejoins the candidate pool."""
        self.verified_at = timezone.now()
        self.last_error = ""

    @transition(
        field=status,
        source=[
            ProcessorStatus.PENDING_VERIFICATION,
            ProcessorStatus.ACTIVE,
            ProcessorStatus.FAILED,
        ],
        target=ProcessorStatus.FAILED,
    )
    def mark_failed(self, error: str = ""):
        self.last_error = error

    @transition(
        field=status,
        source=[
            ProcessorStatus.PENDING_VERIFICATION,
            ProcessorStatus.ACTIVE,
            ProcessorStatus.FAILED,
        ],
        target=ProcessorStatus.DISCONNECTED,
    )
    def disconnect(self):
        pass

    @transition(
        field=status,
        source=ProcessorStatus.DISCONNECTED,
        target=ProcessorStatus.PENDING_VERIFICATION,
    )
    def reconnect(self):
        self.last_error = ""
        self.verified_at = None

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @property
    def is_active(self) -> bool:
        return self.status == ProcessorStatus.ACTIVE

    @property
    def method_family(self) -> str:
        return VARIANT_FAMILIES[ProcessorVariant(self.variant)]

    @property
    def fee_basis_points(self) -> int:
        return int(self.fee_percentage * 100)

    def fee_for(self, amount_cents: int) -> int:
        """
        Processor fee for a payment of ``amount_cents``.

        percentage part is rounded up, fixed part added, result capped at
        the payment amount. Integer minor units only.
        """
        fee = ceil_div(amount_cents * self.fee_basis_points, 10_000) + self.fixed_fee_cents
        return min(fee, amount_cents)

    def get_credentials(self) -> ProcessorCredentials:
        """Decrypt credentials for an adapter call. Do not log or return the result."""
        return decrypt_credentials(self.encrypted_credentials)
