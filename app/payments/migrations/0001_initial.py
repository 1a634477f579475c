import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
import django_fsm
from django.db import migrations, models


CREATED_AT = (
    "created_at",
    models.DateTimeField(
        auto_now_add=True, db_index=True, help_text="Timestamp when this record was created"
    ),
)
UPDATED_AT = (
    "updated_at",
    models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified"),
)


def uuid_pk():
    return (
        "id",
        models.UUIDField(
            default=uuid.uuid4,
            editable=False,
            help_text="Unique identifier for this record",
            primary_key=True,
            serialize=False,
        ),
    )


VARIANT_CHOICES = [
    ("stripe", "Stripe"),
    ("razorpay", "Razorpay"),
    ("phonepe", "PhonePe"),
    ("paytm", "Paytm"),
]
FREQUENCY_CHOICES = [("daily", "Daily"), ("weekly", "Weekly"), ("monthly", "Monthly")]


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="PaymentProcessorConfig",
            fields=[
                uuid_pk(),
                CREATED_AT,
                UPDATED_AT,
                (
                    "business_id",
                    models.UUIDField(
                        db_index=True, help_text="Business that owns this processor configuration"
                    ),
                ),
                (
                    "variant",
                    models.CharField(
                        choices=VARIANT_CHOICES,
                        help_text="Processor integration used for this configuration",
                        max_length=20,
                    ),
                ),
                (
                    "display_name",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Optional label shown to the business owner",
                        max_length=100,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending_verification", "Pending Verification"),
                            ("active", "Active"),
                            ("failed", "Failed"),
                            ("disconnected", "Disconnected"),
                        ],
                        db_index=True,
                        default="pending_verification",
                        help_text="Current processor status (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "priority",
                    models.PositiveIntegerField(
                        default=999, help_text="Selection priority, lower values are tried first"
                    ),
                ),
                (
                    "fee_percentage",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Percentage fee charged by the processor (2.90 = 2.9%)",
                        max_digits=5,
                    ),
                ),
                (
                    "fixed_fee_cents",
                    models.PositiveIntegerField(
                        default=0, help_text="Fixed per-payment fee in smallest currency unit"
                    ),
                ),
                (
                    "settlement_schedule",
                    models.CharField(
                        choices=FREQUENCY_CHOICES,
                        default="weekly",
                        help_text="Default frequency for newly created payout schedules",
                        max_length=10,
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd",
                        help_text="Settlement currency (ISO 4217, lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "encrypted_credentials",
                    models.TextField(help_text="Fernet-encrypted JSON credentials"),
                ),
                (
                    "last_error",
                    models.TextField(
                        blank=True, default="", help_text="Most recent adapter or verification error"
                    ),
                ),
                (
                    "last_used_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When a payment was last created through this processor",
                        null=True,
                    ),
                ),
                (
                    "verified_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When credentials were last verified successfully",
                        null=True,
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Arbitrary JSON metadata for extensibility",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Processor",
                "verbose_name_plural": "Payment Processors",
                "ordering": ["priority", "created_at"],
                "indexes": [
                    models.Index(
                        fields=["business_id", "status", "priority"],
                        name="payments_pa_busines_5c1e7a_idx",
                    ),
                    models.Index(fields=["variant", "status"], name="payments_pa_variant_0b9d41_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(fee_percentage__gte=0) & models.Q(fee_percentage__lt=100),
                        name="processor_fee_percentage_range",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payout",
            fields=[
                uuid_pk(),
                CREATED_AT,
                UPDATED_AT,
                (
                    "business_id",
                    models.UUIDField(db_index=True, help_text="Business receiving the payout"),
                ),
                (
                    "period_start",
                    models.DateTimeField(help_text="Capture time of the oldest payment in the batch"),
                ),
                (
                    "period_end",
                    models.DateTimeField(help_text="When the batch was aggregated"),
                ),
                ("currency", models.CharField(default="usd", max_length=3)),
                (
                    "gross_amount_cents",
                    models.PositiveBigIntegerField(help_text="Sum of payment amounts less refunds"),
                ),
                ("processor_fee_cents", models.PositiveBigIntegerField(default=0)),
                ("platform_fee_cents", models.PositiveBigIntegerField(default=0)),
                (
                    "adjustment_cents",
                    models.PositiveBigIntegerField(
                        default=0,
                        help_text="Clawbacks for refunds on previously settled payments",
                    ),
                ),
                (
                    "net_amount_cents",
                    models.PositiveBigIntegerField(help_text="Amount to disburse"),
                ),
                ("payment_count", models.PositiveIntegerField(default=0)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("paid", "Paid"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current payout status (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "provider_transaction_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Disbursement reference returned by the bank/processor",
                        max_length=255,
                    ),
                ),
                ("retry_count", models.PositiveIntegerField(default=0)),
                (
                    "next_retry_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="When the disbursement step should pick this payout up again",
                        null=True,
                    ),
                ),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("failure_reason", models.TextField(blank=True, default="")),
                (
                    "version",
                    models.PositiveIntegerField(default=1, help_text="Incremented on each save"),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Arbitrary JSON metadata for extensibility",
                    ),
                ),
                (
                    "processor",
                    models.ForeignKey(
                        help_text="Processor whose captured payments are settled",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payouts",
                        to="payments.paymentprocessorconfig",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payout",
                "verbose_name_plural": "Payouts",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["business_id", "status"], name="payments_po_busines_8f2a13_idx"),
                    models.Index(fields=["processor", "status"], name="payments_po_process_4e7c90_idx"),
                    models.Index(fields=["status", "next_retry_at"], name="payments_po_status_a3d5b2_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            net_amount_cents=models.F("gross_amount_cents")
                            - models.F("processor_fee_cents")
                            - models.F("platform_fee_cents")
                            - models.F("adjustment_cents")
                        ),
                        name="payout_net_equals_gross_minus_fees",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(net_amount_cents__gte=0),
                        name="payout_net_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                uuid_pk(),
                CREATED_AT,
                UPDATED_AT,
                (
                    "order_id",
                    models.UUIDField(db_index=True, help_text="Order this payment collects money for"),
                ),
                (
                    "business_id",
                    models.UUIDField(db_index=True, help_text="Business receiving the funds"),
                ),
                (
                    "processor_variant",
                    models.CharField(
                        choices=VARIANT_CHOICES,
                        help_text="Processor variant used; never changes once set",
                        max_length=20,
                    ),
                ),
                (
                    "provider_reference",
                    models.CharField(
                        help_text="Processor-side payment id (payment intent, order id, txn id)",
                        max_length=255,
                    ),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Idempotency key sent with the create call",
                        max_length=255,
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(help_text="Payment amount in smallest currency unit"),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd", help_text="ISO 4217 currency code (lowercase)", max_length=3
                    ),
                ),
                ("description", models.CharField(blank=True, default="", max_length=500)),
                (
                    "processor_fee_cents",
                    models.PositiveBigIntegerField(
                        default=0,
                        help_text="Processor fee snapshotted from the config at creation",
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("partially_refunded", "Partially Refunded"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current payment status (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "confirmation_event_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Provider event id of the webhook that confirmed the payment",
                        max_length=255,
                    ),
                ),
                (
                    "succeeded_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="Capture time; start of settlement eligibility",
                        null=True,
                    ),
                ),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("failure_reason", models.TextField(blank=True, default="")),
                (
                    "refunded_amount_cents",
                    models.PositiveBigIntegerField(default=0, help_text="Total confirmed refunds"),
                ),
                ("refund_reason", models.TextField(blank=True, default="")),
                (
                    "provider_refund_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Processor id of the most recent confirmed refund",
                        max_length=255,
                    ),
                ),
                (
                    "settled_at",
                    models.DateTimeField(
                        blank=True, help_text="When the payment was attached to a payout", null=True
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(default=1, help_text="Incremented on each save"),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Arbitrary JSON metadata for extensibility",
                    ),
                ),
                (
                    "processor",
                    models.ForeignKey(
                        help_text="Processor configuration that created this payment",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="payments.paymentprocessorconfig",
                    ),
                ),
                (
                    "payout",
                    models.ForeignKey(
                        blank=True,
                        help_text="Settlement batch this payment was aggregated into",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="payments.payout",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment",
                "verbose_name_plural": "Payments",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["business_id", "processor", "status"],
                        name="payments_pa_busines_91b0de_idx",
                    ),
                    models.Index(
                        fields=["business_id", "succeeded_at"],
                        name="payments_pa_busines_2d6f85_idx",
                    ),
                    models.Index(fields=["order_id", "status"], name="payments_pa_order_i_7ac3e4_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(status__in=["succeeded", "partially_refunded", "refunded"]),
                        fields=("order_id",),
                        name="payment_one_success_per_order",
                    ),
                    models.UniqueConstraint(
                        fields=("processor_variant", "provider_reference"),
                        name="payment_unique_provider_reference",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(amount_cents__gt=0),
                        name="payment_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(refunded_amount_cents__lte=models.F("amount_cents")),
                        name="payment_refund_within_amount",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Refund",
            fields=[
                uuid_pk(),
                CREATED_AT,
                UPDATED_AT,
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(help_text="Refund amount in smallest currency unit"),
                ),
                (
                    "reason",
                    models.TextField(
                        blank=True, default="", help_text="Customer/admin-facing refund reason"
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("requested", "Requested"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="requested",
                        help_text="Current refund status (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "provider_refund_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Processor-side refund id",
                        max_length=255,
                    ),
                ),
                ("idempotency_key", models.CharField(blank=True, default="", max_length=255)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("failure_reason", models.TextField(blank=True, default="")),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Arbitrary JSON metadata for extensibility",
                    ),
                ),
                (
                    "payment",
                    models.ForeignKey(
                        help_text="Payment being refunded",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds",
                        to="payments.payment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Refund",
                "verbose_name_plural": "Refunds",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["payment", "status"], name="payments_re_payment_6b8e27_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(amount_cents__gt=0),
                        name="refund_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PayoutSchedule",
            fields=[
                uuid_pk(),
                CREATED_AT,
                UPDATED_AT,
                (
                    "business_id",
                    models.UUIDField(db_index=True, help_text="Business this schedule settles for"),
                ),
                ("is_active", models.BooleanField(default=True)),
                (
                    "frequency",
                    models.CharField(choices=FREQUENCY_CHOICES, default="weekly", max_length=10),
                ),
                (
                    "weekly_day_of_week",
                    models.PositiveSmallIntegerField(
                        default=0,
                        help_text="Weekday for weekly payouts (0=Monday ... 6=Sunday)",
                        validators=[django.core.validators.MaxValueValidator(6)],
                    ),
                ),
                (
                    "monthly_day_of_month",
                    models.PositiveSmallIntegerField(
                        default=1,
                        help_text="Day of month for monthly payouts (1-28)",
                        validators=[
                            django.core.validators.MinValueValidator(1),
                            django.core.validators.MaxValueValidator(28),
                        ],
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd",
                        help_text="Only payments in this currency are aggregated",
                        max_length=3,
                    ),
                ),
                (
                    "min_payout_threshold_cents",
                    models.PositiveBigIntegerField(
                        default=50000, help_text="Minimum gross before a payout is created"
                    ),
                ),
                (
                    "max_hold_period_days",
                    models.PositiveIntegerField(
                        default=7, help_text="Oldest unsettled payment age that forces a payout"
                    ),
                ),
                (
                    "is_manually_held",
                    models.BooleanField(
                        default=False, help_text="Owner-requested hold; no payouts while set"
                    ),
                ),
                ("hold_reason", models.TextField(blank=True, default="")),
                ("hold_started_at", models.DateTimeField(blank=True, null=True)),
                ("email_notifications_enabled", models.BooleanField(default=True)),
                ("notification_email", models.EmailField(blank=True, default="", max_length=254)),
                ("last_payout_at", models.DateTimeField(blank=True, null=True)),
                (
                    "next_payout_date",
                    models.DateField(
                        blank=True,
                        db_index=True,
                        help_text="Date the scheduler next runs settlement for this pair",
                        null=True,
                    ),
                ),
                (
                    "processor",
                    models.ForeignKey(
                        help_text="Processor whose captured payments are settled",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payout_schedules",
                        to="payments.paymentprocessorconfig",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payout Schedule",
                "verbose_name_plural": "Payout Schedules",
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("business_id", "processor"),
                        name="payout_schedule_unique_pair",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(monthly_day_of_month__gte=1)
                        & models.Q(monthly_day_of_month__lte=28),
                        name="payout_schedule_monthly_day_range",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(weekly_day_of_week__lte=6),
                        name="payout_schedule_weekday_range",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="SettlementAdjustment",
            fields=[
                uuid_pk(),
                CREATED_AT,
                UPDATED_AT,
                ("business_id", models.UUIDField(db_index=True)),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(help_text="Amount to deduct from a future payout"),
                ),
                ("reason", models.CharField(blank=True, default="", max_length=255)),
                ("applied_at", models.DateTimeField(blank=True, null=True)),
                (
                    "processor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="settlement_adjustments",
                        to="payments.paymentprocessorconfig",
                    ),
                ),
                (
                    "payment",
                    models.ForeignKey(
                        help_text="Settled payment the refund was issued against",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="settlement_adjustments",
                        to="payments.payment",
                    ),
                ),
                (
                    "refund",
                    models.OneToOneField(
                        help_text="Refund that caused the clawback",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="settlement_adjustment",
                        to="payments.refund",
                    ),
                ),
                (
                    "applied_payout",
                    models.ForeignKey(
                        blank=True,
                        help_text="Payout this adjustment was deducted from",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="applied_adjustments",
                        to="payments.payout",
                    ),
                ),
            ],
            options={
                "verbose_name": "Settlement Adjustment",
                "verbose_name_plural": "Settlement Adjustments",
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(
                        fields=["business_id", "processor", "applied_payout"],
                        name="payments_se_busines_e41f6c_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(amount_cents__gt=0),
                        name="settlement_adjustment_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                uuid_pk(),
                CREATED_AT,
                UPDATED_AT,
                ("processor_variant", models.CharField(choices=VARIANT_CHOICES, max_length=20)),
                (
                    "event_id",
                    models.CharField(
                        help_text="Provider event id (unique per variant)", max_length=255
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        choices=[
                            ("payment.succeeded", "Payment Succeeded"),
                            ("payment.failed", "Payment Failed"),
                            ("refund.succeeded", "Refund Succeeded"),
                            ("unknown", "Unknown"),
                        ],
                        db_index=True,
                        help_text="Normalized event type",
                        max_length=32,
                    ),
                ),
                (
                    "raw_type",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Event type as named by the provider",
                        max_length=100,
                    ),
                ),
                ("payload", models.JSONField(default=dict, help_text="Parsed event payload")),
                (
                    "status",
                    models.CharField(
                        choices=[("processed", "Processed"), ("ignored", "Ignored")],
                        db_index=True,
                        default="processed",
                        max_length=20,
                    ),
                ),
                (
                    "note",
                    models.CharField(
                        blank=True, default="", help_text="Why an event was ignored", max_length=255
                    ),
                ),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "payment",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="webhook_events",
                        to="payments.payment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("processor_variant", "event_id"),
                        name="webhook_event_unique_per_variant",
                    ),
                ],
            },
        ),
    ]
