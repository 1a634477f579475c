"""
DRF serializers for the payments app.

Request serializers validate input before it reaches a service; response
serializers shape models and service results for the API.

Processor credentials are write-only: they are accepted by
ConnectProcessorSerializer and never appear in any response.

Related files:
    - views.py: API views
    - services/: business logic

Usage:
    serializer = CreatePaymentSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
"""

from __future__ import annotations

from rest_framework import serializers

from payments.models import (
    Payment,
    PaymentProcessorConfig,
    Payout,
    PayoutSchedule,
    Refund,
)
from payments.models.processor import DEFAULT_PRIORITY
from payments.models.schedule import MAX_MONTHLY_DAY
from payments.state_machines import PayoutFrequency, PayoutState, ProcessorVariant


# =============================================================================
# Processors
# =============================================================================


class ProcessorConfigSerializer(serializers.ModelSerializer):
    """Processor config for API responses (no credentials)."""

    method_family = serializers.CharField(read_only=True)

    class Meta:
        model = PaymentProcessorConfig
        fields = [
            "id",
            "business_id",
            "variant",
            "method_family",
            "display_name",
            "status",
            "priority",
            "fee_percentage",
            "fixed_fee_cents",
            "settlement_schedule",
            "currency",
            "last_error",
            "last_used_at",
            "verified_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class ConnectProcessorSerializer(serializers.Serializer):
    business_id = serializers.UUIDField()
    variant = serializers.ChoiceField(choices=ProcessorVariant.choices)
    credentials = serializers.DictField(child=serializers.CharField(), write_only=True)
    priority = serializers.IntegerField(min_value=0, default=DEFAULT_PRIORITY)
    fee_percentage = serializers.DecimalField(
        max_digits=5,
        decimal_places=2,
        min_value=0,
        max_value=99,
        required=False,
        allow_null=True,
    )
    fixed_fee_cents = serializers.IntegerField(min_value=0, default=0)
    display_name = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    settlement_schedule = serializers.ChoiceField(choices=PayoutFrequency.choices, default=PayoutFrequency.WEEKLY)
    currency = serializers.RegexField(r"^[A-Za-z]{3}$", default="usd")


class BusinessQuerySerializer(serializers.Serializer):
    business_id = serializers.UUIDField()


# =============================================================================
# Payments & Refunds
# =============================================================================


class PaymentSerializer(serializers.ModelSerializer):
    """Payment for API responses."""

    processor_id = serializers.UUIDField(read_only=True)
    payout_id = serializers.UUIDField(read_only=True, allow_null=True)
    refundable_balance = serializers.IntegerField(read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "order_id",
            "business_id",
            "processor_id",
            "processor_variant",
            "provider_reference",
            "amount_cents",
            "currency",
            "description",
            "processor_fee_cents",
            "status",
            "succeeded_at",
            "failed_at",
            "failure_reason",
            "refunded_amount_cents",
            "refundable_balance",
            "refund_reason",
            "payout_id",
            "settled_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class CreatePaymentSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    business_id = serializers.UUIDField()
    amount_cents = serializers.IntegerField(min_value=1)
    currency = serializers.RegexField(r"^[A-Za-z]{3}$")
    description = serializers.CharField(max_length=500)
    customer_email = serializers.EmailField(required=False, allow_blank=True, default="")
    customer_phone = serializers.CharField(max_length=20, required=False, allow_blank=True, default="")
    preferred_processor_id = serializers.UUIDField(required=False, allow_null=True)
    return_url = serializers.URLField(required=False, allow_blank=True, default="")
    metadata = serializers.DictField(child=serializers.CharField(), required=False, default=dict)


class PaymentIntentResponseSerializer(serializers.Serializer):
    payment = PaymentSerializer()
    client_secret = serializers.CharField(allow_null=True)
    payment_url = serializers.URLField(allow_null=True)
    requires_redirect = serializers.BooleanField()
    additional_data = serializers.DictField()


class RefundSerializer(serializers.ModelSerializer):
    payment_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = Refund
        fields = [
            "id",
            "payment_id",
            "amount_cents",
            "reason",
            "status",
            "provider_refund_id",
            "completed_at",
            "failed_at",
            "failure_reason",
            "created_at",
        ]
        read_only_fields = fields


class CreateRefundSerializer(serializers.Serializer):
    amount_cents = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    reason = serializers.CharField(max_length=1000, required=False, allow_blank=True, default="")


class RefundResultSerializer(serializers.Serializer):
    refund_id = serializers.UUIDField()
    amount_cents = serializers.IntegerField()
    status = serializers.CharField()
    payment = PaymentSerializer()


# =============================================================================
# Payouts & Schedules
# =============================================================================


class PayoutSerializer(serializers.ModelSerializer):
    processor_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = Payout
        fields = [
            "id",
            "business_id",
            "processor_id",
            "period_start",
            "period_end",
            "currency",
            "gross_amount_cents",
            "processor_fee_cents",
            "platform_fee_cents",
            "adjustment_cents",
            "net_amount_cents",
            "payment_count",
            "status",
            "provider_transaction_id",
            "retry_count",
            "next_retry_at",
            "paid_at",
            "failed_at",
            "failure_reason",
            "created_at",
        ]
        read_only_fields = fields


class PayoutQuerySerializer(serializers.Serializer):
    business_id = serializers.UUIDField()
    status = serializers.ChoiceField(choices=PayoutState.choices, required=False)
    processor_id = serializers.UUIDField(required=False)


class PayoutScheduleSerializer(serializers.ModelSerializer):
    processor_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = PayoutSchedule
        fields = [
            "id",
            "business_id",
            "processor_id",
            "is_active",
            "frequency",
            "weekly_day_of_week",
            "monthly_day_of_month",
            "currency",
            "min_payout_threshold_cents",
            "max_hold_period_days",
            "is_manually_held",
            "hold_reason",
            "hold_started_at",
            "email_notifications_enabled",
            "notification_email",
            "last_payout_at",
            "next_payout_date",
        ]
        read_only_fields = fields


class ScheduleQuerySerializer(serializers.Serializer):
    business_id = serializers.UUIDField()
    processor_id = serializers.UUIDField()


class UpdateScheduleSerializer(serializers.Serializer):
    """Owner-editable schedule fields; all optional."""

    is_active = serializers.BooleanField(required=False)
    frequency = serializers.ChoiceField(choices=PayoutFrequency.choices, required=False)
    weekly_day_of_week = serializers.IntegerField(min_value=0, max_value=6, required=False)
    monthly_day_of_month = serializers.IntegerField(min_value=1, max_value=MAX_MONTHLY_DAY, required=False)
    min_payout_threshold_cents = serializers.IntegerField(min_value=0, required=False)
    max_hold_period_days = serializers.IntegerField(min_value=0, required=False)
    email_notifications_enabled = serializers.BooleanField(required=False)
    notification_email = serializers.EmailField(required=False, allow_blank=True)


class ScheduleHoldSerializer(serializers.Serializer):
    held = serializers.BooleanField()
    reason = serializers.CharField(max_length=1000, required=False, allow_blank=True, default="")


# =============================================================================
# Reports
# =============================================================================


class ReportQuerySerializer(serializers.Serializer):
    business_id = serializers.UUIDField()
    start = serializers.DateTimeField()
    end = serializers.DateTimeField()
    processor_id = serializers.UUIDField(required=False)

    def validate(self, attrs):
        if attrs["start"] >= attrs["end"]:
            raise serializers.ValidationError({"end": "Must be after start."})
        return attrs


class SettlementReportRowSerializer(serializers.Serializer):
    payment_id = serializers.UUIDField()
    order_id = serializers.UUIDField()
    processor_id = serializers.UUIDField()
    processor_variant = serializers.CharField()
    gross_cents = serializers.IntegerField()
    fee_cents = serializers.IntegerField()
    refunded_cents = serializers.IntegerField()
    net_cents = serializers.IntegerField()
    status = serializers.CharField()
    settled = serializers.BooleanField()
    payout_id = serializers.UUIDField(allow_null=True)
    succeeded_at = serializers.DateTimeField()


class SettlementSummarySerializer(serializers.Serializer):
    payment_count = serializers.IntegerField()
    gross_cents = serializers.IntegerField()
    fee_cents = serializers.IntegerField()
    refunded_cents = serializers.IntegerField()
    net_cents = serializers.IntegerField()
    settled_count = serializers.IntegerField()


class ProcessorBreakdownSerializer(serializers.Serializer):
    processor_id = serializers.UUIDField()
    processor_variant = serializers.CharField()
    payment_count = serializers.IntegerField()
    gross_cents = serializers.IntegerField()
    fee_cents = serializers.IntegerField()
    net_cents = serializers.IntegerField()
    average_fee_percentage = serializers.DecimalField(max_digits=7, decimal_places=2)


class SettlementReportSerializer(serializers.Serializer):
    business_id = serializers.UUIDField()
    start = serializers.DateTimeField()
    end = serializers.DateTimeField()
    rows = SettlementReportRowSerializer(many=True)
    summary = SettlementSummarySerializer()
    by_processor = ProcessorBreakdownSerializer(many=True)
