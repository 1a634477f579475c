"""
Payment admin configuration.

Status fields are read-only everywhere: state changes go through the
service layer so that transitions, locks and logging stay consistent.
Processor credentials are stored encrypted and never shown.
"""

from django.contrib import admin

from payments.models import (
    Payment,
    PaymentProcessorConfig,
    Payout,
    PayoutSchedule,
    Refund,
    SettlementAdjustment,
    WebhookEvent,
)


def format_amount(amount_cents: int, currency: str) -> str:
    return f"{amount_cents / 100:.2f} {currency.upper()}"


@admin.register(PaymentProcessorConfig)
class PaymentProcessorConfigAdmin(admin.ModelAdmin):
    """
    Admin configuration for PaymentProcessorConfig.

    encrypted_credentials is excluded from every form and list.
    """

    list_display = [
        "id",
        "business_id",
        "variant",
        "display_name",
        "status",
        "priority",
        "fee_percentage",
        "fixed_fee_cents",
        "last_used_at",
    ]
    list_filter = ["variant", "status", "settlement_schedule"]
    search_fields = ["id", "business_id", "display_name"]
    exclude = ["encrypted_credentials"]
    readonly_fields = [
        "id",
        "status",
        "last_error",
        "last_used_at",
        "verified_at",
        "created_at",
        "updated_at",
    ]
    ordering = ["business_id", "priority", "created_at"]


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Admin configuration for Payment.

    Payments are an audit trail and cannot be deleted.
    """

    list_display = [
        "id",
        "order_id",
        "business_id",
        "processor_variant",
        "amount_display",
        "status",
        "payout",
        "created_at",
    ]
    list_filter = ["status", "processor_variant", "currency", "created_at"]
    search_fields = ["id", "order_id", "business_id", "provider_reference"]
    readonly_fields = [
        "id",
        "processor",
        "processor_variant",
        "provider_reference",
        "idempotency_key",
        "status",
        "confirmation_event_id",
        "succeeded_at",
        "failed_at",
        "refunded_amount_cents",
        "provider_refund_id",
        "payout",
        "settled_at",
        "version",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (None, {"fields": ("id", "order_id", "business_id", "status")}),
        ("Amount", {"fields": ("amount_cents", "currency", "processor_fee_cents", "description")}),
        (
            "Processor",
            {"fields": ("processor", "processor_variant", "provider_reference", "idempotency_key")},
        ),
        (
            "Lifecycle",
            {
                "fields": (
                    "confirmation_event_id",
                    "succeeded_at",
                    "failed_at",
                    "failure_reason",
                    "refunded_amount_cents",
                    "refund_reason",
                    "provider_refund_id",
                ),
                "classes": ("collapse",),
            },
        ),
        ("Settlement", {"fields": ("payout", "settled_at")}),
        ("Metadata", {"fields": ("metadata", "version"), "classes": ("collapse",)}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )

    @admin.display(description="Amount")
    def amount_display(self, obj: Payment) -> str:
        return format_amount(obj.amount_cents, obj.currency)

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):
    list_display = ["id", "payment", "amount_cents", "status", "provider_refund_id", "created_at"]
    list_filter = ["status", "created_at"]
    search_fields = ["id", "payment__id", "provider_refund_id"]
    readonly_fields = [
        "id",
        "payment",
        "status",
        "provider_refund_id",
        "idempotency_key",
        "completed_at",
        "failed_at",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(PayoutSchedule)
class PayoutScheduleAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "business_id",
        "processor",
        "frequency",
        "is_active",
        "is_manually_held",
        "min_payout_threshold_cents",
        "next_payout_date",
    ]
    list_filter = ["frequency", "is_active", "is_manually_held"]
    search_fields = ["id", "business_id"]
    readonly_fields = ["id", "last_payout_at", "next_payout_date", "created_at", "updated_at"]


@admin.register(Payout)
class PayoutAdmin(admin.ModelAdmin):
    """
    Admin configuration for Payout.

    Shows the full fee breakdown; state changes go through PayoutService.
    """

    list_display = [
        "id",
        "business_id",
        "processor",
        "net_display",
        "payment_count",
        "status",
        "retry_count",
        "created_at",
    ]
    list_filter = ["status", "currency", "created_at"]
    search_fields = ["id", "business_id", "provider_transaction_id"]
    readonly_fields = [
        "id",
        "business_id",
        "processor",
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
        "version",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    @admin.display(description="Net")
    def net_display(self, obj: Payout) -> str:
        return format_amount(obj.net_amount_cents, obj.currency)

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(SettlementAdjustment)
class SettlementAdjustmentAdmin(admin.ModelAdmin):
    list_display = ["id", "business_id", "processor", "payment", "amount_cents", "applied_payout", "created_at"]
    list_filter = ["created_at"]
    search_fields = ["id", "business_id", "payment__id"]
    readonly_fields = ["id", "refund", "applied_payout", "applied_at", "created_at", "updated_at"]
    ordering = ["-created_at"]


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """Webhook ledger; read-only."""

    list_display = ["event_id", "processor_variant", "event_type", "status", "payment", "created_at"]
    list_filter = ["processor_variant", "event_type", "status"]
    search_fields = ["event_id", "payment__id"]
    readonly_fields = [
        "id",
        "processor_variant",
        "event_id",
        "event_type",
        "raw_type",
        "payment",
        "payload",
        "status",
        "note",
        "processed_at",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False
