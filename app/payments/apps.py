"""
Payments app configuration.

This app provides multi-processor payment orchestration:
- Processor registry with encrypted credentials and priority fallback
- Payment creation, webhook reconciliation and refunds
- Scheduled settlement into payouts
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
