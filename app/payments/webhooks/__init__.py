"""
Webhook endpoints for processor callbacks.

Events are verified and applied synchronously by
payments.services.WebhookService; this package only holds the HTTP view.

Usage:
    # In urls.py
    from payments.webhooks.views import processor_webhook
"""

from payments.webhooks.views import processor_webhook

__all__ = [
    "processor_webhook",
]
