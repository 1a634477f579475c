"""
Ledger of applied processor webhook events.

The unique (processor_variant, event_id) pair is the idempotency key for
webhook delivery: a second insert of the same event fails, so a redelivered
event is never applied twice, even when two deliveries race.
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import ProcessorVariant, WebhookEventStatus, WebhookEventType


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    A verified provider event that targeted a known payment.

    Unknown event types are acknowledged without being stored.
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    processor_variant = models.CharField(
        max_length=20,
        choices=ProcessorVariant.choices,
    )

    event_id = models.CharField(
        max_length=255,
        help_text="Provider event id (unique per variant)",
    )

    event_type = models.CharField(
        max_length=32,
        choices=WebhookEventType.choices,
        db_index=True,
        help_text="Normalized event type",
    )

    raw_type = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Event type as named by the provider",
    )

    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="webhook_events",
    )

    # ==========================================================================
    # Payload & Outcome
    # ==========================================================================

    payload = models.JSONField(
        default=dict,
        help_text="Parsed event payload",
    )

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PROCESSED,
        db_index=True,
    )

    note = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Why an event was ignored",
    )

    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        constraints = [
            models.UniqueConstraint(
                fields=["processor_variant", "event_id"],
                name="webhook_event_unique_per_variant",
            ),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.processor_variant}:{self.event_id}, {self.event_type})"
