"""
Model mixins combined with BaseModel.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key
"""

from __future__ import annotations

import uuid

from django.db import models


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    Payment, payout and processor ids are exposed in URLs and webhook
    callback paths, so they must not reveal record counts or be guessable.

    Usage:
        class Refund(UUIDPrimaryKeyMixin, BaseModel):
            amount_cents = models.PositiveBigIntegerField()

        refund = Refund.objects.create(amount_cents=500, ...)
        refund.id  # UUID('550e8400-e29b-41d4-a716-446655440000')
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True
