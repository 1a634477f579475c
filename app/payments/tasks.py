"""
Celery tasks for settlement and maintenance.

This module provides periodic tasks for:
- Running due payout schedules
- Settling a single business + processor on demand
- Re-verifying failed processors so they rejoin selection
- Cleaning up old webhook ledger rows

Beat entries are created by migration 0002_periodic_tasks.

Usage:
    from payments.tasks import run_settlement_schedule

    run_settlement_schedule.delay(str(business_id), str(processor_id))
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.conf import settings

from payments.services import ProcessorRegistry, SettlementService, WebhookService

logger = logging.getLogger(__name__)


# =============================================================================
# Settlement Tasks
# =============================================================================


@shared_task
def run_due_schedules() -> dict:
    """
    Periodic task to settle every due payout schedule.

    Scheduled hourly via celery-beat. A pair that fails is logged by the
    service and does not stop the others.

    Returns:
        Dict with count and ids of payouts created
    """
    payouts = SettlementService.run_due_schedules()
    return {
        "payouts_created": len(payouts),
        "payout_ids": [str(payout.id) for payout in payouts],
    }


@shared_task
def run_settlement_schedule(business_id: str, processor_id: str) -> dict:
    """
    Settle one business + processor now.

    Lock contention is not retried: another run is already settling the
    same payments, so this one simply creates nothing.

    Returns:
        Dict with the payout id, or None when nothing was created
    """
    payout = SettlementService.run_schedule(business_id, processor_id)
    return {"payout_id": str(payout.id) if payout else None}


# =============================================================================
# Maintenance Tasks
# =============================================================================


@shared_task
def reverify_failed_processors() -> dict:
    """
    Periodic task to re-verify processors marked failed.

    Scheduled every 30 minutes. Processors that verify successfully become
    active and are eligible for selection again.
    """
    recovered = ProcessorRegistry().reverify_failed()

    if recovered:
        logger.info(
            f"Re-activated {recovered} failed processors",
            extra={"recovered_count": recovered},
        )

    return {"recovered_count": recovered}


@shared_task
def cleanup_old_webhooks(days: int | None = None) -> dict:
    """
    Periodic task to delete old webhook ledger rows.

    Only rows no longer linked to a payment are removed; the rest remain
    the idempotency record for that payment's events.

    Args:
        days: Retention window (defaults to WEBHOOK_RETENTION_DAYS)
    """
    days = days or settings.WEBHOOK_RETENTION_DAYS
    deleted_count = WebhookService().cleanup_old_events(days)
    return {"deleted_count": deleted_count}
