"""
Celery application for background payment work.

Runs the settlement scheduler, processor re-verification and webhook ledger
cleanup (see payments.tasks). Periodic schedules live in the database
(django-celery-beat) and are installed by a payments data migration.

Usage:
    from payments.tasks import run_settlement_schedule

    run_settlement_schedule.delay(str(business_id), str(processor_id))
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Picks up payments/tasks.py
app.autodiscover_tasks()
