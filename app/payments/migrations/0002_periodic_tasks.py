"""
Install celery-beat schedules for settlement and maintenance tasks.

- Run Due Settlement Schedules: hourly
- Re-verify Failed Processors: every 30 minutes
- Clean Up Webhook Ledger: daily
"""

from django.db import migrations

PERIODIC_TASKS = [
    {
        "name": "Run Due Settlement Schedules",
        "task": "payments.tasks.run_due_schedules",
        "every": 1,
        "period": "hours",
        "description": (
            "Creates payouts for every active, unheld payout schedule whose "
            "next payout date has arrived."
        ),
    },
    {
        "name": "Re-verify Failed Processors",
        "task": "payments.tasks.reverify_failed_processors",
        "every": 30,
        "period": "minutes",
        "description": (
            "Re-runs credential verification for failed processor configs so "
            "they can rejoin the fallback pool."
        ),
    },
    {
        "name": "Clean Up Webhook Ledger",
        "task": "payments.tasks.cleanup_old_webhooks",
        "every": 1,
        "period": "days",
        "description": "Deletes webhook ledger rows past the retention window.",
    },
]


def create_periodic_tasks(apps, schema_editor):
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for entry in PERIODIC_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=entry["every"],
            period=entry["period"],
        )
        PeriodicTask.objects.get_or_create(
            name=entry["name"],
            defaults={
                "task": entry["task"],
                "interval": schedule,
                "enabled": True,
                "description": entry["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[entry["name"] for entry in PERIODIC_TASKS],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
