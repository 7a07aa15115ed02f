"""
Add celery-beat schedules for the billing periodic tasks.

Creates:
- Subscription Maintenance Sweep: hourly reconciliation of cached
  entitlement against subscription status and expiry
- Cleanup Old Webhook Deliveries: daily purge of processed deliveries
  past the retention window
"""

from django.db import migrations

PERIODIC_TASKS = [
    {
        "name": "Subscription Maintenance Sweep",
        "task": "billing.tasks.run_subscription_maintenance",
        "every": 1,
        "period": "hours",
        "description": (
            "Expires overdue Pro subscribers and re-syncs cached plan_type "
            "for every subscriber with a billing relationship."
        ),
    },
    {
        "name": "Cleanup Old Webhook Deliveries",
        "task": "billing.tasks.cleanup_old_webhook_deliveries",
        "every": 1,
        "period": "days",
        "description": (
            "Deletes processed Paystack webhook deliveries older than "
            "BILLING['WEBHOOK_RETENTION_DAYS']."
        ),
    },
]


def create_periodic_tasks(apps, schema_editor):
    """Create the billing periodic tasks."""
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
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[entry["name"] for entry in PERIODIC_TASKS],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("billing", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
