"""
Add celery-beat schedules for the settlement jobs.

Fee reconciliation and payout processing run every 15 minutes, the stale
payout-lock sweep every 10 minutes and the webhook retry every 5 minutes.
Schedules can be retuned in the admin afterwards; this migration only
seeds them.
"""

from django.db import migrations

SCHEDULES = [
    {
        "name": "Reconcile Processing Fees",
        "task": "payments.workers.fee_reconciler.reconcile_processing_fees",
        "every": 15,
        "description": "Records the Stripe processing fee of completed charges that have none yet.",
    },
    {
        "name": "Process Due Payouts",
        "task": "payments.workers.payout_executor.process_due_payouts",
        "every": 15,
        "description": "Claims due payouts and transfers coach earnings to connected accounts.",
    },
    {
        "name": "Release Stale Payout Locks",
        "task": "payments.workers.payout_executor.release_stale_payout_locks",
        "every": 10,
        "description": "Returns payouts stuck in processing without a transfer to pending.",
    },
    {
        "name": "Retry Failed Webhooks",
        "task": "payments.tasks.retry_failed_webhooks",
        "every": 5,
        "description": "Re-queues failed Stripe webhook events below the retry cap.",
    },
    {
        "name": "Cleanup Stuck Webhooks",
        "task": "payments.tasks.cleanup_stuck_webhooks",
        "every": 30,
        "description": "Fails webhook events stuck in processing so they can be retried.",
    },
]


def create_periodic_tasks(apps, schema_editor):
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for entry in SCHEDULES:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=entry["every"],
            period="minutes",
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
        name__in=[entry["name"] for entry in SCHEDULES],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
