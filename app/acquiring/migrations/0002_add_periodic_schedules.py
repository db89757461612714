"""
Add celery-beat schedules for the acquiring background workers.

- Expire transactions abandoned mid-flow: every 5 minutes
- Settle card transactions past the settlement delay: hourly
- Reconcile cached balances against the ledger fold: daily at 03:15
"""

from django.db import migrations

EXPIRY_TASK = "Expire Stale Acquiring Transactions"
SETTLEMENT_TASK = "Settle Awaiting-Exchange Transactions"
RECONCILIATION_TASK = "Reconcile Merchant Balances"


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for the acquiring workers."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    CrontabSchedule = apps.get_model("django_celery_beat", "CrontabSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    every_five_minutes, _ = IntervalSchedule.objects.get_or_create(
        every=5,
        period="minutes",
    )
    hourly, _ = IntervalSchedule.objects.get_or_create(
        every=1,
        period="hours",
    )
    nightly, _ = CrontabSchedule.objects.get_or_create(
        minute="15",
        hour="3",
        day_of_week="*",
        day_of_month="*",
        month_of_year="*",
    )

    PeriodicTask.objects.get_or_create(
        name=EXPIRY_TASK,
        defaults={
            "task": "acquiring.workers.expiry.expire_stale_transactions",
            "interval": every_five_minutes,
            "enabled": True,
            "description": (
                "Fails transactions left in pending submission or awaiting "
                "verification past the inactivity timeout."
            ),
        },
    )
    PeriodicTask.objects.get_or_create(
        name=SETTLEMENT_TASK,
        defaults={
            "task": "acquiring.workers.settlement.settle_awaiting_exchange",
            "interval": hourly,
            "enabled": True,
            "description": (
                "Moves card transactions from pending to available balance "
                "once the settlement delay has passed."
            ),
        },
    )
    PeriodicTask.objects.get_or_create(
        name=RECONCILIATION_TASK,
        defaults={
            "task": "acquiring.workers.reconciliation.reconcile_merchant_balances",
            "crontab": nightly,
            "enabled": True,
            "description": (
                "Recomputes every cached balance from transactions and "
                "withdrawals and repairs drift."
            ),
        },
    )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[EXPIRY_TASK, SETTLEMENT_TASK, RECONCILIATION_TASK],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("acquiring", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
