"""
Seed the notification types emitted by the settlement core.
"""

from django.db import migrations

SETTLEMENT_TYPES = [
    {
        "key": "payout.submitted",
        "display_name": "Payout submitted",
        "title_template": "Payout of {amount} {currency} submitted",
        "body_template": "Your earnings for payment {payment_id} are on their way.",
    },
    {
        "key": "payout.failed",
        "display_name": "Payout failed",
        "title_template": "Payout of {amount} {currency} failed",
        "body_template": (
            "We could not transfer your earnings for payment {payment_id}. "
            "Our team has been notified and will follow up."
        ),
    },
    {
        "key": "refund.processed.coach",
        "display_name": "Refund processed (coach)",
        "title_template": "Refund of {amount} {currency} issued",
        "body_template": (
            "A refund was issued for payment {payment_id}. "
            "{coach_debit_amount} {currency} will be settled against your earnings."
        ),
    },
    {
        "key": "refund.processed.client",
        "display_name": "Refund processed (client)",
        "title_template": "Your refund of {amount} {currency} is on its way",
        "body_template": "We refunded {amount} {currency} for payment {payment_id}.",
    },
]


def seed_types(apps, schema_editor):
    NotificationType = apps.get_model("notifications", "NotificationType")
    for definition in SETTLEMENT_TYPES:
        NotificationType.objects.update_or_create(
            key=definition["key"],
            defaults=definition,
        )


def remove_types(apps, schema_editor):
    NotificationType = apps.get_model("notifications", "NotificationType")
    NotificationType.objects.filter(key__in=[d["key"] for d in SETTLEMENT_TYPES]).delete()


class Migration(migrations.Migration):

    dependencies = [
        ("notifications", "0001_initial"),
    ]

    operations = [
        migrations.RunPython(seed_types, remove_types),
    ]
