from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("payments", "0002_settlement_schedules"),
    ]

    operations = [
        migrations.AddField(
            model_name="payment",
            name="payout_transfer_key",
            field=models.CharField(
                blank=True,
                help_text="Idempotency key of the transfer request sent for this payout; set until Stripe rejects it",
                max_length=255,
                null=True,
            ),
        ),
        migrations.AddField(
            model_name="payment",
            name="payout_transfer_amount",
            field=models.DecimalField(
                blank=True,
                decimal_places=2,
                help_text="Amount of the transfer request under payout_transfer_key",
                max_digits=12,
                null=True,
            ),
        ),
    ]
