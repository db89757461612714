"""
One transaction per payment request; withdrawal idempotency keys per merchant.
"""

from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("acquiring", "0002_add_periodic_schedules"),
    ]

    operations = [
        migrations.AlterField(
            model_name="transaction",
            name="payment_request_id",
            field=models.UUIDField(
                blank=True,
                help_text=(
                    "Payment request (payment link) this transaction was created from; "
                    "one transaction per request"
                ),
                null=True,
                unique=True,
            ),
        ),
        migrations.AlterField(
            model_name="withdrawal",
            name="idempotency_key",
            field=models.CharField(
                blank=True,
                help_text=(
                    "Client-supplied key, unique per merchant; "
                    "a retried request returns the same withdrawal"
                ),
                max_length=255,
                null=True,
            ),
        ),
        migrations.AddConstraint(
            model_name="withdrawal",
            constraint=models.UniqueConstraint(
                fields=("merchant_id", "idempotency_key"),
                name="withdrawal_unique_merchant_idempotency_key",
            ),
        ),
    ]
