import decimal
import uuid

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models


def money(help_text, **kwargs):
    return models.DecimalField(decimal_places=2, max_digits=12, help_text=help_text, **kwargs)


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="ConnectedAccount",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True, db_index=True, help_text="Timestamp when this record was created"
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified"),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1, help_text="Version for optimistic locking - incremented on each save"
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(blank=True, default=dict, help_text="Flexible key-value metadata storage"),
                ),
                (
                    "stripe_account_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe Account ID (acct_xxx); empty until onboarding starts",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "onboarding_status",
                    models.CharField(
                        choices=[
                            ("not_started", "Not Started"),
                            ("in_progress", "In Progress"),
                            ("complete", "Complete"),
                            ("rejected", "Rejected"),
                        ],
                        db_index=True,
                        default="not_started",
                        help_text="Current Stripe Connect onboarding status",
                        max_length=20,
                    ),
                ),
                (
                    "payouts_enabled",
                    models.BooleanField(default=False, help_text="Whether Stripe has enabled payouts for this account"),
                ),
                (
                    "charges_enabled",
                    models.BooleanField(default=False, help_text="Whether Stripe has enabled charges for this account"),
                ),
                (
                    "is_tax_registered",
                    models.BooleanField(default=False, help_text="Whether the coach is VAT registered"),
                ),
                (
                    "tax_number",
                    models.CharField(blank=True, default="", help_text="VAT number shown on invoices", max_length=50),
                ),
                (
                    "tax_rate",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        help_text="VAT percentage; empty uses the platform default",
                        max_digits=5,
                        null=True,
                    ),
                ),
                (
                    "user",
                    models.OneToOneField(
                        help_text="Coach this connected account belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="connected_account",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Connected Account",
                "verbose_name_plural": "Connected Accounts",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True, db_index=True, help_text="Timestamp when this record was created"
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified"),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1, help_text="Version for optimistic locking - incremented on each save"
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(blank=True, default=dict, help_text="Flexible key-value metadata storage"),
                ),
                (
                    "payment_type",
                    models.CharField(
                        choices=[
                            ("charge", "Charge"),
                            ("program_purchase", "Program Purchase"),
                            ("live_session_charge", "Live Session Charge"),
                            ("overtime_charge", "Overtime Charge"),
                            ("authorization", "Authorization"),
                            ("payout", "Payout"),
                            ("refund", "Refund"),
                            ("adjustment", "Adjustment"),
                        ],
                        db_index=True,
                        default="charge",
                        help_text="What this payment represents",
                        max_length=30,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("draft", "Draft"),
                            ("pending", "Pending"),
                            ("authorized", "Authorized"),
                            ("completed", "Completed"),
                            ("refunded", "Refunded"),
                            ("partially_refunded", "Partially Refunded"),
                            ("disputed", "Disputed"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                            ("pending_deduction", "Pending Deduction"),
                            ("deducted", "Deducted"),
                        ],
                        db_index=True,
                        default="draft",
                        help_text="Lifecycle status (managed by FSM transitions)",
                        max_length=50,
                    ),
                ),
                (
                    "payout_status",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("submitted", "Submitted"),
                            ("paid_out", "Paid Out"),
                            ("failed", "Failed"),
                            ("on_hold", "On Hold"),
                            ("not_applicable", "Not Applicable"),
                        ],
                        db_index=True,
                        help_text="Disbursement status; empty until the payment completes",
                        max_length=20,
                        null=True,
                    ),
                ),
                ("base_amount", money("Service price before platform fee and VAT", default=decimal.Decimal("0.00"))),
                ("platform_fee", money("Platform commission included in total_amount", default=decimal.Decimal("0.00"))),
                (
                    "vat_rate",
                    models.DecimalField(
                        decimal_places=2,
                        default=decimal.Decimal("0.00"),
                        help_text="VAT percentage applied to the charge",
                        max_digits=5,
                    ),
                ),
                ("vat_amount", money("VAT included in total_amount", default=decimal.Decimal("0.00"))),
                (
                    "vat_included",
                    models.BooleanField(default=True, help_text="Whether vat_amount is already part of base_amount"),
                ),
                ("total_amount", money("Gross amount charged (negative for adjustments)")),
                ("authorized_amount", money("Amount authorized on the card", default=decimal.Decimal("0.00"))),
                ("captured_amount", money("Amount captured from the card", default=decimal.Decimal("0.00"))),
                ("refunded_amount", money("Cumulative amount refunded to the payer", default=decimal.Decimal("0.00"))),
                (
                    "currency",
                    models.CharField(default="chf", help_text="ISO 4217 currency code (lowercase)", max_length=3),
                ),
                (
                    "payout_attempts",
                    models.PositiveSmallIntegerField(
                        default=0, help_text="Payout attempts made so far (incremented by the claim)"
                    ),
                ),
                (
                    "next_payout_attempt_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="Earliest time the orchestrator may claim this payout",
                        null=True,
                    ),
                ),
                (
                    "payout_locked_at",
                    models.DateTimeField(
                        blank=True, help_text="When the current processing claim was taken", null=True
                    ),
                ),
                (
                    "payout_processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the payout was submitted or settled without transfer",
                        null=True,
                    ),
                ),
                (
                    "payout_failure_reason",
                    models.TextField(blank=True, help_text="Last payout failure, for operators", null=True),
                ),
                (
                    "stripe_charge_id",
                    models.CharField(
                        blank=True, db_index=True, help_text="Stripe Charge ID (ch_xxx)", max_length=255, null=True
                    ),
                ),
                (
                    "stripe_payment_intent_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe PaymentIntent ID (pi_xxx)",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "stripe_transfer_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Outstanding Stripe Transfer ID (tr_xxx) for this payout",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "refunds",
                    models.JSONField(blank=True, default=list, help_text="Append-only refund history entries"),
                ),
                ("description", models.TextField(blank=True, default="", help_text="Human-readable description")),
                (
                    "completed_at",
                    models.DateTimeField(blank=True, help_text="When the charge was captured", null=True),
                ),
                ("failure_reason", models.TextField(blank=True, help_text="Why the charge failed", null=True)),
                (
                    "payer",
                    models.ForeignKey(
                        blank=True,
                        help_text="Client who was charged (empty for adjustments)",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments_made",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "recipient",
                    models.ForeignKey(
                        blank=True,
                        help_text="Coach owed the earnings of this payment",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments_received",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "original_payment",
                    models.ForeignKey(
                        blank=True,
                        help_text="Payment whose refund created this adjustment",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="adjustments",
                        to="payments.payment",
                    ),
                ),
                (
                    "absorbed_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Payout payment that reserved or absorbed this adjustment",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="absorbed_adjustments",
                        to="payments.payment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment",
                "verbose_name_plural": "Payments",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["payout_status", "next_payout_attempt_at"], name="payment_payout_due_idx"
                    ),
                    models.Index(fields=["status", "payment_type"], name="payment_status_type_idx"),
                    models.Index(
                        fields=["recipient", "payment_type", "status"], name="payment_recipient_type_idx"
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("refunded_amount__gte", 0)),
                        name="payment_refunded_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("refunded_amount__lte", models.F("total_amount")),
                            ("payment_type", "adjustment"),
                            _connector="OR",
                        ),
                        name="payment_refunded_not_above_total",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Transaction",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True, db_index=True, help_text="Timestamp when this record was created"
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified"),
                ),
                (
                    "metadata",
                    models.JSONField(blank=True, default=dict, help_text="Flexible key-value metadata storage"),
                ),
                (
                    "transaction_type",
                    models.CharField(
                        choices=[
                            ("fee", "Processor Fee"),
                            ("payout", "Payout"),
                            ("refund", "Refund"),
                            ("transfer", "Transfer"),
                            ("dispute", "Dispute"),
                        ],
                        db_index=True,
                        help_text="Kind of ledger entry",
                        max_length=20,
                    ),
                ),
                ("amount", money("Signed amount in settlement-currency units")),
                (
                    "currency",
                    models.CharField(default="chf", help_text="ISO 4217 currency code (lowercase)", max_length=3),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("skipped", "Skipped"),
                        ],
                        db_index=True,
                        default="completed",
                        help_text="Entry status",
                        max_length=20,
                    ),
                ),
                (
                    "stripe_charge_id",
                    models.CharField(blank=True, help_text="Stripe Charge ID (ch_xxx)", max_length=255, null=True),
                ),
                (
                    "stripe_balance_transaction_id",
                    models.CharField(
                        blank=True, help_text="Stripe BalanceTransaction ID (txn_xxx)", max_length=255, null=True
                    ),
                ),
                (
                    "stripe_transfer_id",
                    models.CharField(
                        blank=True, db_index=True, help_text="Stripe Transfer ID (tr_xxx)", max_length=255, null=True
                    ),
                ),
                (
                    "stripe_refund_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe Refund ID (re_xxx), booked once",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "stripe_reversal_id",
                    models.CharField(
                        blank=True, help_text="Stripe TransferReversal ID (trr_xxx)", max_length=255, null=True
                    ),
                ),
                ("description", models.TextField(blank=True, default="", help_text="Human-readable description")),
                (
                    "error",
                    models.JSONField(blank=True, help_text="Error code and message for failed entries", null=True),
                ),
                (
                    "payment",
                    models.ForeignKey(
                        help_text="Payment this entry belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="payments.payment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Transaction",
                "verbose_name_plural": "Transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["payment", "transaction_type"], name="transaction_payment_type_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("transaction_type", "fee")),
                        fields=("payment",),
                        name="transaction_single_fee_per_payment",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CoachInvoice",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True, db_index=True, help_text="Timestamp when this record was created"
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified"),
                ),
                (
                    "metadata",
                    models.JSONField(blank=True, default=dict, help_text="Flexible key-value metadata storage"),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[("invoice", "Invoice"), ("credit_note", "Credit Note")],
                        db_index=True,
                        default="invoice",
                        help_text="Invoice or credit note",
                        max_length=20,
                    ),
                ),
                ("gross_amount", money("Gross payout (net + withheld tax)")),
                ("net_amount", money("Amount net of withheld tax")),
                ("withheld_tax", money("VAT withheld for tax-registered coaches")),
                (
                    "tax_rate",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="VAT percentage used for the split (0 when not registered)",
                        max_digits=5,
                    ),
                ),
                (
                    "currency",
                    models.CharField(default="chf", help_text="ISO 4217 currency code (lowercase)", max_length=3),
                ),
                (
                    "stripe_refund_id",
                    models.CharField(
                        blank=True, help_text="Refund that triggered this credit note", max_length=255, null=True
                    ),
                ),
                (
                    "payment",
                    models.ForeignKey(
                        help_text="Payment whose payout this document covers",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="coach_invoices",
                        to="payments.payment",
                    ),
                ),
                (
                    "recipient",
                    models.ForeignKey(
                        help_text="Coach the document is issued for",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="coach_invoices",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "original_invoice",
                    models.ForeignKey(
                        blank=True,
                        help_text="Invoice credited by this credit note",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="credit_notes",
                        to="payments.coachinvoice",
                    ),
                ),
            ],
            options={
                "verbose_name": "Coach Invoice",
                "verbose_name_plural": "Coach Invoices",
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("kind", "invoice")),
                        fields=("payment",),
                        name="coach_invoice_single_invoice_per_payment",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True, db_index=True, help_text="Timestamp when this record was created"
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified"),
                ),
                (
                    "stripe_event_id",
                    models.CharField(
                        help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True, help_text="Stripe event type (e.g., 'transfer.paid')", max_length=100
                    ),
                ),
                ("payload", models.JSONField(help_text="Full webhook payload from Stripe (JSON)")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current processing status",
                        max_length=20,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(blank=True, help_text="When event was successfully processed", null=True),
                ),
                (
                    "error_message",
                    models.TextField(blank=True, help_text="Error message if processing failed", null=True),
                ),
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(default=0, help_text="Number of processing attempts"),
                ),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "retry_count"], name="webhook_status_retry_idx"),
                ],
            },
        ),
    ]
