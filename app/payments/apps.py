"""
Payments app configuration.

Settlement core of the marketplace: payment ledger, fee reconciliation,
payout orchestration, refunds and coach invoices.
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
