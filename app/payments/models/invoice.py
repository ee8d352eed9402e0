"""
CoachInvoice model: the monetary decomposition handed to the document
renderer for a coach's self-billing invoice or credit note.

Rendering is out of scope; these rows guarantee the numbers on the
document match the ledger (``net_amount + withheld_tax == gross_amount``).
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q

from core.models import BaseModel
from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin

from payments.state_machines import InvoiceKind


class CoachInvoice(UUIDPrimaryKeyMixin, MetadataMixin, BaseModel):
    """
    Invoice (one per payout) or credit note (one per post-payout refund).

    Credit notes store negative amounts and point at the invoice they
    credit through ``original_invoice``.
    """

    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.PROTECT,
        related_name="coach_invoices",
        help_text="Payment whose payout this document covers",
    )

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="coach_invoices",
        help_text="Coach the document is issued for",
    )

    kind = models.CharField(
        max_length=20,
        choices=InvoiceKind.choices,
        default=InvoiceKind.INVOICE,
        db_index=True,
        help_text="Invoice or credit note",
    )

    gross_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Gross payout (net + withheld tax)",
    )

    net_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Amount net of withheld tax",
    )

    withheld_tax = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="VAT withheld for tax-registered coaches",
    )

    tax_rate = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        help_text="VAT percentage used for the split (0 when not registered)",
    )

    currency = models.CharField(
        max_length=3,
        default="chf",
        help_text="ISO 4217 currency code (lowercase)",
    )

    original_invoice = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="credit_notes",
        help_text="Invoice credited by this credit note",
    )

    stripe_refund_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Refund that triggered this credit note",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Coach Invoice"
        verbose_name_plural = "Coach Invoices"
        constraints = [
            models.UniqueConstraint(
                fields=["payment"],
                condition=Q(kind=InvoiceKind.INVOICE),
                name="coach_invoice_single_invoice_per_payment",
            ),
        ]

    def __str__(self) -> str:
        return f"CoachInvoice({self.kind}, {self.gross_amount} {self.currency.upper()})"
