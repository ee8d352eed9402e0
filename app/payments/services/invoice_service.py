"""
Coach self-billing documents: one invoice per payout, one credit note per
refund that hits an already-paid payout.

Only the figures are stored here; rendering the PDF belongs to the
document service. Both operations are side effects of a money movement that
has already happened, so they never raise: failures come back as
``ServiceResult.failure`` and are logged for manual repair.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from core.services import BaseService, ServiceResult

from payments.models import CoachInvoice
from payments.money import quantize_money, to_decimal
from payments.services.decomposition import decompose_payout
from payments.state_machines import InvoiceKind

if TYPE_CHECKING:
    from payments.models import Payment
    from payments.services.decomposition import PayoutDecomposition


class CoachInvoiceService(BaseService):
    """
    Methods:
        record_payout_invoice: Store the decomposition of a submitted payout
        record_credit_note: Store a proportional credit against that invoice
    """

    @classmethod
    def record_payout_invoice(
        cls,
        payment: Payment,
        decomposition: PayoutDecomposition,
    ) -> ServiceResult[CoachInvoice]:
        """Idempotent per payment: a second call returns the existing invoice."""
        try:
            invoice, created = CoachInvoice.objects.get_or_create(
                payment=payment,
                kind=InvoiceKind.INVOICE,
                defaults={
                    "recipient_id": payment.recipient_id,
                    "gross_amount": decomposition.gross,
                    "net_amount": decomposition.net,
                    "withheld_tax": decomposition.withheld_tax,
                    "tax_rate": decomposition.tax_rate,
                    "currency": payment.currency,
                },
            )
        except Exception as exc:
            return cls.handle_exception(exc, f"Could not record invoice for payment {payment.id}")

        if created:
            cls.get_logger().info(
                "Coach invoice recorded",
                extra={"payment_id": str(payment.id), "invoice_id": str(invoice.id), **decomposition.as_dict()},
            )
        return ServiceResult.success(invoice)

    @classmethod
    def record_credit_note(
        cls,
        payment: Payment,
        refund_amount: Decimal,
        stripe_refund_id: str | None = None,
    ) -> ServiceResult[CoachInvoice]:
        """
        Credit ``refund_amount / total`` of the payment's invoice.

        The credited gross is split with the same decomposition as the
        invoice, so the credit note adds up to the cent as well.

        Error codes:
            INVOICE_NOT_FOUND: The payout never produced an invoice
        """
        try:
            invoice = CoachInvoice.objects.filter(payment=payment, kind=InvoiceKind.INVOICE).first()
            if invoice is None:
                cls.get_logger().warning(
                    "No invoice to credit for refunded payment",
                    extra={"payment_id": str(payment.id), "stripe_refund_id": stripe_refund_id},
                )
                return ServiceResult.failure(
                    f"Payment {payment.id} has no invoice to credit",
                    error_code="INVOICE_NOT_FOUND",
                )

            refund_percentage = to_decimal(refund_amount) / to_decimal(payment.total_amount)
            credited_gross = quantize_money(invoice.gross_amount * refund_percentage)
            credit = decompose_payout(credited_gross, invoice.tax_rate > 0, invoice.tax_rate)

            credit_note = CoachInvoice.objects.create(
                payment=payment,
                recipient_id=invoice.recipient_id,
                kind=InvoiceKind.CREDIT_NOTE,
                gross_amount=-credit.gross,
                net_amount=-credit.net,
                withheld_tax=-credit.withheld_tax,
                tax_rate=invoice.tax_rate,
                currency=invoice.currency,
                original_invoice=invoice,
                stripe_refund_id=stripe_refund_id,
                metadata={"refund_amount": str(refund_amount), "refund_percentage": str(refund_percentage)},
            )
        except Exception as exc:
            return cls.handle_exception(exc, f"Could not record credit note for payment {payment.id}")

        cls.get_logger().info(
            "Coach credit note recorded",
            extra={
                "payment_id": str(payment.id),
                "credit_note_id": str(credit_note.id),
                "gross_amount": str(credit_note.gross_amount),
            },
        )
        return ServiceResult.success(credit_note)


__all__ = ["CoachInvoiceService"]
