"""
Settlement services.

This package provides:
- PaymentLedgerService: Locked status transitions of Payment rows
- FeeReconciliationService: Records Stripe processing fees
- PayoutOrchestrator: Claims due payouts and transfers them to coaches
- PayoutAdminService: Operator hold / release / retry
- RefundService: Policy-driven refunds, reversals and adjustments
- CoachInvoiceService: Invoice and credit note records
- decompose_payout: Splits a payout into net and withheld tax

Usage:
    from payments.services import PayoutOrchestrator, RefundService

    summary = PayoutOrchestrator.run_batch()

    result = RefundService.process_refund(
        payment_id=payment.id,
        amount=Decimal("50.00"),
        reason="requested_by_customer",
        policy="standard",
    )
"""

from payments.services.decomposition import (
    PayoutDecomposition,
    compute_final_payout,
    decompose_payout,
)
from payments.services.fee_reconciliation import (
    FeeReconciliationService,
    FeeReconciliationSummary,
)
from payments.services.invoice_service import CoachInvoiceService
from payments.services.payment_ledger import (
    PaymentLedgerService,
    apply_completion_side_effects,
)
from payments.services.payout_service import (
    TERMINAL_ERRORS,
    PayoutAdminService,
    PayoutBatchSummary,
    PayoutOrchestrator,
    PayoutOutcome,
)
from payments.services.refund_service import (
    RefundBreakdown,
    RefundOutcome,
    RefundService,
    compute_refund_breakdown,
)

__all__ = [
    # Ledger
    "PaymentLedgerService",
    "apply_completion_side_effects",
    # Fees
    "FeeReconciliationService",
    "FeeReconciliationSummary",
    # Payouts
    "PayoutOrchestrator",
    "PayoutAdminService",
    "PayoutBatchSummary",
    "PayoutOutcome",
    "TERMINAL_ERRORS",
    # Refunds
    "RefundService",
    "RefundOutcome",
    "RefundBreakdown",
    "compute_refund_breakdown",
    # Invoices
    "CoachInvoiceService",
    "PayoutDecomposition",
    "compute_final_payout",
    "decompose_payout",
]
