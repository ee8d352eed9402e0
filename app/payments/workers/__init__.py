"""
Celery workers of the settlement core.

- FeeReconciler: Attaches Stripe processing fees to completed payments
- PayoutExecutor: Runs payout batches and the stale-claim sweep

Usage:
    from payments.workers import process_due_payouts, reconcile_processing_fees

    process_due_payouts.delay()
    process_single_payout.delay(str(payment.id))
"""

from payments.workers.fee_reconciler import reconcile_processing_fees
from payments.workers.payout_executor import (
    process_due_payouts,
    process_single_payout,
    release_stale_payout_locks,
)

__all__ = [
    # Fee Reconciler
    "reconcile_processing_fees",
    # Payout Executor
    "process_due_payouts",
    "process_single_payout",
    "release_stale_payout_locks",
]
