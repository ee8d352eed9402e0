"""
Payout executor worker.

Celery tasks around PayoutOrchestrator. The orchestrator does the claiming,
so several executors may run at once without paying anything twice.

Tasks:
- process_due_payouts: Periodic batch over payouts whose attempt is due
- process_single_payout: On-demand attempt for one payment (admin retry)
- release_stale_payout_locks: Periodic sweep of abandoned claims

Celery Beat Schedule (seeded by payments migration 0002):
    process_due_payouts         every 15 minutes
    release_stale_payout_locks  every 10 minutes
"""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task

from payments.config import SettlementConfig
from payments.services import PayoutOrchestrator

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def process_due_payouts(self) -> dict:
    """
    Run one payout batch.

    Returns:
        PayoutBatchSummary counters (processed, submitted, paid_out, ...)
    """
    logger.info("Starting payout batch")
    summary = PayoutOrchestrator.run_batch(SettlementConfig.from_settings())
    return summary.to_dict()


@shared_task(bind=True)
def process_single_payout(self, payment_id: str) -> dict:
    """
    Attempt the payout of one payment now, if it is due and unclaimed.

    Returns:
        Dict with payment_id, status and error
    """
    outcome = PayoutOrchestrator.process_due_payment(UUID(payment_id), config=SettlementConfig.from_settings())
    logger.info(
        "Single payout processed",
        extra={"payment_id": payment_id, "outcome": outcome.status},
    )
    return {"payment_id": payment_id, "status": outcome.status, "error": outcome.error}


@shared_task(bind=True)
def release_stale_payout_locks(self) -> dict:
    """
    Return abandoned ``processing`` claims to ``pending``.

    Returns:
        Dict with examined and released counts
    """
    result = PayoutOrchestrator.release_stale_locks(SettlementConfig.from_settings())
    if result["released"]:
        logger.warning("Stale payout locks released", extra=result)
    return result
