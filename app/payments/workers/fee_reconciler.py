"""
Fee reconciliation worker.

Celery Beat Schedule (seeded by payments migration 0002):
    reconcile_processing_fees  every 15 minutes
"""

from __future__ import annotations

import logging

from celery import shared_task

from payments.config import SettlementConfig
from payments.services import FeeReconciliationService

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def reconcile_processing_fees(self) -> dict:
    """
    Record Stripe processing fees for completed payments missing one.

    Returns:
        Dict with processed, recorded, already_recorded, pending and failed
    """
    logger.info("Starting fee reconciliation")
    return FeeReconciliationService.run_batch(SettlementConfig.from_settings())
