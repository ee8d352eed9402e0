"""
Fire-and-forget notifications for settlement events.

Notifications never influence money movement: a failure to create one is
logged and dropped. ``emit_on_commit`` defers the call until the ledger
transaction that produced the event has committed, so a rolled-back payout
never notifies anybody.

Event types (seeded by notifications migration 0002):
    payout.submitted, payout.failed,
    refund.processed.coach, refund.processed.client
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from django.db import transaction

from notifications.services import NotificationService

if TYPE_CHECKING:
    from typing import Any

    from authentication.models import User

logger = logging.getLogger(__name__)

PAYOUT_SUBMITTED = "payout.submitted"
PAYOUT_FAILED = "payout.failed"
REFUND_PROCESSED_COACH = "refund.processed.coach"
REFUND_PROCESSED_CLIENT = "refund.processed.client"


def _serialize(data: dict[str, Any]) -> dict[str, Any]:
    serialized = {}
    for key, value in data.items():
        if isinstance(value, Decimal):
            serialized[key] = str(value)
        elif value is None or isinstance(value, (str, int, float, bool)):
            serialized[key] = value
        else:
            serialized[key] = str(value)
    return serialized


def emit(
    event_type: str,
    recipient: User | None,
    data: dict[str, Any],
    idempotency_key: str | None = None,
) -> bool:
    """
    Create a notification now. Returns True when one was created.

    Never raises.
    """
    if recipient is None:
        logger.info("Notification skipped: no recipient", extra={"event_type": event_type})
        return False

    try:
        result = NotificationService.create_notification(
            recipient=recipient,
            type_key=event_type,
            data=_serialize(data),
            idempotency_key=idempotency_key,
        )
    except Exception:
        logger.exception(
            "Notification emit failed",
            extra={"event_type": event_type, "recipient_id": str(recipient.pk)},
        )
        return False

    if not result.success:
        logger.warning(
            "Notification not created",
            extra={"event_type": event_type, "error_code": result.error_code},
        )
    return result.success


def emit_on_commit(
    event_type: str,
    recipient: User | None,
    data: dict[str, Any],
    idempotency_key: str | None = None,
) -> None:
    """Schedule ``emit`` for after the current transaction commits."""
    transaction.on_commit(lambda: emit(event_type, recipient, data, idempotency_key))


__all__ = [
    "PAYOUT_FAILED",
    "PAYOUT_SUBMITTED",
    "REFUND_PROCESSED_CLIENT",
    "REFUND_PROCESSED_COACH",
    "emit",
    "emit_on_commit",
]
