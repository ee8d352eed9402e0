"""
Settlement domain models.

- Payment: charges, payouts state and adjustments (the ledger's spine)
- Transaction: append-only entries (fee, payout, refund, transfer, dispute)
- ConnectedAccount: coach's Stripe destination and tax settings
- CoachInvoice: invoice / credit note decomposition records
- WebhookEvent: Stripe webhook events for idempotent processing
"""

from payments.models.connected_account import ConnectedAccount
from payments.models.invoice import CoachInvoice
from payments.models.payment import Payment
from payments.models.transaction import Transaction
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "CoachInvoice",
    "ConnectedAccount",
    "Payment",
    "Transaction",
    "WebhookEvent",
]
