"""
Tests for the payments app.

This package contains test modules for:
- test_models.py: Payment, Transaction, ConnectedAccount, WebhookEvent
- test_state_transitions.py: Payment status machine
- test_locks.py: Redis and row locks
- test_config.py, test_money.py: Settlement settings and Decimal helpers
- test_settlement_flow.py: Capture to payout to post-payout refund

Service, worker, adapter and webhook tests live beside their packages.

Usage:
    pytest payments/tests/
    pytest -m e2e
"""
