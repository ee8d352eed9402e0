"""
Pytest fixtures shared by the payments test suites.

Stripe is never called: ``stripe_adapter`` installs a MagicMock shaped like
StripeAdapter into every service that talks to Stripe, with happy-path
return values for the 200 / 30 / 10 / 5 marketplace split.

Usage:
    def test_payout(completed_payment, coach_account, stripe_adapter, settlement_config):
        PayoutOrchestrator.run_batch(settlement_config)
        stripe_adapter.create_transfer.assert_called_once()
"""

import pytest

from payments.adapters import ChargeResult, RefundResult, ReversalResult, StripeAdapter, TransferResult
from payments.config import SettlementConfig
from payments.services import FeeReconciliationService, PayoutOrchestrator, RefundService
from payments.tests.factories import (
    CompletedPaymentFactory,
    ConnectedAccountFactory,
    UserFactory,
)

STRIPE_SERVICES = (FeeReconciliationService, PayoutOrchestrator, RefundService)


# =============================================================================
# Parties
# =============================================================================


@pytest.fixture
def client_user(db):
    """The paying client."""
    return UserFactory()


@pytest.fixture
def coach(db):
    return UserFactory()


@pytest.fixture
def coach_account(coach):
    """Payout-ready connected account, not tax registered."""
    return ConnectedAccountFactory(user=coach)


@pytest.fixture
def tax_registered_account(coach):
    return ConnectedAccountFactory(user=coach, tax_registered=True)


# =============================================================================
# Payments
# =============================================================================


@pytest.fixture
def completed_payment(client_user, coach):
    """Completed 200.00 charge with a due payout."""
    return CompletedPaymentFactory(payer=client_user, recipient=coach)


# =============================================================================
# Configuration
# =============================================================================


@pytest.fixture
def settlement_config():
    """Default settlement knobs, independent of the environment."""
    return SettlementConfig()


# =============================================================================
# Stripe / Redis
# =============================================================================


def make_charge(charge_id="ch_test", amount_cents=20000, refunded_cents=0, fee_cents=500):
    return ChargeResult(
        id=charge_id,
        amount_cents=amount_cents,
        amount_refunded_cents=refunded_cents,
        amount_captured_cents=amount_cents,
        currency="chf",
        fee_cents=fee_cents,
        balance_transaction_id="txn_test" if fee_cents is not None else None,
    )


@pytest.fixture
def stripe_adapter(mocker):
    """
    MagicMock standing in for StripeAdapter in every settlement service.

    Defaults: a settled 200.00 charge with a 5.00 fee, transfers and
    refunds accepted, transfers fully reversible, no earlier
    transfer on record for any payout.
    """
    adapter = mocker.MagicMock(spec=StripeAdapter)
    adapter.retrieve_charge.side_effect = lambda charge_id, **kwargs: make_charge(charge_id)
    adapter.create_transfer.side_effect = lambda amount_cents, destination_account, **kwargs: TransferResult(
        id="tr_test",
        amount_cents=amount_cents,
        currency=kwargs.get("currency", "chf"),
        destination_account=destination_account,
    )
    adapter.find_transfer.return_value = None
    adapter.retrieve_transfer.return_value = TransferResult(
        id="tr_test",
        amount_cents=15500,
        currency="chf",
        destination_account="acct_test",
    )
    adapter.create_refund.side_effect = lambda payment_intent_id, amount_cents=None, **kwargs: RefundResult(
        id="re_test",
        amount_cents=amount_cents,
        currency="chf",
        status="succeeded",
        payment_intent_id=payment_intent_id,
    )
    adapter.create_transfer_reversal.side_effect = lambda transfer_id, amount_cents, **kwargs: ReversalResult(
        id="trr_test",
        transfer_id=transfer_id,
        amount_cents=amount_cents,
        currency="chf",
    )

    for service in STRIPE_SERVICES:
        service.set_stripe_adapter(adapter)
    yield adapter
    for service in STRIPE_SERVICES:
        service.set_stripe_adapter(None)


@pytest.fixture
def mock_redis(mocker):
    """
    MagicMock Redis client behind DistributedLock.

    ``set`` succeeds (lock free) and the release script reports success.
    """
    client = mocker.MagicMock()
    client.set.return_value = True
    client.eval.return_value = 1
    mocker.patch("payments.locks.get_redis_connection", return_value=client)
    return client

