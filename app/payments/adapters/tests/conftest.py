"""
Pytest fixtures for Stripe adapter tests.

The stripe SDK classes are patched; responses are MockStripeObject
instances that behave like StripeObjects (attribute access and to_dict).

Sections:
    - Mock Stripe Response Fixtures
    - Mock Stripe Error Fixtures
    - Mock Stripe Client Fixtures
"""

from dataclasses import dataclass
from typing import Any
from unittest.mock import patch

import pytest
import stripe


# =============================================================================
# Mock Stripe Response Fixtures
# =============================================================================


@dataclass
class MockStripeObject:
    """Mock Stripe API object with to_dict support."""

    data: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "data":
            return self.__dict__["data"]
        return self.data.get(name)

    def to_dict(self) -> dict[str, Any]:
        return self.data


@pytest.fixture
def mock_charge():
    """Create a mock Charge, settled unless ``balance_transaction`` says otherwise."""

    def _create(
        id: str = "ch_test123456",
        amount: int = 20000,
        amount_refunded: int = 0,
        currency: str = "chf",
        balance_transaction: Any = "default",
    ) -> MockStripeObject:
        if balance_transaction == "default":
            balance_transaction = {"id": "txn_test123", "object": "balance_transaction", "fee": 610}
        return MockStripeObject(
            {
                "id": id,
                "object": "charge",
                "amount": amount,
                "amount_captured": amount,
                "amount_refunded": amount_refunded,
                "currency": currency,
                "payment_intent": "pi_test123456",
                "balance_transaction": balance_transaction,
            }
        )

    return _create


@pytest.fixture
def mock_transfer():
    """Create a mock Transfer response."""

    def _create(
        id: str = "tr_test123456",
        amount: int = 15500,
        amount_reversed: int = 0,
        currency: str = "chf",
        destination: str = "acct_dest123",
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "transfer",
                "amount": amount,
                "amount_reversed": amount_reversed,
                "currency": currency,
                "destination": destination,
                "metadata": metadata or {},
            }
        )

    return _create


@pytest.fixture
def mock_refund():
    """Create a mock Refund response."""

    def _create(
        id: str = "re_test123456",
        amount: int = 5000,
        currency: str = "chf",
        status: str = "succeeded",
        payment_intent: str = "pi_test123456",
        failure_reason: str | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "refund",
                "amount": amount,
                "currency": currency,
                "status": status,
                "payment_intent": payment_intent,
                "failure_reason": failure_reason,
                "metadata": {},
            }
        )

    return _create


@pytest.fixture
def mock_reversal():
    def _create(id: str = "trr_test123", amount: int = 4000, transfer: str = "tr_test123456") -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "transfer_reversal",
                "amount": amount,
                "currency": "chf",
                "transfer": transfer,
                "metadata": {},
            }
        )

    return _create


# =============================================================================
# Mock Stripe Error Fixtures
# =============================================================================


@pytest.fixture
def invalid_request_error():
    """Create a Stripe InvalidRequestError."""

    def _create(
        message: str = "No such charge: 'ch_missing'",
        param: str | None = "id",
        code: str = "resource_missing",
    ) -> stripe.InvalidRequestError:
        return stripe.InvalidRequestError(message=message, param=param, code=code)

    return _create


@pytest.fixture
def rate_limit_error():
    return stripe.RateLimitError(message="Too many requests hit the API too quickly.")


@pytest.fixture
def api_connection_error():
    def _create(message: str = "Could not connect to Stripe.") -> stripe.APIConnectionError:
        return stripe.APIConnectionError(message=message)

    return _create


@pytest.fixture
def api_error():
    return stripe.APIError(message="Something went wrong on Stripe's end.")


@pytest.fixture
def authentication_error():
    return stripe.AuthenticationError(message="Invalid API Key provided.")


@pytest.fixture
def permission_error():
    return stripe.PermissionError(message="The provided key does not have access to account 'acct_x'.")


@pytest.fixture
def signature_verification_error():
    return stripe.SignatureVerificationError(
        message="Unable to verify webhook signature.",
        sig_header="bad_signature",
    )


# =============================================================================
# Mock Stripe Client Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def mock_stripe_http_client():
    """Keep _configure_stripe from building a real HTTP client."""
    with patch("stripe.RequestsClient") as mock:
        yield mock


@pytest.fixture
def mock_stripe_charge(mock_charge):
    with patch("stripe.Charge") as mock:
        mock.retrieve.return_value = mock_charge()
        yield mock


@pytest.fixture
def mock_stripe_transfer(mock_transfer, mock_reversal):
    """Mock stripe.Transfer API, including reversals."""
    with patch("stripe.Transfer") as mock:
        mock.create.return_value = mock_transfer()
        mock.retrieve.return_value = mock_transfer()
        mock.create_reversal.return_value = mock_reversal()
        yield mock


@pytest.fixture
def mock_stripe_refund(mock_refund):
    with patch("stripe.Refund") as mock:
        mock.create.return_value = mock_refund()
        yield mock


@pytest.fixture
def mock_stripe_webhook():
    """Mock stripe.Webhook API."""
    with patch("stripe.Webhook") as mock:
        mock.construct_event.return_value = MockStripeObject(
            {
                "id": "evt_test123",
                "type": "transfer.paid",
                "data": {"object": {"id": "tr_test123456", "object": "transfer"}},
            }
        )
        yield mock
