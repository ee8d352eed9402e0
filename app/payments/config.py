"""
Immutable settlement configuration.

Every job and service receives a SettlementConfig instead of reading
settings ad hoc, so tests can inject deterministic values:

    config = SettlementConfig.from_settings()
    PayoutOrchestrator.run_batch(config=config)

    test_config = SettlementConfig(max_payout_attempts=2)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from django.conf import settings

from payments.money import to_decimal


@dataclass(frozen=True)
class SettlementConfig:
    """
    Knobs of the settlement core.

    Attributes:
        payout_delay_hours: Delay between completion and the first payout attempt
        retry_delays_minutes: Backoff ladder, indexed by attempt number
        max_payout_attempts: Attempts before a payout is marked failed
        payout_batch_limit: Payments claimed per orchestrator run
        fee_batch_limit: Payments examined per fee reconciliation run
        minimum_payout_amount: Below this nothing is transferred
        default_tax_rate: VAT percentage for tax-registered coaches without a rate
        stale_lock_minutes: Age after which a processing claim is reclaimed
        refund_epsilon: Remaining balance under this counts as fully refunded
        currency: Settlement currency (lowercase ISO 4217)
    """

    payout_delay_hours: int = 24
    retry_delays_minutes: tuple[int, ...] = field(default=(15, 60, 240, 1440))
    max_payout_attempts: int = 5
    payout_batch_limit: int = 50
    fee_batch_limit: int = 50
    minimum_payout_amount: Decimal = Decimal("0.50")
    default_tax_rate: Decimal = Decimal("8.1")
    stale_lock_minutes: int = 30
    refund_epsilon: Decimal = Decimal("0.01")
    currency: str = "chf"

    def __post_init__(self):
        if not self.retry_delays_minutes:
            raise ValueError("retry_delays_minutes must contain at least one delay")
        if self.max_payout_attempts < 1:
            raise ValueError("max_payout_attempts must be at least 1")

    @classmethod
    def from_settings(cls) -> SettlementConfig:
        """Build the configuration from Django settings (django-environ backed)."""
        return cls(
            payout_delay_hours=settings.PAYOUT_DELAY_HOURS,
            retry_delays_minutes=tuple(int(m) for m in settings.PAYOUT_RETRY_DELAYS_MINUTES),
            max_payout_attempts=settings.MAX_PAYOUT_ATTEMPTS,
            payout_batch_limit=settings.PAYOUT_BATCH_LIMIT,
            fee_batch_limit=settings.FEE_RECONCILIATION_BATCH_LIMIT,
            minimum_payout_amount=to_decimal(settings.MINIMUM_PAYOUT_AMOUNT),
            default_tax_rate=to_decimal(settings.DEFAULT_COACH_TAX_RATE),
            stale_lock_minutes=settings.PAYOUT_STALE_LOCK_MINUTES,
            refund_epsilon=to_decimal(settings.REFUND_EPSILON),
            currency=settings.SETTLEMENT_CURRENCY.lower(),
        )

    @property
    def payout_delay(self) -> timedelta:
        return timedelta(hours=self.payout_delay_hours)

    @property
    def stale_lock_age(self) -> timedelta:
        return timedelta(minutes=self.stale_lock_minutes)

    def retry_delay(self, attempt: int) -> timedelta:
        """
        Backoff before the next payout attempt after ``attempt`` failed.

        Attempt 1 uses the first rung; attempts past the end of the ladder
        reuse the last rung.
        """
        index = min(max(attempt, 1) - 1, len(self.retry_delays_minutes) - 1)
        return timedelta(minutes=self.retry_delays_minutes[index])


__all__ = ["SettlementConfig"]
