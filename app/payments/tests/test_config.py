"""Tests for SettlementConfig."""

from datetime import timedelta
from decimal import Decimal

import pytest

from payments.config import SettlementConfig


class TestSettlementConfig:
    def test_defaults(self):
        config = SettlementConfig()

        assert config.payout_delay == timedelta(hours=24)
        assert config.stale_lock_age == timedelta(minutes=30)
        assert config.minimum_payout_amount == Decimal("0.50")
        assert config.max_payout_attempts == 5

    @pytest.mark.parametrize(
        "attempt, minutes",
        [(1, 15), (2, 60), (3, 240), (4, 1440), (9, 1440), (0, 15)],
    )
    def test_retry_ladder(self, attempt, minutes):
        """Should index the ladder by attempt and repeat the last rung."""
        assert SettlementConfig().retry_delay(attempt) == timedelta(minutes=minutes)

    def test_from_settings(self, settings):
        settings.PAYOUT_DELAY_HOURS = 48
        settings.PAYOUT_RETRY_DELAYS_MINUTES = ["5", "10"]
        settings.MINIMUM_PAYOUT_AMOUNT = "1.00"
        settings.SETTLEMENT_CURRENCY = "CHF"

        config = SettlementConfig.from_settings()

        assert config.payout_delay_hours == 48
        assert config.retry_delays_minutes == (5, 10)
        assert config.minimum_payout_amount == Decimal("1.00")
        assert config.currency == "chf"

    def test_rejects_empty_ladder(self):
        with pytest.raises(ValueError):
            SettlementConfig(retry_delays_minutes=())

    def test_is_immutable(self):
        config = SettlementConfig()

        with pytest.raises(AttributeError):
            config.max_payout_attempts = 1
