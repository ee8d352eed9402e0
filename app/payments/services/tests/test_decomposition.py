"""Tests for payout decomposition and the final payout formula."""

from decimal import Decimal

import pytest

from payments.services import compute_final_payout, decompose_payout


class TestDecomposePayout:
    def test_tax_registered_coach(self):
        """Should withhold VAT from a registered coach's gross."""
        result = decompose_payout(Decimal("155.00"), True, Decimal("8.1"))

        assert result.net == Decimal("143.39")
        assert result.withheld_tax == Decimal("11.61")
        assert result.tax_rate == Decimal("8.1")

    def test_not_registered_keeps_gross(self):
        result = decompose_payout(Decimal("155.00"), False, Decimal("8.1"))

        assert result.net == Decimal("155.00")
        assert result.withheld_tax == Decimal("0.00")
        assert result.tax_rate == Decimal("0.00")

    def test_zero_rate_keeps_gross(self):
        assert decompose_payout("99.99", True, 0).net == Decimal("99.99")

    @pytest.mark.parametrize("gross", ["0.01", "0.99", "10.00", "123.45", "9999.99"])
    @pytest.mark.parametrize("rate", ["2.6", "3.8", "7.7", "8.1", "19"])
    def test_parts_sum_to_gross(self, gross, rate):
        """Should never lose or create a cent in the split."""
        result = decompose_payout(Decimal(gross), True, Decimal(rate))

        assert result.net + result.withheld_tax == Decimal(gross)
        assert result.withheld_tax >= 0

    def test_negative_rate_rejected(self):
        with pytest.raises(ValueError):
            decompose_payout(Decimal("10.00"), True, Decimal("-1"))

    def test_as_dict_uses_strings(self):
        assert decompose_payout("10", False, None).as_dict() == {
            "gross": "10.00",
            "net": "10.00",
            "withheld_tax": "0.00",
            "tax_rate": "0.00",
        }


class TestComputeFinalPayout:
    def test_marketplace_split(self):
        """Should give 155.00 on a 200 charge with 30 fee, 10 VAT and 5 Stripe fee."""
        assert compute_final_payout(
            Decimal("200.00"), Decimal("10.00"), Decimal("30.00"), Decimal("5.00")
        ) == Decimal("155.00")

    def test_subtracts_refund_debits(self):
        assert compute_final_payout(
            Decimal("200.00"),
            Decimal("10.00"),
            Decimal("30.00"),
            Decimal("5.00"),
            refund_debits=Decimal("40.00"),
        ) == Decimal("115.00")
