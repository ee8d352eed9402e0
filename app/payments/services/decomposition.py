"""
Payout decomposition: the one place where a coach's gross earning is
split into the net amount and the VAT withheld for tax-registered coaches.

Pure functions only. The payout orchestrator and the invoice service call
``decompose_payout`` with the same inputs, so the numbers on the invoice
are the numbers that were paid.

Example (tax-registered coach, 8.1%):
    >>> decompose_payout(Decimal("155.00"), True, Decimal("8.1"))
    PayoutDecomposition(gross=Decimal('155.00'), net=Decimal('143.39'),
                        withheld_tax=Decimal('11.61'), tax_rate=Decimal('8.1'))
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from payments.money import ZERO, quantize_money, to_decimal

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class PayoutDecomposition:
    """
    ``net + withheld_tax == gross`` to the cent.

    ``tax_rate`` is the percentage used for the split, 0 when the coach is
    not tax-registered.
    """

    gross: Decimal
    net: Decimal
    withheld_tax: Decimal
    tax_rate: Decimal

    def as_dict(self) -> dict[str, str]:
        return {
            "gross": str(self.gross),
            "net": str(self.net),
            "withheld_tax": str(self.withheld_tax),
            "tax_rate": str(self.tax_rate),
        }


def decompose_payout(
    gross: Decimal | int | str,
    is_tax_registered: bool,
    tax_rate: Decimal | int | str | None,
) -> PayoutDecomposition:
    """
    Split ``gross`` into net and withheld tax.

    The net is rounded half-up to cents and the withheld tax is the
    remainder, which keeps the sum exact. Non-registered coaches (or a
    zero rate) get ``net == gross``.

    Raises:
        ValueError: Negative tax rate
    """
    gross = quantize_money(gross)
    rate = to_decimal(tax_rate) if tax_rate is not None else ZERO
    if rate < 0:
        raise ValueError("tax_rate must not be negative")

    if not is_tax_registered or rate == 0:
        return PayoutDecomposition(gross=gross, net=gross, withheld_tax=ZERO, tax_rate=ZERO)

    net = quantize_money(gross / (1 + rate / HUNDRED))
    return PayoutDecomposition(gross=gross, net=net, withheld_tax=gross - net, tax_rate=rate)


def compute_final_payout(
    total: Decimal,
    vat: Decimal,
    platform_fee: Decimal,
    processor_fee: Decimal,
    refund_debits: Decimal = ZERO,
) -> Decimal:
    """
    Coach's gross earning on a charge.

    ``refund_debits`` are the coach shares of refunds booked before the
    payout ran (see Payment.pending_refund_debits).
    """
    deductions = to_decimal(vat) + to_decimal(platform_fee) + to_decimal(processor_fee) + to_decimal(refund_debits)
    return quantize_money(to_decimal(total) - deductions)


__all__ = ["PayoutDecomposition", "compute_final_payout", "decompose_payout"]
