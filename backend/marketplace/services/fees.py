"""Platform fee math. Pure functions on Decimal.

All amounts are rounded half-up to the currency's minor unit. Fees on
individual milestone payments are rounded independently, so their sum
may differ from the fee on the whole contract by a few minor units; see
``rounding_slack``. That difference is recorded, never folded into a
payment.
"""

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple

# ISO 4217 currencies without a minor unit; everything else uses cents.
_ZERO_DECIMAL_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "ISK", "JPY", "KMF", "KRW",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
})


class FeeBreakdown(NamedTuple):
    platform_fee: Decimal
    net_amount: Decimal


def minor_unit(currency: str = "USD") -> Decimal:
    """Smallest representable amount for the currency (0.01 or 1)."""
    if currency.upper() in _ZERO_DECIMAL_CURRENCIES:
        return Decimal("1")
    return Decimal("0.01")


def to_decimal(value: Decimal | int | str | float) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # str() avoids binary float artefacts: 0.1 → "0.1"
        return Decimal(str(value))
    return Decimal(value)


def round_money(amount: Decimal | int | str | float, currency: str = "USD") -> Decimal:
    return to_decimal(amount).quantize(minor_unit(currency), rounding=ROUND_HALF_UP)


def compute_fee(
    total_amount: Decimal | int | str | float,
    fee_rate: Decimal | int | str | float,
    currency: str = "USD",
) -> FeeBreakdown:
    """Split an amount into platform fee and net payout.

    >>> compute_fee(Decimal("100.00"), Decimal("0.10"))
    FeeBreakdown(platform_fee=Decimal('10.00'), net_amount=Decimal('90.00'))
    """
    amount = round_money(total_amount, currency)
    rate = to_decimal(fee_rate)
    if amount < 0:
        raise ValueError(f"Amount must not be negative: {amount}")
    if rate < 0 or rate > 1:
        raise ValueError(f"Fee rate must be between 0 and 1: {rate}")

    platform_fee = round_money(amount * rate, currency)
    return FeeBreakdown(platform_fee=platform_fee, net_amount=amount - platform_fee)


def rounding_slack(
    platform_fee: Decimal,
    fee_rate: Decimal,
    milestone_amounts: Iterable[Decimal],
    currency: str = "USD",
) -> Decimal:
    """Return ``platform_fee - sum(per-milestone fees)``.

    Positive means the milestone payments collected less fee than the
    fee frozen on the escrow; negative means more.
    """
    collected = sum(
        (compute_fee(amount, fee_rate, currency).platform_fee for amount in milestone_amounts),
        Decimal("0"),
    )
    return round_money(platform_fee, currency) - collected
