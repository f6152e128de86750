"""
Collateral valuation and loan-to-value ratios.

Responsibility:
    Expresses a collateral amount in principal-currency smallest units at a
    given bid price, and derives the LTV of a principal against it.  Shared
    by matching (matched LTV), LTV monitoring and the early-liquidation
    estimate so all three value collateral identically.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Imports only
    ``lending_kernel.domain`` value objects and converters.

Invariants enforced:
    - The bid price is used (what the collateral would fetch), never the ask.
    - ``exact_units`` keeps the unrounded valuation; ``value`` truncates it
      toward zero, so a reported valuation never exceeds the true one.
    - A zero valuation denominator is a CalculationInvariantError.

Failure modes:
    - CurrencyMismatchError when the collateral amount, currency record and
      exchange-rate base disagree.
    - CalculationInvariantError from ``calculate_ltv`` on a zero valuation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, localcontext
from uuid import UUID

from lending_engines.tracer import traced_engine
from lending_kernel.domain.units import UNIT_CONTEXT, to_human, truncate_to_int
from lending_kernel.domain.values import (
    DEFAULT_QUOTE_PRECISION,
    Amount,
    Currency,
    ExchangeRateSnapshot,
)
from lending_kernel.exceptions import CalculationInvariantError, CurrencyMismatchError

_ZERO = Decimal("0")


@dataclass(frozen=True)
class CollateralValuation:
    """Collateral value in principal-currency smallest units."""

    collateral: Amount
    value: Amount
    exact_units: Decimal
    exchange_rate: Decimal
    exchange_rate_id: UUID | None
    exchange_rate_date: datetime


def _check_collateral_currency(
    collateral: Amount,
    collateral_currency: Currency,
    exchange_rate: ExchangeRateSnapshot,
) -> None:
    if collateral.currency != collateral_currency.key:
        raise CurrencyMismatchError(str(collateral_currency.key), str(collateral.currency))
    if exchange_rate.base != collateral_currency.key:
        raise CurrencyMismatchError(str(collateral_currency.key), str(exchange_rate.base))


@traced_engine(
    "collateral_valuation",
    "1.0",
    fingerprint_fields=("collateral", "exchange_rate"),
)
def calculate_collateral_valuation(
    *,
    collateral: Amount,
    collateral_currency: Currency,
    principal_currency: Currency,
    exchange_rate: ExchangeRateSnapshot,
    quote_precision: int = DEFAULT_QUOTE_PRECISION,
) -> CollateralValuation:
    """
    Value ``collateral`` in smallest units of ``principal_currency``.

    value = collateral_human * bid_decimal * 10^principal_decimals,
    truncated toward zero.
    """
    _check_collateral_currency(collateral, collateral_currency, exchange_rate)
    rate = exchange_rate.bid_decimal(quote_precision)
    with localcontext(UNIT_CONTEXT):
        collateral_human = to_human(collateral.units, collateral_currency.decimals)
        exact = (collateral_human * rate).scaleb(principal_currency.decimals)
    return CollateralValuation(
        collateral=collateral,
        value=Amount(truncate_to_int(exact), principal_currency.key),
        exact_units=exact,
        exchange_rate=rate,
        exchange_rate_id=exchange_rate.id,
        exchange_rate_date=exchange_rate.source_date,
    )


def calculate_ltv(principal: Amount, valuation: Amount | Decimal) -> Decimal:
    """
    principal / valuation, unrounded.

    ``valuation`` may be an Amount in the principal currency or an exact
    Decimal count of principal smallest units.
    """
    if isinstance(valuation, Amount):
        if valuation.currency != principal.currency:
            raise CurrencyMismatchError(str(principal.currency), str(valuation.currency))
        denominator = Decimal(valuation.units)
    else:
        denominator = valuation
    if denominator <= _ZERO:
        raise CalculationInvariantError("ltv", f"non-positive collateral valuation {denominator}")
    with localcontext(UNIT_CONTEXT):
        return Decimal(principal.units) / denominator
