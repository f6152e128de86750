"""
Early-Exit Calculator.

Responsibility:
    Two independent, side-effect-free estimates a borrower sees before
    acknowledging an early exit:

    * early liquidation -- current collateral valuation against the
      outstanding debt, after liquidation slippage;
    * early repayment -- remaining term and the amount due under the
      full-interest policy.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  May be called any number
    of times; the loan service records the estimate only when the borrower
    submits an acknowledged request.

Invariants enforced:
    - total outstanding = principal + interest + premi + liquidation fee.
    - A deficit is a negative ``estimated_surplus_deficit``, never an error.
    - Integer outputs derived from unrounded values truncate toward zero.
    - Early repayment always charges the full contractual interest.
    - Day counts are ceilings of fractional days; remaining days >= 0.

Failure modes:
    - CurrencyMismatchError when debt components are in different
      currencies.
    - CalculationInvariantError for a zero collateral valuation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, localcontext
from uuid import UUID

from lending_engines.tracer import traced_engine
from lending_engines.valuation import calculate_collateral_valuation, calculate_ltv
from lending_kernel.domain.dates import ceil_days_between
from lending_kernel.domain.policy import PlatformRiskPolicy
from lending_kernel.domain.units import UNIT_CONTEXT, truncate_to_int
from lending_kernel.domain.values import (
    DEFAULT_QUOTE_PRECISION,
    Amount,
    Currency,
    ExchangeRateSnapshot,
)

_ONE = Decimal("1")


@dataclass(frozen=True)
class EarlyLiquidationEstimate:
    """Outcome of liquidating the collateral now."""

    collateral: Amount
    exchange_rate: Decimal
    exchange_rate_id: UUID | None
    exchange_rate_date: datetime
    current_valuation: Amount
    current_ltv: Decimal
    total_outstanding: Amount
    liquidation_fee: Amount
    slippage_rate: Decimal
    estimated_liquidation: Amount
    estimated_surplus_deficit: Amount
    calculation_date: datetime

    @property
    def is_deficit(self) -> bool:
        return self.estimated_surplus_deficit.is_negative


@dataclass(frozen=True)
class EarlyRepaymentEstimate:
    """Amount and remaining term when repaying now."""

    total_term_days: int
    elapsed_days: int
    remaining_term_days: int
    full_interest_charged: bool
    interest: Amount
    total_repayment: Amount
    calculation_date: datetime


@traced_engine(
    "early_liquidation",
    "1.0",
    fingerprint_fields=("principal", "collateral", "exchange_rate", "calculation_date"),
)
def estimate_early_liquidation(
    *,
    principal: Amount,
    interest: Amount,
    premi: Amount,
    liquidation_fee: Amount,
    collateral: Amount,
    principal_currency: Currency,
    collateral_currency: Currency,
    exchange_rate: ExchangeRateSnapshot,
    policy: PlatformRiskPolicy,
    calculation_date: datetime,
    quote_precision: int = DEFAULT_QUOTE_PRECISION,
) -> EarlyLiquidationEstimate:
    """
    Estimate liquidating ``collateral`` at the current bid.

    estimated_liquidation = valuation * (1 - slippage);
    estimated_surplus_deficit = estimated_liquidation - total_outstanding.
    """
    total_outstanding = principal + interest + premi + liquidation_fee
    valuation = calculate_collateral_valuation(
        collateral=collateral,
        collateral_currency=collateral_currency,
        principal_currency=principal_currency,
        exchange_rate=exchange_rate,
        quote_precision=quote_precision,
    )
    current_ltv = calculate_ltv(principal, valuation.exact_units)

    slippage = policy.liquidation_slippage_rate
    with localcontext(UNIT_CONTEXT):
        liquidation_exact = valuation.exact_units * (_ONE - slippage)
        surplus_exact = liquidation_exact - Decimal(total_outstanding.units)

    currency = principal.currency
    return EarlyLiquidationEstimate(
        collateral=collateral,
        exchange_rate=valuation.exchange_rate,
        exchange_rate_id=valuation.exchange_rate_id,
        exchange_rate_date=valuation.exchange_rate_date,
        current_valuation=valuation.value,
        current_ltv=current_ltv,
        total_outstanding=total_outstanding,
        liquidation_fee=liquidation_fee,
        slippage_rate=slippage,
        estimated_liquidation=Amount(truncate_to_int(liquidation_exact), currency),
        estimated_surplus_deficit=Amount(truncate_to_int(surplus_exact), currency),
        calculation_date=calculation_date,
    )


@traced_engine(
    "early_repayment",
    "1.0",
    fingerprint_fields=("origination_date", "maturity_date", "calculation_date", "repayment"),
)
def estimate_early_repayment(
    *,
    origination_date: datetime,
    maturity_date: datetime,
    calculation_date: datetime,
    repayment: Amount,
    interest: Amount,
) -> EarlyRepaymentEstimate:
    """Remaining term and amount due; interest is never pro-rated."""
    total_days = ceil_days_between(origination_date, maturity_date)
    elapsed_days = ceil_days_between(origination_date, calculation_date)
    return EarlyRepaymentEstimate(
        total_term_days=total_days,
        elapsed_days=elapsed_days,
        remaining_term_days=max(0, total_days - elapsed_days),
        full_interest_charged=True,
        interest=interest,
        total_repayment=repayment,
        calculation_date=calculation_date,
    )


def calculate_liquidation_target_amount(
    repayment: Amount,
    premi: Amount,
    liquidation_fee: Amount,
) -> Amount:
    """Amount a liquidation must raise: repayment + premi + liquidation fee."""
    return repayment + premi + liquidation_fee
