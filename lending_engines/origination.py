"""
Loan Origination Calculator.

Responsibility:
    Computes the full economic schedule of a loan at the moment it
    originates: interest, origination fee (premi), liquidation fee,
    repayment total, redelivery fee and amount, minimum collateral
    valuation, margin-call LTV and maturity date.

Architecture position:
    Engines -- pure calculation layer, zero I/O, total on valid inputs.

Invariants enforced:
    - interest, premi, liquidation fee and redelivery fee are floored to
      integer smallest units; none exceeds its unrounded value.
    - repayment = principal + interest + premi.
    - redelivery = repayment - redelivery fee.
    - min collateral valuation = repayment + liquidation fee.
    - margin-call LTV = principal / min collateral valuation, unrounded.
    - Fee rates come from the PlatformRiskPolicy, never from literals.
    - maturity = origination date + term months, day clamped to month end.

Failure modes:
    - InvalidAmountError for a non-positive principal or a negative rate.
    - InvalidTermError for a non-positive term.
    - CurrencyMismatchError when the matched collateral valuation is not
      in the principal currency.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, localcontext

from lending_engines.tracer import traced_engine
from lending_kernel.domain.dates import add_months
from lending_kernel.domain.policy import PlatformRiskPolicy
from lending_kernel.domain.units import UNIT_CONTEXT, floor_to_int, parse_decimal
from lending_kernel.domain.values import Amount
from lending_kernel.exceptions import (
    CalculationInvariantError,
    CurrencyMismatchError,
    InvalidAmountError,
    InvalidTermError,
)


@dataclass(frozen=True)
class LoanOriginationSchedule:
    """Economic schedule of a loan at origination."""

    principal: Amount
    interest_rate: Decimal
    provision_rate: Decimal
    term_in_months: int
    interest: Amount
    premi: Amount
    liquidation_fee: Amount
    repayment: Amount
    redelivery_fee: Amount
    redelivery: Amount
    min_collateral_valuation: Amount
    margin_call_ltv: Decimal
    collateral: Amount
    matched_ltv_ratio: Decimal
    matched_collateral_valuation: Amount
    policy_version: int
    origination_date: datetime
    maturity_date: datetime


def _floor_fraction(units: int, rate: Decimal) -> int:
    with localcontext(UNIT_CONTEXT):
        return floor_to_int(Decimal(units) * rate)


@traced_engine(
    "loan_origination",
    "1.0",
    fingerprint_fields=(
        "principal",
        "interest_rate",
        "term_in_months",
        "collateral",
        "origination_date",
    ),
)
def calculate_loan_origination(
    *,
    principal: Amount,
    interest_rate: Decimal,
    term_in_months: int,
    collateral: Amount,
    matched_ltv_ratio: Decimal,
    matched_collateral_valuation: Amount,
    policy: PlatformRiskPolicy,
    origination_date: datetime,
    provision_rate: Decimal | None = None,
) -> LoanOriginationSchedule:
    """
    Economic schedule for a matched principal.

    ``provision_rate`` defaults to the policy's; applications pass the rate
    they were sized with so the premi matches the quoted provision.

    Example (principal 10 units at 18 decimals, rate 0.125, provision 0.03):
        interest 1.25, premi 0.3, repayment 11.55, liquidation fee 0.2,
        minimum collateral valuation 11.75 (all x 10^18).
    """
    if principal.units <= 0:
        raise InvalidAmountError("principal_amount", principal.units, "must be positive")
    if isinstance(term_in_months, bool) or not isinstance(term_in_months, int) or term_in_months <= 0:
        raise InvalidTermError(term_in_months)
    if matched_collateral_valuation.currency != principal.currency:
        raise CurrencyMismatchError(
            str(principal.currency), str(matched_collateral_valuation.currency)
        )
    rate = parse_decimal(interest_rate, "interest_rate")
    if rate < 0:
        raise InvalidAmountError("interest_rate", interest_rate, "cannot be negative")
    provision = policy.provision_rate if provision_rate is None else parse_decimal(
        provision_rate, "provision_rate"
    )

    currency = principal.currency
    interest = _floor_fraction(principal.units, rate)
    premi = _floor_fraction(principal.units, provision)
    liquidation_fee = _floor_fraction(principal.units, policy.liquidation_fee_rate)
    repayment = principal.units + interest + premi
    redelivery_fee = _floor_fraction(interest, policy.redelivery_fee_rate)
    redelivery = repayment - redelivery_fee
    min_valuation = repayment + liquidation_fee

    if min_valuation <= 0:
        raise CalculationInvariantError(
            "margin_call_ltv", f"non-positive minimum collateral valuation {min_valuation}"
        )
    with localcontext(UNIT_CONTEXT):
        margin_call_ltv = Decimal(principal.units) / Decimal(min_valuation)

    return LoanOriginationSchedule(
        principal=principal,
        interest_rate=rate,
        provision_rate=provision,
        term_in_months=term_in_months,
        interest=Amount(interest, currency),
        premi=Amount(premi, currency),
        liquidation_fee=Amount(liquidation_fee, currency),
        repayment=Amount(repayment, currency),
        redelivery_fee=Amount(redelivery_fee, currency),
        redelivery=Amount(redelivery, currency),
        min_collateral_valuation=Amount(min_valuation, currency),
        margin_call_ltv=margin_call_ltv,
        collateral=collateral,
        matched_ltv_ratio=matched_ltv_ratio,
        matched_collateral_valuation=matched_collateral_valuation,
        policy_version=policy.version,
        origination_date=origination_date,
        maturity_date=add_months(origination_date, term_in_months),
    )
