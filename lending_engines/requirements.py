"""
Loan Requirement Calculator and Loan Application Sizing.

Responsibility:
    Given a principal, the principal/collateral currencies, the effective
    risk policy and an exchange rate, computes the provision (origination
    fee) and the collateral a borrower must deposit.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Callers look up the
    currencies, rate and policy and pass them in; nothing here reads the
    database or the clock.

Invariants enforced:
    - provision = floor(principal * provision_rate): never above the
      unrounded value.
    - required collateral = ceil(principal_human / (min_ltv * bid)) in whole
      collateral units: never below the unrounded value, so rounding cannot
      under-collateralize a loan.
    - Requirement quotes and application sizing share ``_size_collateral``;
      there is exactly one rounding path.

Failure modes:
    - InvalidAmountError for a non-positive principal.
    - InvalidTermError for a non-positive term.
    - CurrencyMismatchError when the principal amount or rate base does not
      match the supplied currencies.
    - CalculationInvariantError if the LTV/rate denominator is not positive
      (unreachable with a validated policy and rate).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, localcontext
from uuid import UUID

from lending_engines.tracer import traced_engine
from lending_kernel.domain.dates import add_days
from lending_kernel.domain.policy import PlatformRiskPolicy
from lending_kernel.domain.units import (
    CEILING_CONTEXT,
    UNIT_CONTEXT,
    ceil_to_int,
    floor_to_int,
    to_human,
    to_units,
)
from lending_kernel.domain.values import (
    DEFAULT_QUOTE_PRECISION,
    Amount,
    Currency,
    ExchangeRateSnapshot,
)
from lending_kernel.exceptions import (
    CalculationInvariantError,
    CurrencyMismatchError,
    InvalidAmountError,
    InvalidTermError,
)

DEFAULT_EXPIRATION_DAYS = 30

_ZERO = Decimal("0")


@dataclass(frozen=True)
class LoanRequirements:
    """Collateral and fee requirements for a principal."""

    principal: Amount
    provision_amount: Amount
    required_collateral: Amount
    required_collateral_human: Decimal
    provision_rate: Decimal
    min_ltv_ratio: Decimal
    max_ltv_ratio: Decimal
    policy_version: int
    exchange_rate: Decimal
    exchange_rate_id: UUID | None
    exchange_rate_date: datetime
    term_in_months: int
    calculation_date: datetime
    expiration_date: datetime


@dataclass(frozen=True)
class ApplicationSizing:
    """Provision and collateral deposit computed for a loan application."""

    principal: Amount
    provision_amount: Amount
    collateral_deposit_amount: Amount
    provision_rate: Decimal
    min_ltv_ratio: Decimal
    max_ltv_ratio: Decimal
    policy_version: int
    exchange_rate: Decimal
    exchange_rate_id: UUID | None
    exchange_rate_date: datetime
    term_in_months: int
    calculation_date: datetime
    expiration_date: datetime


@dataclass(frozen=True)
class _CollateralSizing:
    provision: Amount
    collateral: Amount
    collateral_human: Decimal
    rate: Decimal


def _size_collateral(
    principal: Amount,
    principal_currency: Currency,
    collateral_currency: Currency,
    policy: PlatformRiskPolicy,
    exchange_rate: ExchangeRateSnapshot,
    term_in_months: int,
    quote_precision: int,
) -> _CollateralSizing:
    if principal.currency != principal_currency.key:
        raise CurrencyMismatchError(str(principal_currency.key), str(principal.currency))
    if exchange_rate.base != collateral_currency.key:
        raise CurrencyMismatchError(str(collateral_currency.key), str(exchange_rate.base))
    if principal.units <= 0:
        raise InvalidAmountError("principal_amount", principal.units, "must be positive")
    if isinstance(term_in_months, bool) or not isinstance(term_in_months, int) or term_in_months <= 0:
        raise InvalidTermError(term_in_months)

    with localcontext(UNIT_CONTEXT):
        provision_units = floor_to_int(Decimal(principal.units) * policy.provision_rate)
        principal_human = to_human(principal.units, principal_currency.decimals)
        rate = exchange_rate.bid_decimal(quote_precision)
        denominator = policy.min_ltv_ratio * rate

    if denominator <= _ZERO:
        raise CalculationInvariantError(
            "required_collateral",
            f"min_ltv_ratio * rate = {denominator} is not positive",
        )

    with localcontext(CEILING_CONTEXT):
        collateral_human = Decimal(ceil_to_int(principal_human / denominator))

    return _CollateralSizing(
        provision=Amount(provision_units, principal.currency),
        collateral=Amount(
            to_units(collateral_human, collateral_currency.decimals),
            collateral_currency.key,
        ),
        collateral_human=collateral_human,
        rate=rate,
    )


@traced_engine(
    "loan_requirements",
    "1.0",
    fingerprint_fields=("principal", "term_in_months", "calculation_date"),
)
def calculate_loan_requirements(
    *,
    principal: Amount,
    principal_currency: Currency,
    collateral_currency: Currency,
    policy: PlatformRiskPolicy,
    exchange_rate: ExchangeRateSnapshot,
    term_in_months: int,
    calculation_date: datetime,
    expiration_date: datetime | None = None,
    expiration_days: int = DEFAULT_EXPIRATION_DAYS,
    quote_precision: int = DEFAULT_QUOTE_PRECISION,
) -> LoanRequirements:
    """
    Required collateral and provision for ``principal``.

    Principal 10 (human) at min LTV 0.6 and bid 2000 needs
    ceil(10 / 1200) = 1 whole collateral unit.
    """
    sizing = _size_collateral(
        principal,
        principal_currency,
        collateral_currency,
        policy,
        exchange_rate,
        term_in_months,
        quote_precision,
    )
    return LoanRequirements(
        principal=principal,
        provision_amount=sizing.provision,
        required_collateral=sizing.collateral,
        required_collateral_human=sizing.collateral_human,
        provision_rate=policy.provision_rate,
        min_ltv_ratio=policy.min_ltv_ratio,
        max_ltv_ratio=policy.max_ltv_ratio,
        policy_version=policy.version,
        exchange_rate=sizing.rate,
        exchange_rate_id=exchange_rate.id,
        exchange_rate_date=exchange_rate.source_date,
        term_in_months=term_in_months,
        calculation_date=calculation_date,
        expiration_date=expiration_date or add_days(calculation_date, expiration_days),
    )


@traced_engine(
    "application_sizing",
    "1.0",
    fingerprint_fields=("principal", "term_in_months", "calculation_date"),
)
def size_loan_application(
    *,
    principal: Amount,
    principal_currency: Currency,
    collateral_currency: Currency,
    policy: PlatformRiskPolicy,
    exchange_rate: ExchangeRateSnapshot,
    term_in_months: int,
    calculation_date: datetime,
    expiration_date: datetime | None = None,
    expiration_days: int = DEFAULT_EXPIRATION_DAYS,
    quote_precision: int = DEFAULT_QUOTE_PRECISION,
) -> ApplicationSizing:
    """Provision and collateral deposit for a new application."""
    sizing = _size_collateral(
        principal,
        principal_currency,
        collateral_currency,
        policy,
        exchange_rate,
        term_in_months,
        quote_precision,
    )
    return ApplicationSizing(
        principal=principal,
        provision_amount=sizing.provision,
        collateral_deposit_amount=sizing.collateral,
        provision_rate=policy.provision_rate,
        min_ltv_ratio=policy.min_ltv_ratio,
        max_ltv_ratio=policy.max_ltv_ratio,
        policy_version=policy.version,
        exchange_rate=sizing.rate,
        exchange_rate_id=exchange_rate.id,
        exchange_rate_date=exchange_rate.source_date,
        term_in_months=term_in_months,
        calculation_date=calculation_date,
        expiration_date=expiration_date or add_days(calculation_date, expiration_days),
    )
