"""
Tests for the early-exit calculator and collateral valuation.

A deficit is reported as a negative surplus, never raised.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from lending_engines.early_exit import (
    calculate_liquidation_target_amount,
    estimate_early_liquidation,
    estimate_early_repayment,
)
from lending_engines.valuation import calculate_collateral_valuation, calculate_ltv
from lending_kernel.domain.policy import PlatformRiskPolicy
from lending_kernel.domain.values import Amount, Currency, CurrencyKey, ExchangeRateSnapshot
from lending_kernel.exceptions import CalculationInvariantError, CurrencyMismatchError

E18 = 10**18
NOW = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)
USDT = Currency(CurrencyKey("eip155:56", "bep20:usdt"), 18, "USDT")
ETH = Currency(CurrencyKey("eip155:1", "slip44:60"), 18, "ETH")
USD = CurrencyKey("iso4217", "usd")

POLICY = PlatformRiskPolicy(
    version=1,
    effective_from=datetime(2024, 1, 1, tzinfo=UTC),
    provision_rate=Decimal("0.03"),
    min_ltv_ratio=Decimal("0.6"),
    max_ltv_ratio=Decimal("0.75"),
    liquidation_slippage_rate=Decimal("0.02"),
)


def _rate(bid_units: int) -> ExchangeRateSnapshot:
    return ExchangeRateSnapshot(
        base=ETH.key,
        quote=USD,
        bid_price=bid_units,
        ask_price=bid_units + 1,
        source="test-feed",
        source_date=NOW,
    )


def _liquidation(bid_units: int, collateral_units: int = E18):
    return estimate_early_liquidation(
        principal=Amount(10 * E18, USDT.key),
        interest=Amount(1250000000000000000, USDT.key),
        premi=Amount(300000000000000000, USDT.key),
        liquidation_fee=Amount(200000000000000000, USDT.key),
        collateral=Amount(collateral_units, ETH.key),
        principal_currency=USDT,
        collateral_currency=ETH,
        exchange_rate=_rate(bid_units),
        policy=POLICY,
        calculation_date=NOW,
    )


class TestCollateralValuation:

    def test_uses_bid_price(self):
        valuation = calculate_collateral_valuation(
            collateral=Amount(E18 // 2, ETH.key),
            collateral_currency=ETH,
            principal_currency=USDT,
            exchange_rate=_rate(2000 * E18),
        )
        assert valuation.value == Amount(1000 * E18, USDT.key)
        assert valuation.exchange_rate == Decimal(2000)

    def test_value_truncates(self):
        valuation = calculate_collateral_valuation(
            collateral=Amount(1, ETH.key),
            collateral_currency=ETH,
            principal_currency=Currency(USDT.key, 6),
            exchange_rate=_rate(2000 * E18),
        )
        assert valuation.value.units == 0
        assert valuation.exact_units > 0

    def test_collateral_currency_mismatch(self):
        with pytest.raises(CurrencyMismatchError):
            calculate_collateral_valuation(
                collateral=Amount(E18, USDT.key),
                collateral_currency=ETH,
                principal_currency=USDT,
                exchange_rate=_rate(2000 * E18),
            )

    def test_ltv(self):
        assert calculate_ltv(Amount(10, USDT.key), Amount(40, USDT.key)) == Decimal("0.25")
        with pytest.raises(CalculationInvariantError):
            calculate_ltv(Amount(10, USDT.key), Amount(0, USDT.key))


class TestEarlyLiquidation:

    def test_surplus_at_healthy_price(self):
        estimate = _liquidation(2000 * E18)
        assert estimate.total_outstanding.units == 11750000000000000000
        assert estimate.current_valuation.units == 2000 * E18
        assert estimate.estimated_liquidation.units == 1960 * E18
        assert estimate.estimated_surplus_deficit.units == 1960 * E18 - 11750000000000000000
        assert not estimate.is_deficit

    def test_deficit_is_reported_not_raised(self):
        estimate = _liquidation(11 * E18)
        # 11 * 0.98 = 10.78 against 11.75 outstanding
        assert estimate.estimated_liquidation.units == 10780000000000000000
        assert estimate.estimated_surplus_deficit.units == -970000000000000000
        assert estimate.is_deficit

    def test_current_ltv(self):
        estimate = _liquidation(20 * E18)
        assert estimate.current_ltv == Decimal("0.5")

    def test_slippage_comes_from_policy(self):
        assert _liquidation(2000 * E18).slippage_rate == Decimal("0.02")


class TestEarlyRepayment:

    def test_day_counts(self):
        maturity = datetime(2025, 7, 15, 12, 0, tzinfo=UTC)
        estimate = estimate_early_repayment(
            origination_date=NOW,
            maturity_date=maturity,
            calculation_date=NOW + timedelta(days=10),
            repayment=Amount(11550000000000000000, USDT.key),
            interest=Amount(1250000000000000000, USDT.key),
        )
        assert estimate.total_term_days == 181
        assert estimate.elapsed_days == 10
        assert estimate.remaining_term_days == 171

    def test_full_interest_charged(self):
        estimate = estimate_early_repayment(
            origination_date=NOW,
            maturity_date=NOW + timedelta(days=30),
            calculation_date=NOW + timedelta(days=1),
            repayment=Amount(11550000000000000000, USDT.key),
            interest=Amount(1250000000000000000, USDT.key),
        )
        assert estimate.full_interest_charged
        assert estimate.total_repayment.units == 11550000000000000000

    def test_remaining_never_negative(self):
        estimate = estimate_early_repayment(
            origination_date=NOW,
            maturity_date=NOW + timedelta(days=30),
            calculation_date=NOW + timedelta(days=45),
            repayment=Amount(1, USDT.key),
            interest=Amount(0, USDT.key),
        )
        assert estimate.remaining_term_days == 0


class TestLiquidationTarget:

    def test_target_amount(self):
        target = calculate_liquidation_target_amount(
            Amount(11550000000000000000, USDT.key),
            Amount(300000000000000000, USDT.key),
            Amount(200000000000000000, USDT.key),
        )
        assert target.units == 12050000000000000000
