"""Tests for currency, exchange-rate and risk-policy reference data."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from lending_kernel.domain.policy import PlatformRiskPolicy
from lending_kernel.exceptions import (
    CurrencyNotSupportedError,
    ExchangeRateNotFoundError,
    InvalidExchangeRateError,
    InvalidRiskPolicyError,
    RiskPolicyNotFoundError,
)
from lending_kernel.services import ReferenceDataService
from tests.support import ETH, USD, USDT


class TestCurrencies:

    def test_registered_currency_resolves(self, reference_service):
        currency = reference_service.get_currency(USDT.key.blockchain_key, USDT.key.token_id)
        assert currency.decimals == 18
        assert currency.symbol == "USDT"

    def test_loan_bounds_persist(self, reference_service):
        usdt = reference_service.get_currency(USDT.key.blockchain_key, USDT.key.token_id)
        eth = reference_service.require_currency(ETH.key)
        assert usdt.min_loan_principal_amount == USDT.min_loan_principal_amount
        assert usdt.max_loan_principal_amount == USDT.max_loan_principal_amount
        assert eth.min_loan_principal_amount == 0
        assert eth.max_loan_principal_amount is None

    def test_unknown_currency(self, reference_service):
        with pytest.raises(CurrencyNotSupportedError):
            reference_service.get_currency("eip155:1", "erc20:unknown")


class TestExchangeRates:

    def test_latest_rate_for_collateral(self, reference_service):
        rate = reference_service.latest_exchange_rate(ETH.key)
        assert rate.bid_decimal() == Decimal(2000)

    def test_newer_observation_wins(self, reference_service, deterministic_clock):
        reference_service.record_exchange_rate(
            base=ETH.key,
            quote=USD.key,
            bid_price=2500 * 10**18,
            ask_price=2501 * 10**18,
            source="test-feed",
            source_date=deterministic_clock.now(),
        )
        rate = reference_service.latest_exchange_rate(ETH.key)
        assert rate.bid_decimal() == Decimal(2500)

    def test_as_of_excludes_future_observations(self, reference_service, deterministic_clock):
        reference_service.record_exchange_rate(
            base=ETH.key,
            quote=USD.key,
            bid_price=9000 * 10**18,
            ask_price=9001 * 10**18,
            source="test-feed",
            source_date=deterministic_clock.now() + timedelta(hours=2),
        )
        rate = reference_service.latest_exchange_rate(
            ETH.key, as_of=deterministic_clock.now()
        )
        assert rate.bid_decimal() == Decimal(2000)

    def test_missing_rate(self, reference_service):
        with pytest.raises(ExchangeRateNotFoundError):
            reference_service.latest_exchange_rate(USDT.key)

    def test_non_positive_price_rejected(self, reference_service, deterministic_clock):
        with pytest.raises(InvalidExchangeRateError):
            reference_service.record_exchange_rate(
                base=ETH.key,
                quote=USD.key,
                bid_price=0,
                ask_price=1,
                source="test-feed",
                source_date=deterministic_clock.now(),
            )


class TestRiskPolicy:

    def test_seeded_policy_is_effective(self, reference_service):
        policy = reference_service.effective_risk_policy()
        assert policy.version == 1
        assert policy.provision_rate == Decimal("0.03")

    def test_new_version_takes_over_at_its_effective_date(
        self, reference_service, deterministic_clock
    ):
        reference_service.publish_risk_policy(
            PlatformRiskPolicy(
                version=2,
                effective_from=deterministic_clock.now() + timedelta(days=1),
                provision_rate=Decimal("0.04"),
                min_ltv_ratio=Decimal("0.5"),
                max_ltv_ratio=Decimal("0.7"),
            )
        )
        assert reference_service.effective_risk_policy().version == 1
        deterministic_clock.advance_days(2)
        assert reference_service.effective_risk_policy().version == 2

    def test_version_is_never_republished(self, reference_service, test_policy):
        with pytest.raises(InvalidRiskPolicyError):
            reference_service.publish_risk_policy(test_policy)

    def test_seeding_is_idempotent(self, reference_service, settings):
        assert reference_service.seed_from_settings(settings) == 0

    def test_no_policy_before_first_version(self, session, deterministic_clock, settings):
        service = ReferenceDataService(session, deterministic_clock, settings)
        with pytest.raises(RiskPolicyNotFoundError):
            service.effective_risk_policy(datetime(2023, 1, 1, tzinfo=UTC))
