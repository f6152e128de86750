"""
Tests for the lending configuration loader.

Settings come from YAML sets; the production flag is explicit and typed.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
import yaml

from lending_config import get_active_config
from lending_config.loader import (
    compute_checksum,
    parse_datetime,
    parse_risk_policy,
    parse_settings,
)
from lending_kernel.exceptions import InvalidAmountError, InvalidRiskPolicyError


def _minimal(**overrides):
    data = {"environment": "test", "is_production": False}
    data.update(overrides)
    return data


class TestGetActiveConfig:

    def test_default_set(self):
        settings = get_active_config("default")
        assert settings.environment == "default"
        assert settings.is_production is False
        assert settings.offer_expiry_days == 30
        assert settings.application_expiry_days == 7
        assert settings.creation_date_tolerance == timedelta(hours=1)

    def test_default_policy(self):
        (policy,) = get_active_config("default").risk_policies
        assert policy.version == 1
        assert policy.provision_rate == Decimal("0.03")
        assert policy.min_ltv_ratio == Decimal("0.6")
        assert policy.max_ltv_ratio == Decimal("0.75")
        assert policy.liquidation_fee_rate == Decimal("0.02")
        assert policy.effective_from == datetime(2024, 1, 1, tzinfo=UTC)

    def test_production_set(self):
        settings = get_active_config("production")
        assert settings.is_production is True
        assert settings.match_retry_limit == 5

    def test_unknown_environment(self):
        with pytest.raises(FileNotFoundError):
            get_active_config("staging-does-not-exist")

    def test_custom_directory(self, tmp_path):
        (tmp_path / "local.yaml").write_text(
            yaml.safe_dump(_minimal(environment="local", offers={"expiry_days": 5}))
        )
        settings = get_active_config("local", config_dir=tmp_path)
        assert settings.environment == "local"
        assert settings.offer_expiry_days == 5

    def test_emits_config_trace(self, captured_logs):
        get_active_config("default")
        traces = [r for r in captured_logs() if r["message"] == "LENDING_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["environment"] == "default"


class TestParseSettings:

    def test_missing_production_flag(self):
        with pytest.raises(KeyError):
            parse_settings({"environment": "test"})

    def test_missing_environment(self):
        with pytest.raises(KeyError):
            parse_settings({"is_production": False})

    def test_production_flag_must_be_boolean(self):
        with pytest.raises(ValueError):
            parse_settings(_minimal(is_production="yes"))

    def test_defaults(self):
        settings = parse_settings(_minimal())
        assert settings.default_min_loan_amount == "1000"
        assert settings.default_term_months == 6
        assert settings.risk_policies == ()

    def test_bad_min_loan_amount(self):
        with pytest.raises(InvalidAmountError):
            parse_settings(_minimal(offers={"default_min_loan_amount": "lots"}))

    def test_invalid_expiry(self):
        with pytest.raises(ValueError):
            parse_settings(_minimal(offers={"expiry_days": 0}))


class TestParseRiskPolicy:

    def test_float_values_read_as_written(self):
        policy = parse_risk_policy(
            {
                "version": 2,
                "effective_from": "2025-01-01",
                "provision_rate": 0.03,
                "min_ltv_ratio": 0.6,
                "max_ltv_ratio": 0.75,
            }
        )
        assert policy.provision_rate == Decimal("0.03")
        assert policy.min_ltv_ratio == Decimal("0.6")

    def test_invalid_policy_rejected(self):
        with pytest.raises(InvalidRiskPolicyError):
            parse_risk_policy(
                {
                    "version": 2,
                    "effective_from": "2025-01-01",
                    "provision_rate": "0.03",
                    "min_ltv_ratio": "0.9",
                    "max_ltv_ratio": "0.75",
                }
            )

    def test_naive_datetimes_are_utc(self):
        assert parse_datetime("2025-01-01T00:00:00") == datetime(2025, 1, 1, tzinfo=UTC)


class TestChecksum:

    def test_deterministic_and_order_independent(self):
        a = compute_checksum({"a": 1, "b": [1, 2]})
        b = compute_checksum({"b": [1, 2], "a": 1})
        assert a == b
        assert a != compute_checksum({"a": 2, "b": [1, 2]})
