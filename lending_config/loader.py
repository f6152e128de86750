"""
Configuration Loader (``lending_config.loader``).

Responsibility
--------------
Loads YAML configuration sets and parses them into ``LendingSettings`` and
``PlatformRiskPolicy`` instances.  The single runtime entry point is
``lending_config.get_active_config()``; this module is its tooling.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Depends only on
``lending_kernel.domain`` value types.  Kernel services receive the
parsed settings; they never load files themselves.

Invariants enforced
-------------------
* Missing required keys raise ``KeyError``; malformed values raise
  ``ValueError``.  No silent defaults for required fields.
* Decimal fields are read from their YAML text, never through float.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range policy -> ``InvalidRiskPolicyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from lending_config.schema import LendingSettings
from lending_kernel.domain.policy import PlatformRiskPolicy
from lending_kernel.domain.units import parse_decimal


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_datetime(value: Any) -> datetime:
    """
    Parse a timezone-aware datetime from YAML.

    Dates and naive datetimes are taken as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value)
    else:
        raise ValueError(f"Cannot parse datetime from {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _decimal(data: dict[str, Any], key: str) -> Decimal:
    value = data[key]
    if isinstance(value, float):
        # YAML reads 0.6 as a float; its source text is what the author meant.
        value = repr(value)
    return parse_decimal(value, key)


def parse_risk_policy(data: dict[str, Any]) -> PlatformRiskPolicy:
    """
    Parse a ``PlatformRiskPolicy`` from a dict.

    Required keys: version, effective_from, provision_rate, min_ltv_ratio,
    max_ltv_ratio.  Fee, slippage and interest bounds fall back to the
    policy defaults when absent.
    """
    kwargs: dict[str, Any] = {
        "version": int(data["version"]),
        "effective_from": parse_datetime(data["effective_from"]),
        "provision_rate": _decimal(data, "provision_rate"),
        "min_ltv_ratio": _decimal(data, "min_ltv_ratio"),
        "max_ltv_ratio": _decimal(data, "max_ltv_ratio"),
    }
    for optional in (
        "liquidation_fee_rate",
        "redelivery_fee_rate",
        "liquidation_slippage_rate",
        "min_interest_rate",
        "max_interest_rate",
    ):
        if optional in data:
            kwargs[optional] = _decimal(data, optional)
    return PlatformRiskPolicy(**kwargs)


def parse_settings(data: dict[str, Any]) -> LendingSettings:
    """
    Parse ``LendingSettings`` from a configuration-set dict.

    Required keys: environment, is_production.
    """
    is_production = data["is_production"]
    if not isinstance(is_production, bool):
        raise ValueError(f"is_production must be a boolean, got {is_production!r}")

    offers = data.get("offers", {})
    applications = data.get("applications", {})
    matching = data.get("matching", {})
    database = data.get("database", {})
    logging_cfg = data.get("logging", {})

    min_loan = str(offers.get("default_min_loan_amount", "1000"))
    parse_decimal(min_loan, "default_min_loan_amount")

    return LendingSettings(
        environment=str(data["environment"]),
        is_production=is_production,
        creation_date_tolerance=timedelta(
            seconds=int(offers.get("creation_date_tolerance_seconds", 3600))
        ),
        offer_expiry_days=int(offers.get("expiry_days", 30)),
        application_expiry_days=int(applications.get("expiry_days", 7)),
        default_min_loan_amount=min_loan,
        default_term_months=int(applications.get("default_term_months", 6)),
        quote_precision=int(data.get("quote_precision", 18)),
        match_retry_limit=int(matching.get("retry_limit", 3)),
        database_url=database.get("url"),
        log_level=str(logging_cfg.get("level", "INFO")),
        risk_policies=tuple(parse_risk_policy(p) for p in data.get("risk_policies", [])),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
