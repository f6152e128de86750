"""
PlatformRiskPolicy -- versioned snapshot of the platform's risk settings.

Responsibility:
    Holds the provision rate, LTV bounds, fee rates and interest bounds
    every calculation reads, and selects the snapshot effective at a
    reference date.

Architecture position:
    Kernel > Domain -- pure value object, zero I/O.  Persisted by
    ``lending_kernel.models.platform_policy`` and loaded from YAML by
    ``lending_config``.

Invariants enforced:
    - Every rate is a Decimal in [0, 1].
    - 0 < min_ltv_ratio <= max_ltv_ratio <= 1, so LTV denominators are
      always positive.
    - min_interest_rate <= max_interest_rate.
    - Snapshots are never edited; a change is a new version.

Failure modes:
    - InvalidRiskPolicyError on construction with out-of-range fields.
    - RateOutOfPolicyBoundsError from ``check_interest_rate``.
    - RiskPolicyNotFoundError from ``select_effective_policy`` when no
      snapshot is effective.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from lending_kernel.domain.units import parse_decimal
from lending_kernel.exceptions import (
    InvalidAmountError,
    InvalidRiskPolicyError,
    RateOutOfPolicyBoundsError,
    RiskPolicyNotFoundError,
)

_ZERO = Decimal("0")
_ONE = Decimal("1")

_RATE_FIELDS = (
    "provision_rate",
    "min_ltv_ratio",
    "max_ltv_ratio",
    "liquidation_fee_rate",
    "redelivery_fee_rate",
    "liquidation_slippage_rate",
    "min_interest_rate",
    "max_interest_rate",
)


@dataclass(frozen=True)
class PlatformRiskPolicy:
    """A single, immutable version of the platform risk policy."""

    version: int
    effective_from: datetime
    provision_rate: Decimal
    min_ltv_ratio: Decimal
    max_ltv_ratio: Decimal
    liquidation_fee_rate: Decimal = Decimal("0.02")
    redelivery_fee_rate: Decimal = Decimal("0.01")
    liquidation_slippage_rate: Decimal = Decimal("0.02")
    min_interest_rate: Decimal = Decimal("0")
    max_interest_rate: Decimal = Decimal("1")

    def __post_init__(self) -> None:
        for name in _RATE_FIELDS:
            raw = getattr(self, name)
            try:
                value = parse_decimal(raw, name)
            except InvalidAmountError as e:
                raise InvalidRiskPolicyError(self.version, f"{name} is not a decimal") from e
            if value < _ZERO or value > _ONE:
                raise InvalidRiskPolicyError(self.version, f"{name}={value} outside [0, 1]")
            object.__setattr__(self, name, value)

        if self.min_ltv_ratio <= _ZERO:
            raise InvalidRiskPolicyError(self.version, "min_ltv_ratio must be positive")
        if self.min_ltv_ratio > self.max_ltv_ratio:
            raise InvalidRiskPolicyError(
                self.version, "min_ltv_ratio cannot exceed max_ltv_ratio"
            )
        if self.min_interest_rate > self.max_interest_rate:
            raise InvalidRiskPolicyError(
                self.version, "min_interest_rate cannot exceed max_interest_rate"
            )
        if self.effective_from.tzinfo is None:
            raise InvalidRiskPolicyError(self.version, "effective_from must be timezone-aware")

    def check_interest_rate(self, rate: Decimal, field: str = "interest_rate") -> Decimal:
        """Return the rate if within policy bounds, else raise."""
        value = parse_decimal(rate, field)
        if value < self.min_interest_rate or value > self.max_interest_rate:
            raise RateOutOfPolicyBoundsError(
                field, value, self.min_interest_rate, self.max_interest_rate
            )
        return value

    def as_dict(self) -> dict[str, str | int]:
        """Log- and checksum-friendly representation."""
        data: dict[str, str | int] = {"version": self.version}
        data["effective_from"] = self.effective_from.isoformat()
        for name in _RATE_FIELDS:
            data[name] = str(getattr(self, name))
        return data


def select_effective_policy(
    policies: Iterable[PlatformRiskPolicy],
    as_of: datetime,
) -> PlatformRiskPolicy:
    """
    Latest-effective snapshot as of ``as_of``.

    Ties on ``effective_from`` resolve to the higher version.
    """
    candidates = [p for p in policies if p.effective_from <= as_of]
    if not candidates:
        raise RiskPolicyNotFoundError(as_of.isoformat())
    return max(candidates, key=lambda p: (p.effective_from, p.version))
