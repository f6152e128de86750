"""
LendingSettings schema.

Defines the typed runtime settings of the lending core.  YAML sets are
parsed into these types by the loader; services receive a
``LendingSettings`` instance through their constructor and never read
files, environment variables or process-wide flags themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from lending_kernel.domain.policy import PlatformRiskPolicy
from lending_kernel.domain.values import DEFAULT_QUOTE_PRECISION


@dataclass(frozen=True)
class LendingSettings:
    """
    Runtime settings for offers, applications, matching and persistence.

    Contract:
        ``is_production`` is the only switch for production-only checks
        (currently the creation-date tolerance window on offers).
    """

    environment: str = "default"
    is_production: bool = False
    creation_date_tolerance: timedelta = timedelta(hours=1)
    offer_expiry_days: int = 30
    application_expiry_days: int = 7
    default_min_loan_amount: str = "1000"
    default_term_months: int = 6
    quote_precision: int = DEFAULT_QUOTE_PRECISION
    match_retry_limit: int = 3
    database_url: str | None = None
    log_level: str = "INFO"
    risk_policies: tuple[PlatformRiskPolicy, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.offer_expiry_days <= 0:
            raise ValueError("offer_expiry_days must be positive")
        if self.application_expiry_days <= 0:
            raise ValueError("application_expiry_days must be positive")
        if self.default_term_months <= 0:
            raise ValueError("default_term_months must be positive")
        if self.match_retry_limit < 1:
            raise ValueError("match_retry_limit must be at least 1")
        if self.quote_precision < 0:
            raise ValueError("quote_precision cannot be negative")
        if self.creation_date_tolerance < timedelta(0):
            raise ValueError("creation_date_tolerance cannot be negative")
