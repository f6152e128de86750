"""
Domain layer -- pure value objects, lifecycles and calendar helpers.

Nothing in this package performs I/O; services feed it data and persist
what it returns.
"""

from lending_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from lending_kernel.domain.lifecycle import (
    APPLICATION_WORKFLOW,
    LOAN_WORKFLOW,
    OFFER_WORKFLOW,
    ApplicationStatus,
    ApplicationView,
    LoanStatus,
    LoanView,
    OfferStatus,
    OfferView,
    application_view,
    loan_view,
    offer_view,
)
from lending_kernel.domain.policy import PlatformRiskPolicy, select_effective_policy
from lending_kernel.domain.values import Amount, Currency, CurrencyKey, ExchangeRateSnapshot

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "CurrencyKey",
    "Currency",
    "Amount",
    "ExchangeRateSnapshot",
    "PlatformRiskPolicy",
    "select_effective_policy",
    "OfferStatus",
    "OfferView",
    "ApplicationStatus",
    "ApplicationView",
    "LoanStatus",
    "LoanView",
    "OFFER_WORKFLOW",
    "APPLICATION_WORKFLOW",
    "LOAN_WORKFLOW",
    "offer_view",
    "application_view",
    "loan_view",
]
