"""
Module: lending_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    lending calculators.  This is the canonical import surface for the
    kernel services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import ``lending_kernel.domain`` and ``lending_kernel.exceptions``
    (and sibling engine modules).  MUST NOT import kernel services,
    selectors, models or the database layer.

Invariants enforced:
    - Purity: engines NEVER read the clock.  Calculation, origination and
      request dates are explicit parameters supplied by the caller.
    - Decimal-only arithmetic under ``UNIT_CONTEXT``; floats are rejected.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every calculator invocation is traced via ``@traced_engine`` (see
    ``lending_engines.tracer``), emitting LENDING_ENGINE_TRACE records with
    engine name, version, input fingerprint and duration.

Usage:
    from lending_engines.requirements import calculate_loan_requirements
    from lending_engines.origination import calculate_loan_origination
    from lending_engines.early_exit import estimate_early_liquidation
"""

from lending_engines.early_exit import (
    EarlyLiquidationEstimate,
    EarlyRepaymentEstimate,
    calculate_liquidation_target_amount,
    estimate_early_liquidation,
    estimate_early_repayment,
)
from lending_engines.origination import LoanOriginationSchedule, calculate_loan_origination
from lending_engines.requirements import (
    ApplicationSizing,
    LoanRequirements,
    calculate_loan_requirements,
    size_loan_application,
)
from lending_engines.tracer import compute_input_fingerprint, traced_engine
from lending_engines.units import from_smallest_unit, to_smallest_unit
from lending_engines.valuation import (
    CollateralValuation,
    calculate_collateral_valuation,
    calculate_ltv,
)

__all__ = [
    # Units
    "to_smallest_unit",
    "from_smallest_unit",
    # Requirements
    "LoanRequirements",
    "ApplicationSizing",
    "calculate_loan_requirements",
    "size_loan_application",
    # Origination
    "LoanOriginationSchedule",
    "calculate_loan_origination",
    # Early exit
    "EarlyLiquidationEstimate",
    "EarlyRepaymentEstimate",
    "estimate_early_liquidation",
    "estimate_early_repayment",
    "calculate_liquidation_target_amount",
    # Valuation
    "CollateralValuation",
    "calculate_collateral_valuation",
    "calculate_ltv",
    # Tracing
    "traced_engine",
    "compute_input_fingerprint",
]
