"""
Lifecycle state machines for offers, applications and loans.

Responsibility
--------------
Declares the closed set of states for each lending entity, the legal
transitions between them, and the exhaustive mapping from internal
states to the narrower statuses exposed to API consumers.

Architecture position
---------------------
**Kernel domain layer** -- pure declarations, ZERO I/O.  Services call
``<WORKFLOW>.apply(current, action)`` inside their transactional
boundary and persist the returned state.

Invariants enforced
-------------------
* Every enum member appears in its workflow (checked at import).
* Offer ``EXPIRED`` and ``CLOSED`` stay distinct internally and both
  present as ``CLOSED``.
* Application cancellation is only legal from ``PENDING_COLLATERAL``;
  a second cancel raises ``IllegalStateTransitionError``.
* Loan early-exit requests pass through a ``PENDING_*`` state before the
  settlement collaborator reaches the terminal state.

Failure modes
-------------
* ``IllegalStateTransitionError`` from ``Workflow.apply``.
"""

from __future__ import annotations

from enum import Enum
from typing import assert_never

from lending_kernel.domain.workflow import Guard, Transition, Workflow
from lending_kernel.logging_config import get_logger

logger = get_logger("domain.lifecycle")


# =============================================================================
# Loan offer
# =============================================================================


class OfferStatus(str, Enum):
    FUNDING = "funding"
    PUBLISHED = "published"
    CLOSED = "closed"
    EXPIRED = "expired"


class OfferView(str, Enum):
    """Offer status as presented to API consumers."""
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    CLOSED = "CLOSED"


FUNDING_FULLY_PAID = Guard(
    "funding_fully_paid", "Funding invoice paid amount reaches the offered amount"
)

OFFER_WORKFLOW: Workflow[OfferStatus] = Workflow(
    name="loan_offer",
    description="Lender offer from funding through publication to closure",
    state_type=OfferStatus,
    initial_state=OfferStatus.FUNDING,
    states=tuple(OfferStatus),
    transitions=(
        Transition(OfferStatus.FUNDING, OfferStatus.PUBLISHED, "funding_paid", FUNDING_FULLY_PAID),
        Transition(OfferStatus.FUNDING, OfferStatus.CLOSED, "close"),
        Transition(OfferStatus.PUBLISHED, OfferStatus.CLOSED, "close"),
        Transition(OfferStatus.FUNDING, OfferStatus.EXPIRED, "expire"),
        Transition(OfferStatus.PUBLISHED, OfferStatus.EXPIRED, "expire"),
    ),
    terminal_states=(OfferStatus.CLOSED, OfferStatus.EXPIRED),
)


def offer_view(status: OfferStatus) -> OfferView:
    match status:
        case OfferStatus.FUNDING:
            return OfferView.DRAFT
        case OfferStatus.PUBLISHED:
            return OfferView.PUBLISHED
        case OfferStatus.CLOSED | OfferStatus.EXPIRED:
            return OfferView.CLOSED
        case _:
            assert_never(status)


# =============================================================================
# Loan application
# =============================================================================


class ApplicationStatus(str, Enum):
    PENDING_COLLATERAL = "pending_collateral"
    PUBLISHED = "published"
    MATCHED = "matched"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ApplicationView(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    MATCHED = "MATCHED"
    CLOSED = "CLOSED"
    EXPIRED = "EXPIRED"


COLLATERAL_FULLY_PAID = Guard(
    "collateral_fully_paid", "Collateral deposit invoice paid in full"
)

APPLICATION_WORKFLOW: Workflow[ApplicationStatus] = Workflow(
    name="loan_application",
    description="Borrower application from collateral deposit to match or cancellation",
    state_type=ApplicationStatus,
    initial_state=ApplicationStatus.PENDING_COLLATERAL,
    states=tuple(ApplicationStatus),
    transitions=(
        Transition(
            ApplicationStatus.PENDING_COLLATERAL,
            ApplicationStatus.PUBLISHED,
            "collateral_paid",
            COLLATERAL_FULLY_PAID,
        ),
        Transition(ApplicationStatus.PENDING_COLLATERAL, ApplicationStatus.CANCELLED, "cancel"),
        Transition(ApplicationStatus.PUBLISHED, ApplicationStatus.MATCHED, "match"),
        Transition(ApplicationStatus.PENDING_COLLATERAL, ApplicationStatus.EXPIRED, "expire"),
        Transition(ApplicationStatus.PUBLISHED, ApplicationStatus.EXPIRED, "expire"),
    ),
    terminal_states=(
        ApplicationStatus.MATCHED,
        ApplicationStatus.CANCELLED,
        ApplicationStatus.EXPIRED,
    ),
)


def application_view(status: ApplicationStatus) -> ApplicationView:
    match status:
        case ApplicationStatus.PENDING_COLLATERAL:
            return ApplicationView.DRAFT
        case ApplicationStatus.PUBLISHED:
            return ApplicationView.PUBLISHED
        case ApplicationStatus.MATCHED:
            return ApplicationView.MATCHED
        case ApplicationStatus.CANCELLED:
            return ApplicationView.CLOSED
        case ApplicationStatus.EXPIRED:
            return ApplicationView.EXPIRED
        case _:
            assert_never(status)


# =============================================================================
# Loan
# =============================================================================


class LoanStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PENDING_LIQUIDATION = "pending_liquidation"
    PENDING_REPAYMENT = "pending_repayment"
    MATURED = "matured"
    EARLY_LIQUIDATED = "early_liquidated"
    EARLY_REPAID = "early_repaid"
    DEFAULTED = "defaulted"


class LoanView(str, Enum):
    ORIGINATED = "ORIGINATED"
    ACTIVE = "ACTIVE"
    MATURED = "MATURED"
    REPAID = "REPAID"
    LIQUIDATED = "LIQUIDATED"


RISK_ACKNOWLEDGED = Guard(
    "risk_acknowledged", "Borrower explicitly acknowledged early-exit terms"
)
MATURITY_REACHED = Guard("maturity_reached", "Maturity date has passed")

LOAN_WORKFLOW: Workflow[LoanStatus] = Workflow(
    name="loan",
    description="Originated loan through maturity, early exit, or default",
    state_type=LoanStatus,
    initial_state=LoanStatus.DRAFT,
    states=tuple(LoanStatus),
    transitions=(
        Transition(LoanStatus.DRAFT, LoanStatus.ACTIVE, "disburse"),
        Transition(LoanStatus.ACTIVE, LoanStatus.MATURED, "mature", MATURITY_REACHED),
        Transition(LoanStatus.ACTIVE, LoanStatus.DEFAULTED, "default"),
        Transition(
            LoanStatus.ACTIVE,
            LoanStatus.PENDING_LIQUIDATION,
            "request_early_liquidation",
            RISK_ACKNOWLEDGED,
        ),
        Transition(LoanStatus.PENDING_LIQUIDATION, LoanStatus.EARLY_LIQUIDATED, "settle_liquidation"),
        Transition(LoanStatus.PENDING_LIQUIDATION, LoanStatus.ACTIVE, "liquidation_failed"),
        Transition(
            LoanStatus.ACTIVE,
            LoanStatus.PENDING_REPAYMENT,
            "request_early_repayment",
            RISK_ACKNOWLEDGED,
        ),
        Transition(LoanStatus.PENDING_REPAYMENT, LoanStatus.EARLY_REPAID, "settle_repayment"),
    ),
    terminal_states=(
        LoanStatus.MATURED,
        LoanStatus.EARLY_LIQUIDATED,
        LoanStatus.EARLY_REPAID,
        LoanStatus.DEFAULTED,
    ),
)


def loan_view(status: LoanStatus) -> LoanView:
    match status:
        case LoanStatus.DRAFT:
            return LoanView.ORIGINATED
        case LoanStatus.ACTIVE | LoanStatus.PENDING_LIQUIDATION | LoanStatus.PENDING_REPAYMENT:
            return LoanView.ACTIVE
        case LoanStatus.MATURED:
            return LoanView.MATURED
        case LoanStatus.EARLY_REPAID:
            return LoanView.REPAID
        case LoanStatus.EARLY_LIQUIDATED | LoanStatus.DEFAULTED:
            return LoanView.LIQUIDATED
        case _:
            assert_never(status)


for _workflow in (OFFER_WORKFLOW, APPLICATION_WORKFLOW, LOAN_WORKFLOW):
    logger.debug(
        "lifecycle_workflow_registered",
        extra={
            "workflow_name": _workflow.name,
            "state_count": len(_workflow.states),
            "transition_count": len(_workflow.transitions),
        },
    )
