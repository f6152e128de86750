"""
DTOs -- Read-side data transfer objects for offers, applications and loans.

Responsibility:
    Immutable records returned by services and selectors to callers.  Every
    amount is an ``Amount`` (integer smallest units paired with its
    currency) and every status is the external view enum.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``from_model()`` class methods are
    boundary converters invoked only from services and selectors.

Invariants enforced:
    - DTOs never expose ORM entities.
    - Offers and applications past their expiration date read as expired
      even before a sweep persists the transition (passive expiry).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Generic, TypeVar
from uuid import UUID

from lending_kernel.domain.lifecycle import (
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
from lending_kernel.domain.values import Amount, CurrencyKey, LiquidationMode

if TYPE_CHECKING:
    from lending_kernel.models.loan import (
        EarlyExitRequestModel,
        LoanModel,
        LoanValuationModel,
    )
    from lending_kernel.models.loan_application import LoanApplicationModel
    from lending_kernel.models.loan_offer import LoanOfferModel

T = TypeVar("T")


def effective_offer_status(model: LoanOfferModel, as_of: datetime | None) -> OfferStatus:
    status = model.lifecycle_status
    if (
        as_of is not None
        and status in (OfferStatus.FUNDING, OfferStatus.PUBLISHED)
        and model.is_past_expiration(as_of)
    ):
        return OfferStatus.EXPIRED
    return status


def effective_application_status(
    model: LoanApplicationModel, as_of: datetime | None
) -> ApplicationStatus:
    status = model.lifecycle_status
    if (
        as_of is not None
        and status in (ApplicationStatus.PENDING_COLLATERAL, ApplicationStatus.PUBLISHED)
        and model.is_past_expiration(as_of)
    ):
        return ApplicationStatus.EXPIRED
    return status


@dataclass(frozen=True)
class OfferInfo:
    """Lender offer as presented to callers."""

    id: UUID
    lender_id: UUID
    principal_currency: CurrencyKey
    offered_amount: Amount
    available_amount: Amount
    reserved_amount: Amount
    disbursed_amount: Amount
    min_loan_amount: Amount
    max_loan_amount: Amount
    interest_rate: Decimal
    term_options: tuple[int, ...]
    status: OfferStatus
    view: OfferView
    creation_date: datetime
    expiration_date: datetime
    published_date: datetime | None
    closed_date: datetime | None
    closure_reason: str | None
    funding_invoice_id: UUID | None

    @classmethod
    def from_model(cls, model: LoanOfferModel, as_of: datetime | None = None) -> OfferInfo:
        currency = model.principal_currency
        status = effective_offer_status(model, as_of)
        return cls(
            id=model.id,
            lender_id=model.lender_id,
            principal_currency=currency,
            offered_amount=Amount(model.offered_amount, currency),
            available_amount=Amount(model.available_amount, currency),
            reserved_amount=Amount(model.reserved_amount, currency),
            disbursed_amount=Amount(model.disbursed_amount, currency),
            min_loan_amount=Amount(model.min_loan_amount, currency),
            max_loan_amount=Amount(model.max_loan_amount, currency),
            interest_rate=model.interest_rate,
            term_options=tuple(model.term_options),
            status=status,
            view=offer_view(status),
            creation_date=model.creation_date,
            expiration_date=model.expiration_date,
            published_date=model.published_date,
            closed_date=model.closed_date,
            closure_reason=model.closure_reason,
            funding_invoice_id=model.funding_invoice_id,
        )


@dataclass(frozen=True)
class ApplicationInfo:
    """Borrower application as presented to callers."""

    id: UUID
    borrower_id: UUID
    principal_amount: Amount
    provision_amount: Amount
    collateral_deposit_amount: Amount
    min_ltv_ratio: Decimal
    max_ltv_ratio: Decimal
    exchange_rate: Decimal
    term_in_months: int
    max_interest_rate: Decimal
    liquidation_mode: str
    status: ApplicationStatus
    view: ApplicationView
    application_date: datetime
    expiration_date: datetime
    published_date: datetime | None
    closed_date: datetime | None
    closure_reason: str | None
    collateral_invoice_id: UUID | None
    matched_offer_id: UUID | None
    matched_ltv_ratio: Decimal | None
    matched_collateral_valuation: Amount | None

    @classmethod
    def from_model(
        cls, model: LoanApplicationModel, as_of: datetime | None = None
    ) -> ApplicationInfo:
        principal = model.principal_currency
        status = effective_application_status(model, as_of)
        valuation = model.matched_collateral_valuation
        return cls(
            id=model.id,
            borrower_id=model.borrower_id,
            principal_amount=Amount(model.principal_amount, principal),
            provision_amount=Amount(model.provision_amount, principal),
            collateral_deposit_amount=Amount(
                model.collateral_deposit_amount, model.collateral_currency
            ),
            min_ltv_ratio=model.min_ltv_ratio,
            max_ltv_ratio=model.max_ltv_ratio,
            exchange_rate=model.exchange_rate,
            term_in_months=int(model.term_in_months),
            max_interest_rate=model.max_interest_rate,
            liquidation_mode=LiquidationMode(model.liquidation_mode).value,
            status=status,
            view=application_view(status),
            application_date=model.application_date,
            expiration_date=model.expiration_date,
            published_date=model.published_date,
            closed_date=model.closed_date,
            closure_reason=model.closure_reason,
            collateral_invoice_id=model.collateral_invoice_id,
            matched_offer_id=model.matched_offer_id,
            matched_ltv_ratio=model.matched_ltv_ratio,
            matched_collateral_valuation=(
                Amount(valuation, principal) if valuation is not None else None
            ),
        )


@dataclass(frozen=True)
class LoanInfo:
    """Originated loan and its economic schedule."""

    id: UUID
    application_id: UUID
    offer_id: UUID
    borrower_id: UUID
    lender_id: UUID
    principal_amount: Amount
    interest_rate: Decimal
    term_in_months: int
    interest_amount: Amount
    premi_amount: Amount
    liquidation_fee_amount: Amount
    repayment_amount: Amount
    redelivery_fee_amount: Amount
    redelivery_amount: Amount
    min_collateral_valuation: Amount
    margin_call_ltv: Decimal
    collateral_amount: Amount
    matched_ltv_ratio: Decimal
    current_ltv: Decimal | None
    status: LoanStatus
    view: LoanView
    origination_date: datetime
    maturity_date: datetime
    disbursement_date: datetime | None
    concluded_date: datetime | None

    @classmethod
    def from_model(cls, model: LoanModel) -> LoanInfo:
        p = model.principal_currency
        status = model.lifecycle_status
        return cls(
            id=model.id,
            application_id=model.application_id,
            offer_id=model.offer_id,
            borrower_id=model.borrower_id,
            lender_id=model.lender_id,
            principal_amount=Amount(model.principal_amount, p),
            interest_rate=model.interest_rate,
            term_in_months=int(model.term_in_months),
            interest_amount=Amount(model.interest_amount, p),
            premi_amount=Amount(model.premi_amount, p),
            liquidation_fee_amount=Amount(model.liquidation_fee_amount, p),
            repayment_amount=Amount(model.repayment_amount, p),
            redelivery_fee_amount=Amount(model.redelivery_fee_amount, p),
            redelivery_amount=Amount(model.redelivery_amount, p),
            min_collateral_valuation=Amount(model.min_collateral_valuation, p),
            margin_call_ltv=model.margin_call_ltv,
            collateral_amount=Amount(model.collateral_amount, model.collateral_currency),
            matched_ltv_ratio=model.matched_ltv_ratio,
            current_ltv=model.current_ltv,
            status=status,
            view=loan_view(status),
            origination_date=model.origination_date,
            maturity_date=model.maturity_date,
            disbursement_date=model.disbursement_date,
            concluded_date=model.concluded_date,
        )


@dataclass(frozen=True)
class EarlyExitInfo:
    """An acknowledged early-exit request and the estimate behind it."""

    id: UUID
    loan_id: UUID
    exit_type: str
    status: str
    request_date: datetime
    settled_date: datetime | None
    total_outstanding: Amount
    current_valuation: Amount | None
    estimated_liquidation: Amount | None
    surplus_deficit: Amount | None
    remaining_term_days: int | None
    repayment_invoice_id: UUID | None

    @classmethod
    def from_model(cls, model: EarlyExitRequestModel, currency: CurrencyKey) -> EarlyExitInfo:
        def _amount(units: int | None) -> Amount | None:
            return None if units is None else Amount(units, currency)

        return cls(
            id=model.id,
            loan_id=model.loan_id,
            exit_type=str(getattr(model.exit_type, "value", model.exit_type)),
            status=str(getattr(model.status, "value", model.status)),
            request_date=model.request_date,
            settled_date=model.settled_date,
            total_outstanding=Amount(model.total_outstanding, currency),
            current_valuation=_amount(model.current_valuation),
            estimated_liquidation=_amount(model.estimated_liquidation),
            surplus_deficit=_amount(model.surplus_deficit),
            remaining_term_days=model.remaining_term_days,
            repayment_invoice_id=model.repayment_invoice_id,
        )


@dataclass(frozen=True)
class LoanValuationInfo:
    """One point of a loan's LTV history."""

    id: UUID
    loan_id: UUID
    exchange_rate: Decimal
    collateral_valuation: Amount
    ltv_ratio: Decimal
    breached_threshold: bool
    valuation_date: datetime

    @classmethod
    def from_model(cls, model: LoanValuationModel, currency: CurrencyKey) -> LoanValuationInfo:
        return cls(
            id=model.id,
            loan_id=model.loan_id,
            exchange_rate=model.exchange_rate,
            collateral_valuation=Amount(model.collateral_valuation, currency),
            ltv_ratio=model.ltv_ratio,
            breached_threshold=bool(model.breached_threshold),
            valuation_date=model.valuation_date,
        )


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a listing; ``page`` is 1-based."""

    items: tuple[T, ...]
    page: int
    limit: int
    total: int = field(default=0)

    @property
    def has_more(self) -> bool:
        return self.page * self.limit < self.total
