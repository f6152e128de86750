"""
Module: lending_kernel.models.loan
Responsibility: ORM persistence for originated loans, their collateral
    valuations, and early-exit requests.
Architecture position: Kernel > Models.

Invariants enforced:
    - application_id is unique (uq_loan_application): a matched
      application originates exactly one loan.
    - The economic schedule (interest, fees, repayment, redelivery,
      minimum collateral valuation, margin-call LTV, maturity) is written
      once at origination and never updated.  Only status, outcome and
      monitoring columns change afterwards.
    - status holds a LoanStatus value and changes only through
      LOAN_WORKFLOW, written with a compare-and-set on ``version``.

Failure modes:
    - IntegrityError on a second loan for the same application (the
      matching service translates it to LoanAlreadyOriginatedError).

Audit relevance:
    LoanValuationModel rows form the LTV history; EarlyExitRequestModel
    rows record the estimate the borrower acknowledged before an exit.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from lending_kernel.db.base import TrackedBase, UUIDString, VersionedMixin
from lending_kernel.db.types import SmallestUnits
from lending_kernel.domain.lifecycle import LoanStatus
from lending_kernel.domain.values import CurrencyKey


class LoanModel(VersionedMixin, TrackedBase):
    """An originated loan contract."""

    __tablename__ = "loans"

    __table_args__ = (
        UniqueConstraint("application_id", name="uq_loan_application"),
        Index("idx_loan_status", "status"),
        Index("idx_loan_borrower", "borrower_id"),
        Index("idx_loan_lender", "lender_id"),
    )

    application_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("loan_applications.id"), nullable=False
    )
    offer_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("loan_offers.id"), nullable=False
    )
    borrower_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    lender_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    principal_blockchain_key: Mapped[str] = mapped_column(String(64), nullable=False)
    principal_token_id: Mapped[str] = mapped_column(String(128), nullable=False)
    collateral_blockchain_key: Mapped[str] = mapped_column(String(64), nullable=False)
    collateral_token_id: Mapped[str] = mapped_column(String(128), nullable=False)

    # Economic schedule (principal-currency smallest units unless noted)
    principal_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    interest_rate: Mapped[Decimal] = mapped_column(nullable=False)
    term_in_months: Mapped[int] = mapped_column(nullable=False)
    provision_rate: Mapped[Decimal] = mapped_column(nullable=False)
    interest_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    premi_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    liquidation_fee_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    repayment_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    redelivery_fee_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    redelivery_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    min_collateral_valuation: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    margin_call_ltv: Mapped[Decimal] = mapped_column(nullable=False)

    # Collateral-currency smallest units
    collateral_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    matched_ltv_ratio: Mapped[Decimal] = mapped_column(nullable=False)
    matched_collateral_valuation: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)

    policy_version: Mapped[int] = mapped_column(nullable=False)
    origination_date: Mapped[datetime] = mapped_column(nullable=False)
    maturity_date: Mapped[datetime] = mapped_column(nullable=False)
    disbursement_date: Mapped[datetime | None] = mapped_column(nullable=True)
    concluded_date: Mapped[datetime | None] = mapped_column(nullable=True)

    status: Mapped[LoanStatus] = mapped_column(
        String(24), nullable=False, default=LoanStatus.DRAFT
    )

    current_ltv: Mapped[Decimal | None] = mapped_column(nullable=True)
    last_valuation_date: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def lifecycle_status(self) -> LoanStatus:
        return LoanStatus(self.status)

    @property
    def principal_currency(self) -> CurrencyKey:
        return CurrencyKey(self.principal_blockchain_key, self.principal_token_id)

    @property
    def collateral_currency(self) -> CurrencyKey:
        return CurrencyKey(self.collateral_blockchain_key, self.collateral_token_id)

    def __repr__(self) -> str:
        return f"<Loan {self.id} {self.status} principal={self.principal_amount}>"


class LoanValuationModel(TrackedBase):
    """A point-in-time collateral valuation of an active loan."""

    __tablename__ = "loan_valuations"

    __table_args__ = (
        Index("idx_valuation_loan_date", "loan_id", "valuation_date"),
    )

    loan_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("loans.id"), nullable=False
    )
    exchange_rate_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    exchange_rate: Mapped[Decimal] = mapped_column(nullable=False)
    collateral_valuation: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    ltv_ratio: Mapped[Decimal] = mapped_column(nullable=False)
    breached_threshold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    valuation_date: Mapped[datetime] = mapped_column(nullable=False)


class EarlyExitType(str, Enum):
    LIQUIDATION = "liquidation"
    REPAYMENT = "repayment"


class EarlyExitRequestStatus(str, Enum):
    PENDING = "pending"
    SETTLED = "settled"
    FAILED = "failed"


class EarlyExitRequestModel(TrackedBase):
    """
    A borrower's acknowledged early-exit request.

    Contract:
        Created only after the acknowledgment check passes.  The estimate
        columns hold what the borrower saw when they acknowledged.
        surplus_deficit is negative for a liquidation deficit.
    """

    __tablename__ = "early_exit_requests"

    __table_args__ = (
        Index("idx_early_exit_loan", "loan_id"),
    )

    loan_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("loans.id"), nullable=False
    )
    exit_type: Mapped[EarlyExitType] = mapped_column(String(16), nullable=False)
    status: Mapped[EarlyExitRequestStatus] = mapped_column(
        String(16), nullable=False, default=EarlyExitRequestStatus.PENDING
    )
    acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False)
    request_date: Mapped[datetime] = mapped_column(nullable=False)
    settled_date: Mapped[datetime | None] = mapped_column(nullable=True)

    total_outstanding: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    current_valuation: Mapped[int | None] = mapped_column(SmallestUnits(), nullable=True)
    estimated_liquidation: Mapped[int | None] = mapped_column(SmallestUnits(), nullable=True)
    surplus_deficit: Mapped[int | None] = mapped_column(SmallestUnits(), nullable=True)
    remaining_term_days: Mapped[int | None] = mapped_column(nullable=True)

    repayment_invoice_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
