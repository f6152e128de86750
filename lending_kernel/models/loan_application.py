"""
Module: lending_kernel.models.loan_application
Responsibility: ORM persistence for borrower loan applications, including the
    sizing quote (provision, collateral deposit, LTV bounds, exchange rate)
    captured at application time and the match outcome.
Architecture position: Kernel > Models.

Invariants enforced:
    - status holds an ApplicationStatus value and changes only through
      APPLICATION_WORKFLOW, written with a compare-and-set on ``version``.
    - matched_offer_id, matched_ltv_ratio and matched_collateral_valuation
      are set together, exactly when status becomes MATCHED.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from lending_kernel.db.base import TrackedBase, UUIDString, VersionedMixin
from lending_kernel.db.types import SmallestUnits
from lending_kernel.domain.lifecycle import ApplicationStatus
from lending_kernel.domain.values import CurrencyKey, LiquidationMode


class LoanApplicationModel(VersionedMixin, TrackedBase):
    """A borrower's request for principal against deposited collateral."""

    __tablename__ = "loan_applications"

    __table_args__ = (
        Index("idx_application_status", "status"),
        Index("idx_application_borrower", "borrower_id"),
        Index("idx_application_date", "application_date"),
    )

    borrower_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    principal_blockchain_key: Mapped[str] = mapped_column(String(64), nullable=False)
    principal_token_id: Mapped[str] = mapped_column(String(128), nullable=False)
    collateral_blockchain_key: Mapped[str] = mapped_column(String(64), nullable=False)
    collateral_token_id: Mapped[str] = mapped_column(String(128), nullable=False)

    principal_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    provision_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    collateral_deposit_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)

    # Sizing inputs recorded for audit
    provision_rate: Mapped[Decimal] = mapped_column(nullable=False)
    min_ltv_ratio: Mapped[Decimal] = mapped_column(nullable=False)
    max_ltv_ratio: Mapped[Decimal] = mapped_column(nullable=False)
    policy_version: Mapped[int] = mapped_column(nullable=False)
    exchange_rate_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    exchange_rate: Mapped[Decimal] = mapped_column(nullable=False)

    term_in_months: Mapped[int] = mapped_column(nullable=False)
    max_interest_rate: Mapped[Decimal] = mapped_column(nullable=False)
    liquidation_mode: Mapped[LiquidationMode] = mapped_column(
        String(16), nullable=False, default=LiquidationMode.FULL
    )

    status: Mapped[ApplicationStatus] = mapped_column(
        String(24), nullable=False, default=ApplicationStatus.PENDING_COLLATERAL
    )
    application_date: Mapped[datetime] = mapped_column(nullable=False)
    expiration_date: Mapped[datetime] = mapped_column(nullable=False)
    published_date: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_date: Mapped[datetime | None] = mapped_column(nullable=True)
    closure_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    collateral_invoice_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    matched_offer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    matched_date: Mapped[datetime | None] = mapped_column(nullable=True)
    matched_ltv_ratio: Mapped[Decimal | None] = mapped_column(nullable=True)
    matched_collateral_valuation: Mapped[int | None] = mapped_column(
        SmallestUnits(), nullable=True
    )

    @property
    def lifecycle_status(self) -> ApplicationStatus:
        return ApplicationStatus(self.status)

    @property
    def principal_currency(self) -> CurrencyKey:
        return CurrencyKey(self.principal_blockchain_key, self.principal_token_id)

    @property
    def collateral_currency(self) -> CurrencyKey:
        return CurrencyKey(self.collateral_blockchain_key, self.collateral_token_id)

    def is_past_expiration(self, as_of: datetime) -> bool:
        return self.expiration_date <= as_of

    def __repr__(self) -> str:
        return f"<LoanApplication {self.id} {self.status} principal={self.principal_amount}>"
