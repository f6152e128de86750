"""
Module: lending_kernel.models.loan_offer
Responsibility: ORM persistence for lender offers.
Architecture position: Kernel > Models.

Invariants enforced:
    - available_amount + reserved_amount + disbursed_amount == offered_amount
      once the offer is funded; available_amount never exceeds
      offered_amount and only decreases.
    - min_loan_amount <= max_loan_amount <= offered_amount.
    - status holds an OfferStatus value and changes only through
      OFFER_WORKFLOW, written with a compare-and-set on ``version``.
    - A CLOSED or EXPIRED offer's available_amount is frozen.

Failure modes:
    - CheckConstraint violation if a write would drive an amount negative.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from lending_kernel.db.base import TrackedBase, UUIDString, VersionedMixin
from lending_kernel.db.types import SmallestUnits
from lending_kernel.domain.lifecycle import OfferStatus
from lending_kernel.domain.values import Amount, CurrencyKey


class LoanOfferModel(VersionedMixin, TrackedBase):
    """
    Principal a lender makes available to borrowers.

    Guarantees:
        - All amounts are smallest units of the principal currency.
        - term_options is a sorted list of allowed month counts.
    """

    __tablename__ = "loan_offers"

    __table_args__ = (
        Index("idx_offer_status", "status"),
        Index("idx_offer_lender", "lender_id"),
        Index("idx_offer_currency", "principal_blockchain_key", "principal_token_id"),
        CheckConstraint("version > 0", name="ck_offer_version_positive"),
    )

    lender_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    principal_blockchain_key: Mapped[str] = mapped_column(String(64), nullable=False)
    principal_token_id: Mapped[str] = mapped_column(String(128), nullable=False)

    offered_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    available_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    reserved_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False, default=0)
    disbursed_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False, default=0)
    min_loan_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    max_loan_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)

    interest_rate: Mapped[Decimal] = mapped_column(nullable=False)
    term_options: Mapped[list[int]] = mapped_column(JSON, nullable=False)

    status: Mapped[OfferStatus] = mapped_column(
        String(20), nullable=False, default=OfferStatus.FUNDING
    )
    creation_date: Mapped[datetime] = mapped_column(nullable=False)
    expiration_date: Mapped[datetime] = mapped_column(nullable=False)
    published_date: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_date: Mapped[datetime | None] = mapped_column(nullable=True)
    closure_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    funding_invoice_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    @property
    def lifecycle_status(self) -> OfferStatus:
        return OfferStatus(self.status)

    @property
    def principal_currency(self) -> CurrencyKey:
        return CurrencyKey(self.principal_blockchain_key, self.principal_token_id)

    @property
    def available(self) -> Amount:
        return Amount(self.available_amount, self.principal_currency)

    def is_past_expiration(self, as_of: datetime) -> bool:
        return self.expiration_date <= as_of

    def __repr__(self) -> str:
        return (
            f"<LoanOffer {self.id} {self.status} "
            f"{self.available_amount}/{self.offered_amount}>"
        )
