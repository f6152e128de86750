"""
Module: lending_kernel.models.invoice
Responsibility: ORM persistence for payment-tracking invoices (offer funding,
    collateral deposit, early repayment) and the individual payment events
    reported against them.
Architecture position: Kernel > Models.

Invariants enforced:
    - (invoice_id, payment_ref) is unique (uq_invoice_payment_ref): the same
      payment notification can be recorded at most once.
    - paid_amount equals the sum of recorded payments for the invoice.

Failure modes:
    - IntegrityError on a concurrent insert of the same payment reference;
      the invoice event service translates it to ConcurrentEventConflictError.

Audit relevance:
    Invoice payments are the only external trigger that publishes offers and
    applications, so every such transition is traceable to a payment row.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from lending_kernel.db.base import TrackedBase, UUIDString, VersionedMixin
from lending_kernel.db.types import SmallestUnits
from lending_kernel.domain.values import Amount, CurrencyKey


class InvoiceType(str, Enum):
    LOAN_PRINCIPAL = "loan_principal"
    LOAN_COLLATERAL = "loan_collateral"
    LOAN_REPAYMENT = "loan_repayment"


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


class InvoiceModel(VersionedMixin, TrackedBase):
    """
    Amount the payment collaborator expects from a user.

    Contract:
        Exactly one of offer_id, application_id or loan_id identifies what
        the invoice pays for, according to invoice_type.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        Index("idx_invoice_status", "status"),
        Index("idx_invoice_offer", "offer_id"),
        Index("idx_invoice_application", "application_id"),
        Index("idx_invoice_loan", "loan_id"),
    )

    invoice_type: Mapped[InvoiceType] = mapped_column(String(32), nullable=False)
    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    blockchain_key: Mapped[str] = mapped_column(String(64), nullable=False)
    token_id: Mapped[str] = mapped_column(String(128), nullable=False)
    invoiced_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    paid_amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False, default=0)

    status: Mapped[InvoiceStatus] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.PENDING
    )
    invoice_date: Mapped[datetime] = mapped_column(nullable=False)
    due_date: Mapped[datetime] = mapped_column(nullable=False)
    paid_date: Mapped[datetime | None] = mapped_column(nullable=True)

    offer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    application_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    loan_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    @property
    def currency(self) -> CurrencyKey:
        return CurrencyKey(self.blockchain_key, self.token_id)

    @property
    def invoiced(self) -> Amount:
        return Amount(self.invoiced_amount, self.currency)

    @property
    def is_fully_paid(self) -> bool:
        return self.paid_amount >= self.invoiced_amount

    def __repr__(self) -> str:
        return (
            f"<Invoice {self.id} {self.invoice_type} "
            f"{self.paid_amount}/{self.invoiced_amount} {self.status}>"
        )


class InvoicePaymentModel(TrackedBase):
    """A single payment notification applied to an invoice."""

    __tablename__ = "invoice_payments"

    __table_args__ = (
        UniqueConstraint("invoice_id", "payment_ref", name="uq_invoice_payment_ref"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("invoices.id"), nullable=False
    )
    payment_ref: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    paid_at: Mapped[datetime] = mapped_column(nullable=False)
