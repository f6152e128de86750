"""
InvoiceService -- issues the invoices the payment collaborator collects.

Responsibility:
    Creates funding, collateral-deposit and repayment invoices for offers,
    applications and loans, and resolves them by id.  Payment events are
    applied by ``InvoiceEventService``; this service only issues.

Architecture position:
    Kernel > Services -- imperative shell.  Used by OfferService,
    ApplicationService and LoanService inside their own transactions.

Invariants enforced:
    - An invoice is issued in PENDING with ``paid_amount == 0``.
    - The invoiced amount is a positive integer of the invoice currency.
    - Exactly one subject (offer, application or loan) is set, and it
      matches the invoice type.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from lending_kernel.domain.values import Amount
from lending_kernel.exceptions import InvalidAmountError, InvoiceNotFoundError
from lending_kernel.logging_config import get_logger
from lending_kernel.models.invoice import InvoiceModel, InvoiceStatus, InvoiceType
from lending_kernel.services.base import BaseService

logger = get_logger("services.invoice")

_SUBJECT_FIELD = {
    InvoiceType.LOAN_PRINCIPAL: "offer_id",
    InvoiceType.LOAN_COLLATERAL: "application_id",
    InvoiceType.LOAN_REPAYMENT: "loan_id",
}


class InvoiceService(BaseService[InvoiceModel]):
    """Issues and resolves invoices."""

    def issue_invoice(
        self,
        *,
        invoice_type: InvoiceType,
        user_id: UUID,
        amount: Amount,
        subject_id: UUID,
        due_date: datetime,
        actor_id: UUID | None = None,
    ) -> InvoiceModel:
        """
        Issue a PENDING invoice for ``amount``.

        ``subject_id`` is the offer, application or loan the invoice pays
        for, according to ``invoice_type``.

        Raises:
            InvalidAmountError: the amount is not positive.
        """
        if amount.units <= 0:
            raise InvalidAmountError("invoiced_amount", amount.units, "must be positive")

        invoice = InvoiceModel(
            invoice_type=invoice_type.value,
            user_id=user_id,
            blockchain_key=amount.currency.blockchain_key,
            token_id=amount.currency.token_id,
            invoiced_amount=amount.units,
            paid_amount=0,
            status=InvoiceStatus.PENDING.value,
            invoice_date=self.clock.now(),
            due_date=due_date,
            created_by_id=actor_id or user_id,
        )
        setattr(invoice, _SUBJECT_FIELD[invoice_type], subject_id)
        self.session.add(invoice)
        self.session.flush()

        logger.info(
            "invoice_issued",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_type": invoice_type.value,
                "subject_id": str(subject_id),
                "amount": str(amount.units),
                "currency": str(amount.currency),
            },
        )
        return invoice

    def get_invoice(self, invoice_id: UUID) -> InvoiceModel:
        """
        Raises:
            InvoiceNotFoundError: no invoice with that id.
        """
        invoice = self.session.get(InvoiceModel, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def lock_invoice(self, invoice_id: UUID) -> InvoiceModel:
        invoice = self.lock_row(InvoiceModel, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

