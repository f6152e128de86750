"""
InvoiceEventService -- idempotent intake of invoice payment notifications.

Responsibility:
    Entry point for "invoice paid / partially paid" events delivered by the
    payment collaborator.  Records each payment once, accumulates the
    invoice's paid amount, and when the invoice is paid in full drives the
    reaction of the entity it pays for: offer publication, application
    publication, or early-repayment settlement.

Architecture position:
    Kernel > Services -- imperative shell.  The only caller of the
    ``on_*_paid`` reactions of OfferService, ApplicationService and
    LoanService.

Invariants enforced:
    - Idempotency: (invoice_id, payment_ref) is unique.  A redelivered
      event with the same amount returns DUPLICATE and changes nothing.
    - A redelivered event with a different amount is a protocol violation
      (InvoicePaymentMismatchError), never an adjustment.
    - The invoice row is locked for the whole event, and its paid amount
      is written with a compare-and-set, so concurrent deliveries of
      different payments both land.
    - Reactions are themselves idempotent; replaying the final payment
      never transitions an entity twice.

Failure modes:
    - InvoiceNotFoundError for an unknown invoice.
    - InvalidAmountError for a non-positive or malformed amount.
    - InvoicePaymentMismatchError for a replay with a different amount.
    - ConcurrentEventConflictError when the same payment_ref is inserted
      concurrently by another transaction (retry yields DUPLICATE).

Audit relevance:
    Every applied payment is an InvoicePaymentModel row; ``invoice_payment_
    applied`` and ``invoice_payment_duplicate`` log lines carry the invoice
    id, payment reference and integer amounts.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import assert_never
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from lending_kernel.domain.units import UnitsInput, parse_units
from lending_kernel.domain.values import Amount
from lending_kernel.exceptions import (
    ConcurrentEventConflictError,
    InvalidAmountError,
    InvoicePaymentMismatchError,
)
from lending_kernel.logging_config import LogContext, get_logger
from lending_kernel.models.invoice import (
    InvoiceModel,
    InvoicePaymentModel,
    InvoiceStatus,
    InvoiceType,
)
from lending_kernel.services.application_service import ApplicationService
from lending_kernel.services.base import SYSTEM_ACTOR_ID, BaseService
from lending_kernel.services.invoice_service import InvoiceService
from lending_kernel.services.loan_service import LoanService
from lending_kernel.services.offer_service import OfferService

logger = get_logger("services.invoice_event")


class InvoiceEventStatus(str, Enum):
    """Outcome of recording a payment event."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"  # Idempotent success


@dataclass(frozen=True)
class InvoiceEventResult:
    """Result of recording a payment event."""

    status: InvoiceEventStatus
    invoice_id: UUID
    payment_ref: str
    invoice_status: InvoiceStatus
    paid_amount: Amount
    invoiced_amount: Amount
    subject_transitioned: bool = False

    @property
    def is_success(self) -> bool:
        return self.status in (InvoiceEventStatus.APPLIED, InvoiceEventStatus.DUPLICATE)


class InvoiceEventService(BaseService[InvoiceModel]):
    """
    Applies payment notifications to invoices.

    Contract:
        ``record_payment`` is safe to call any number of times with the
        same arguments.  The caller owns the transaction.
    """

    def record_payment(
        self,
        invoice_id: UUID,
        payment_ref: str,
        paid_amount: UnitsInput,
        paid_at: datetime | None = None,
    ) -> InvoiceEventResult:
        """
        Record one payment against an invoice.

        Args:
            invoice_id: Invoice the payment was made to.
            payment_ref: Collaborator's unique reference (e.g. tx hash).
            paid_amount: Integer smallest units of the invoice currency.
            paid_at: When the payment was observed; defaults to now.
        """
        amount = parse_units(paid_amount, "paid_amount")
        if amount <= 0:
            raise InvalidAmountError("paid_amount", paid_amount, "must be positive")
        paid_at = paid_at or self.clock.now()

        with LogContext.bind(invoice_id=str(invoice_id)):
            invoice = InvoiceService(self.session, self.clock, self.settings).lock_invoice(
                invoice_id
            )

            existing = self._get_payment(invoice_id, payment_ref)
            if existing is not None:
                return self._duplicate(invoice, existing, amount)

            payment = InvoicePaymentModel(
                invoice_id=invoice_id,
                payment_ref=payment_ref,
                amount=amount,
                paid_at=paid_at,
                created_by_id=SYSTEM_ACTOR_ID,
            )
            try:
                with self.session.begin_nested():
                    self.session.add(payment)
                    self.session.flush()
            except IntegrityError as e:
                logger.warning(
                    "invoice_payment_concurrent_insert",
                    extra={"payment_ref": payment_ref},
                )
                raise ConcurrentEventConflictError(str(invoice_id), payment_ref) from e

            new_paid = invoice.paid_amount + amount
            fully_paid = new_paid >= invoice.invoiced_amount
            new_status = InvoiceStatus.PAID if fully_paid else InvoiceStatus.PARTIALLY_PAID
            written = self.compare_and_set(
                invoice,
                invoice.version,
                paid_amount=new_paid,
                status=new_status.value,
                paid_date=(invoice.paid_date or paid_at) if fully_paid else None,
                updated_by_id=SYSTEM_ACTOR_ID,
            )
            if not written:
                raise ConcurrentEventConflictError(str(invoice_id), payment_ref)

            logger.info(
                "invoice_payment_applied",
                extra={
                    "payment_ref": payment_ref,
                    "amount": str(amount),
                    "paid_amount": str(new_paid),
                    "invoiced_amount": str(invoice.invoiced_amount),
                    "invoice_status": new_status.value,
                },
            )

            transitioned = self._react(invoice) if fully_paid else False
            return self._result(invoice, payment_ref, InvoiceEventStatus.APPLIED, transitioned)

    def _get_payment(self, invoice_id: UUID, payment_ref: str) -> InvoicePaymentModel | None:
        return self.session.execute(
            select(InvoicePaymentModel).where(
                InvoicePaymentModel.invoice_id == invoice_id,
                InvoicePaymentModel.payment_ref == payment_ref,
            )
        ).scalar_one_or_none()

    def _duplicate(
        self,
        invoice: InvoiceModel,
        existing: InvoicePaymentModel,
        amount: int,
    ) -> InvoiceEventResult:
        if existing.amount != amount:
            logger.warning(
                "invoice_payment_mismatch",
                extra={
                    "payment_ref": existing.payment_ref,
                    "recorded": str(existing.amount),
                    "received": str(amount),
                },
            )
            raise InvoicePaymentMismatchError(
                str(invoice.id), existing.payment_ref, existing.amount, amount
            )
        logger.info("invoice_payment_duplicate", extra={"payment_ref": existing.payment_ref})
        return self._result(invoice, existing.payment_ref, InvoiceEventStatus.DUPLICATE, False)

    def _react(self, invoice: InvoiceModel) -> bool:
        """Drive the paid invoice's subject; each reaction is idempotent."""
        invoice_type = InvoiceType(invoice.invoice_type)
        match invoice_type:
            case InvoiceType.LOAN_PRINCIPAL:
                service = OfferService(self.session, self.clock, self.settings)
                return service.on_funding_paid(invoice.offer_id, invoice)
            case InvoiceType.LOAN_COLLATERAL:
                service = ApplicationService(self.session, self.clock, self.settings)
                return service.on_collateral_paid(invoice.application_id, invoice)
            case InvoiceType.LOAN_REPAYMENT:
                service = LoanService(self.session, self.clock, self.settings)
                return service.on_repayment_paid(invoice.loan_id, invoice)
            case _:
                assert_never(invoice_type)

    def _result(
        self,
        invoice: InvoiceModel,
        payment_ref: str,
        status: InvoiceEventStatus,
        transitioned: bool,
    ) -> InvoiceEventResult:
        currency = invoice.currency
        return InvoiceEventResult(
            status=status,
            invoice_id=invoice.id,
            payment_ref=payment_ref,
            invoice_status=InvoiceStatus(invoice.status),
            paid_amount=Amount(invoice.paid_amount, currency),
            invoiced_amount=Amount(invoice.invoiced_amount, currency),
            subject_transitioned=transitioned,
        )
