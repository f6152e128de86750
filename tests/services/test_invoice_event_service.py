"""
Tests for idempotent invoice payment intake.

Delivery is at-least-once: the same (invoice, payment_ref) may arrive any
number of times and must be applied exactly once.
"""

from uuid import uuid4

import pytest

from lending_kernel.domain.values import Amount
from lending_kernel.exceptions import (
    InvalidAmountError,
    InvoiceNotFoundError,
    InvoicePaymentMismatchError,
)
from lending_kernel.models.invoice import InvoiceStatus, InvoiceType
from lending_kernel.services.invoice_event_service import InvoiceEventStatus
from tests.support import E18, USDT


@pytest.fixture
def invoice(invoice_service, deterministic_clock):
    return invoice_service.issue_invoice(
        invoice_type=InvoiceType.LOAN_PRINCIPAL,
        user_id=uuid4(),
        amount=Amount(100 * E18, USDT.key),
        subject_id=uuid4(),
        due_date=deterministic_clock.now(),
    )


@pytest.fixture
def funding_offer(offer_service):
    return offer_service.create_offer(
        lender_id=uuid4(),
        principal_blockchain_key=USDT.key.blockchain_key,
        principal_token_id=USDT.key.token_id,
        total_amount="100",
        interest_rate="0.1",
        term_options=[6],
        min_loan_amount="1",
    )


class TestIssueInvoice:

    def test_issued_pending(self, invoice):
        assert invoice.status == InvoiceStatus.PENDING.value
        assert invoice.paid_amount == 0
        assert invoice.invoiced_amount == 100 * E18

    def test_non_positive_amount_rejected(self, invoice_service, deterministic_clock):
        with pytest.raises(InvalidAmountError):
            invoice_service.issue_invoice(
                invoice_type=InvoiceType.LOAN_PRINCIPAL,
                user_id=uuid4(),
                amount=Amount(0, USDT.key),
                subject_id=uuid4(),
                due_date=deterministic_clock.now(),
            )

    def test_unknown_invoice(self, invoice_service):
        with pytest.raises(InvoiceNotFoundError):
            invoice_service.get_invoice(uuid4())


class TestRecordPayment:

    def test_partial_payments_accumulate(self, invoice_event_service, funding_offer):
        invoice_id = funding_offer.funding_invoice_id

        first = invoice_event_service.record_payment(invoice_id, "tx-1", 30 * E18)
        assert first.status is InvoiceEventStatus.APPLIED
        assert first.invoice_status is InvoiceStatus.PARTIALLY_PAID
        assert first.paid_amount.units == 30 * E18
        assert not first.subject_transitioned

        second = invoice_event_service.record_payment(invoice_id, "tx-2", 70 * E18)
        assert second.invoice_status is InvoiceStatus.PAID
        assert second.paid_amount == second.invoiced_amount
        assert second.subject_transitioned

    def test_redelivery_is_duplicate(self, invoice_event_service, funding_offer, offer_service):
        invoice_id = funding_offer.funding_invoice_id
        applied = invoice_event_service.record_payment(invoice_id, "tx-1", 100 * E18)
        replay = invoice_event_service.record_payment(invoice_id, "tx-1", 100 * E18)

        assert applied.status is InvoiceEventStatus.APPLIED
        assert replay.status is InvoiceEventStatus.DUPLICATE
        assert replay.is_success
        assert replay.paid_amount.units == 100 * E18
        assert not replay.subject_transitioned
        assert offer_service.get_offer(funding_offer.id).available_amount.units == 100 * E18

    def test_redelivered_partial_payment_counted_once(self, invoice_event_service, funding_offer):
        invoice_id = funding_offer.funding_invoice_id
        for _ in range(3):
            result = invoice_event_service.record_payment(invoice_id, "tx-1", 40 * E18)
        assert result.status is InvoiceEventStatus.DUPLICATE
        assert result.paid_amount.units == 40 * E18
        assert result.invoice_status is InvoiceStatus.PARTIALLY_PAID

    def test_redelivery_with_different_amount_rejected(
        self, invoice_event_service, funding_offer, invoice_service
    ):
        invoice_id = funding_offer.funding_invoice_id
        invoice_event_service.record_payment(invoice_id, "tx-1", 40 * E18)
        with pytest.raises(InvoicePaymentMismatchError) as exc_info:
            invoice_event_service.record_payment(invoice_id, "tx-1", 50 * E18)
        assert exc_info.value.recorded == 40 * E18
        assert exc_info.value.received == 50 * E18
        assert invoice_service.get_invoice(invoice_id).paid_amount == 40 * E18

    @pytest.mark.parametrize("amount", [0, -1, "not-a-number", "\u00b2"])
    def test_invalid_amount_rejected(self, invoice_event_service, funding_offer, amount):
        with pytest.raises(InvalidAmountError):
            invoice_event_service.record_payment(funding_offer.funding_invoice_id, "tx-1", amount)

    def test_unknown_invoice(self, invoice_event_service):
        with pytest.raises(InvoiceNotFoundError):
            invoice_event_service.record_payment(uuid4(), "tx-1", E18)

    def test_overpayment_marks_paid(self, invoice_event_service, funding_offer):
        result = invoice_event_service.record_payment(
            funding_offer.funding_invoice_id, "tx-1", 150 * E18
        )
        assert result.invoice_status is InvoiceStatus.PAID
        assert result.paid_amount.units == 150 * E18

    def test_logs_duplicate(self, invoice_event_service, funding_offer, captured_logs):
        invoice_id = funding_offer.funding_invoice_id
        invoice_event_service.record_payment(invoice_id, "tx-1", E18)
        invoice_event_service.record_payment(invoice_id, "tx-1", E18)
        messages = [r["message"] for r in captured_logs()]
        assert messages.count("invoice_payment_applied") == 1
        assert messages.count("invoice_payment_duplicate") == 1
