"""
OfferService -- lender offers from creation through funding to closure.

Responsibility:
    Creates offers (converting human amounts with the principal currency's
    decimals), issues their funding invoices, publishes them when funding
    is paid, closes them on lender request and expires them on sweep.

Architecture position:
    Kernel > Services -- imperative shell.  Every status write goes through
    ``OFFER_WORKFLOW`` and a compare-and-set on the offer's version.

Invariants enforced:
    - min_loan_amount <= max_loan_amount <= offered_amount, and both lie
      within the principal currency's loan bounds.
    - The interest rate lies within the effective policy's bounds.
    - An offer is published only when its funding invoice is paid in full;
      replaying the paid event never publishes twice.
    - When ``settings.is_production`` is set, the creation date must lie
      within ``settings.creation_date_tolerance`` of the clock.
    - A CLOSED or EXPIRED offer's availability is never written again.

Failure modes:
    - CurrencyNotSupportedError for an unknown principal currency.
    - RateOutOfPolicyBoundsError, InvalidAmountError, InvalidTermError,
      InvalidDateError, CreationDateOutOfWindowError for bad requests.
    - OfferNotFoundError for an unknown offer or one owned by someone else.
    - IllegalStateTransitionError when closing a terminal offer.

Audit relevance:
    ``offer_created``, ``offer_published`` and ``offer_closed`` log lines
    carry the offer id and integer amounts; sweeps log ``offers_expired``.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from lending_kernel.domain.dates import add_days
from lending_kernel.domain.dtos import OfferInfo, effective_offer_status
from lending_kernel.domain.lifecycle import OFFER_WORKFLOW, OfferStatus
from lending_kernel.domain.units import HumanAmount, to_units
from lending_kernel.domain.values import Amount
from lending_kernel.exceptions import (
    CreationDateOutOfWindowError,
    IllegalStateTransitionError,
    InvalidAmountError,
    InvalidDateError,
    InvalidTermError,
    OfferNotFoundError,
    RateOutOfPolicyBoundsError,
)
from lending_kernel.logging_config import LogContext, get_logger
from lending_kernel.models.invoice import InvoiceModel, InvoiceType
from lending_kernel.models.loan_offer import LoanOfferModel
from lending_kernel.services.base import SYSTEM_ACTOR_ID, BaseService
from lending_kernel.services.invoice_service import InvoiceService
from lending_kernel.services.reference_data_service import ReferenceDataService

logger = get_logger("services.offer")

EXPIRED_REASON = "Expired"


def normalize_term_options(term_options: Sequence[int]) -> list[int]:
    """Sorted, de-duplicated positive month counts."""
    terms = list(term_options or ())
    if not terms:
        raise InvalidTermError(0, ())
    for term in terms:
        if isinstance(term, bool) or not isinstance(term, int) or term <= 0:
            raise InvalidTermError(term, tuple(terms))
    return sorted(set(terms))


class OfferService(BaseService[LoanOfferModel]):
    """
    Lender-side offer operations.

    Contract:
        Methods return ``OfferInfo`` DTOs.  The caller owns the
        transaction; nothing here commits.
    """

    def create_offer(
        self,
        *,
        lender_id: UUID,
        principal_blockchain_key: str,
        principal_token_id: str,
        total_amount: HumanAmount,
        interest_rate: Decimal | str,
        term_options: Sequence[int],
        min_loan_amount: HumanAmount | None = None,
        max_loan_amount: HumanAmount | None = None,
        expiration_date: datetime | None = None,
        creation_date: datetime | None = None,
    ) -> OfferInfo:
        """
        Create an offer in FUNDING and issue its funding invoice.

        Amounts are human-readable values of the principal currency and are
        truncated to its smallest unit.  ``min_loan_amount`` defaults to
        ``settings.default_min_loan_amount``; ``max_loan_amount`` to the
        total.
        """
        now = self.clock.now()
        creation_date = self._check_creation_date(creation_date, now)
        expiration_date = expiration_date or add_days(
            creation_date, self.settings.offer_expiry_days
        )
        if expiration_date <= creation_date:
            raise InvalidDateError(
                "expiration_date",
                expiration_date.isoformat(),
                "must be after the creation date",
            )

        reference = ReferenceDataService(self.session, self.clock, self.settings)
        currency = reference.get_currency(principal_blockchain_key, principal_token_id)
        policy = reference.effective_risk_policy(creation_date)
        rate = policy.check_interest_rate(interest_rate)
        terms = normalize_term_options(term_options)

        offered = to_units(total_amount, currency.decimals)
        minimum = to_units(
            self.settings.default_min_loan_amount if min_loan_amount is None else min_loan_amount,
            currency.decimals,
        )
        maximum = offered if max_loan_amount is None else to_units(
            max_loan_amount, currency.decimals
        )
        if offered <= 0:
            raise InvalidAmountError("total_amount", total_amount, "must be positive")
        if minimum <= 0:
            raise InvalidAmountError("min_loan_amount", min_loan_amount, "must be positive")
        currency.check_principal(minimum, "min_loan_amount")
        currency.check_principal(maximum, "max_loan_amount")
        if minimum > maximum:
            raise RateOutOfPolicyBoundsError(
                "min_loan_amount", minimum, currency.min_loan_principal_amount, maximum
            )
        if maximum > offered:
            raise RateOutOfPolicyBoundsError("max_loan_amount", maximum, minimum, offered)

        offer = LoanOfferModel(
            lender_id=lender_id,
            principal_blockchain_key=currency.key.blockchain_key,
            principal_token_id=currency.key.token_id,
            offered_amount=offered,
            available_amount=offered,
            reserved_amount=0,
            disbursed_amount=0,
            min_loan_amount=minimum,
            max_loan_amount=maximum,
            interest_rate=rate,
            term_options=terms,
            status=OfferStatus.FUNDING.value,
            creation_date=creation_date,
            expiration_date=expiration_date,
            created_by_id=lender_id,
        )
        self.session.add(offer)
        self.session.flush()

        invoice = InvoiceService(self.session, self.clock, self.settings).issue_invoice(
            invoice_type=InvoiceType.LOAN_PRINCIPAL,
            user_id=lender_id,
            amount=Amount(offered, currency.key),
            subject_id=offer.id,
            due_date=expiration_date,
        )
        offer.funding_invoice_id = invoice.id
        self.session.flush()

        with LogContext.bind(offer_id=str(offer.id), invoice_id=str(invoice.id)):
            logger.info(
                "offer_created",
                extra={
                    "lender_id": str(lender_id),
                    "currency": str(currency.key),
                    "offered_amount": str(offered),
                    "min_loan_amount": str(minimum),
                    "max_loan_amount": str(maximum),
                    "interest_rate": str(rate),
                    "term_options": terms,
                    "policy_version": policy.version,
                },
            )
        return OfferInfo.from_model(offer, as_of=now)

    def _check_creation_date(self, creation_date: datetime | None, now: datetime) -> datetime:
        if creation_date is None:
            return now
        if creation_date.tzinfo is None:
            raise InvalidDateError(
                "creation_date", creation_date.isoformat(), "must be timezone-aware"
            )
        if self.settings.is_production:
            tolerance = self.settings.creation_date_tolerance
            if abs(creation_date - now) > tolerance:
                raise CreationDateOutOfWindowError(
                    creation_date.isoformat(),
                    now.isoformat(),
                    int(tolerance.total_seconds()),
                )
        return creation_date

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _load(self, offer_id: UUID, *, lock: bool = False) -> LoanOfferModel:
        offer = (
            self.lock_row(LoanOfferModel, offer_id)
            if lock
            else self.session.get(LoanOfferModel, offer_id)
        )
        if offer is None:
            raise OfferNotFoundError(str(offer_id))
        return offer

    def get_offer(self, offer_id: UUID) -> OfferInfo:
        """Offer as of now; a passed expiration date reads as EXPIRED."""
        return OfferInfo.from_model(self._load(offer_id), as_of=self.clock.now())

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def close_offer(
        self,
        offer_id: UUID,
        lender_id: UUID,
        reason: str | None = None,
    ) -> OfferInfo:
        """
        Lender closes their offer; remaining availability is frozen.

        Raises:
            OfferNotFoundError: no such offer for this lender.
            IllegalStateTransitionError: the offer is already closed or
                expired (including passively expired).
        """
        now = self.clock.now()
        offer = self._load(offer_id, lock=True)
        if offer.lender_id != lender_id:
            raise OfferNotFoundError(str(offer_id))

        effective = effective_offer_status(offer, now)
        if effective is OfferStatus.EXPIRED:
            raise IllegalStateTransitionError(
                entity_type=OFFER_WORKFLOW.name,
                entity_id=str(offer_id),
                current_state=effective.value,
                action="close",
            )

        self.transition(
            offer,
            OFFER_WORKFLOW,
            "close",
            actor_id=lender_id,
            closed_date=now,
            closure_reason=reason,
        )
        logger.info(
            "offer_closed",
            extra={
                "offer_id": str(offer_id),
                "reason": reason,
                "frozen_available_amount": str(offer.available_amount),
            },
        )
        return OfferInfo.from_model(offer, as_of=now)

    def on_funding_paid(self, offer_id: UUID, invoice: InvoiceModel) -> bool:
        """
        React to the funding invoice reaching a paid state.

        Returns True if this call published the offer.  A replay against an
        already-published offer, a partial payment, or a payment arriving
        after the offer closed or expired is a logged no-op.
        """
        now = self.clock.now()
        offer = self._load(offer_id, lock=True)
        status = offer.lifecycle_status

        if status is not OfferStatus.FUNDING:
            logger.info(
                "offer_funding_event_ignored",
                extra={"offer_id": str(offer_id), "status": status.value},
            )
            return False
        if invoice.paid_amount < offer.offered_amount:
            logger.info(
                "offer_funding_partial",
                extra={
                    "offer_id": str(offer_id),
                    "paid_amount": str(invoice.paid_amount),
                    "offered_amount": str(offer.offered_amount),
                },
            )
            return False
        if offer.is_past_expiration(now):
            logger.warning(
                "offer_funding_after_expiration",
                extra={"offer_id": str(offer_id), "invoice_id": str(invoice.id)},
            )
            return False

        self.transition(
            offer,
            OFFER_WORKFLOW,
            "funding_paid",
            actor_id=SYSTEM_ACTOR_ID,
            published_date=invoice.paid_date or now,
        )
        logger.info(
            "offer_published",
            extra={"offer_id": str(offer_id), "available_amount": str(offer.available_amount)},
        )
        return True

    def expire_due_offers(self, as_of: datetime | None = None) -> int:
        """Persist EXPIRED for FUNDING/PUBLISHED offers past their expiration."""
        as_of = as_of or self.clock.now()
        due_ids = self.session.execute(
            select(LoanOfferModel.id).where(
                LoanOfferModel.status.in_(
                    [OfferStatus.FUNDING.value, OfferStatus.PUBLISHED.value]
                ),
                LoanOfferModel.expiration_date <= as_of,
            )
        ).scalars().all()

        expired = 0
        for offer_id in due_ids:
            offer = self._load(offer_id, lock=True)
            if not OFFER_WORKFLOW.can(offer.lifecycle_status, "expire"):
                continue
            self.transition(
                offer,
                OFFER_WORKFLOW,
                "expire",
                actor_id=SYSTEM_ACTOR_ID,
                closed_date=as_of,
                closure_reason=EXPIRED_REASON,
            )
            expired += 1

        logger.info(
            "offers_expired",
            extra={"as_of": as_of.isoformat(), "candidates": len(due_ids), "expired": expired},
        )
        return expired
