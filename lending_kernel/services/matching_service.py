"""
MatchingService -- pairs published applications with published offers.

Responsibility:
    Finds offers compatible with an application, matches one of them by
    reserving the application's principal out of the offer's availability,
    and originates the loan for a matched application.

Architecture position:
    Kernel > Services -- imperative shell.  Valuation and the origination
    schedule are delegated to ``lending_engines``.

Invariants enforced:
    - One winner per availability slice: the offer's ``available_amount``
      is decremented with a compare-and-set on its version, so two
      concurrent matches can never both consume the same principal.  The
      loser re-reads the offer and either fits in what is left or gets
      InsufficientAvailabilityError.
    - available + reserved + disbursed == offered at every commit.
    - A lender never matches their own borrower application.
    - A matched application originates exactly one loan.

Failure modes:
    - SelfMatchError when lender and borrower are the same user.
    - IncompatibleOfferError for a currency, term, rate, size or LTV
      mismatch, or an offer that is not published.
    - InsufficientAvailabilityError when the offer cannot cover the
      principal (including after losing a race).
    - IllegalStateTransitionError for an application not in PUBLISHED.
    - LoanAlreadyOriginatedError on a second origination.

Audit relevance:
    ``application_matched`` and ``loan_originated`` log lines carry the
    offer, application and loan ids with integer amounts; every lost race
    logs ``match_lost_race``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from lending_engines.origination import calculate_loan_origination
from lending_engines.valuation import calculate_collateral_valuation, calculate_ltv
from lending_kernel.domain.dtos import (
    ApplicationInfo,
    LoanInfo,
    OfferInfo,
    effective_application_status,
    effective_offer_status,
)
from lending_kernel.domain.lifecycle import (
    APPLICATION_WORKFLOW,
    ApplicationStatus,
    LoanStatus,
    OfferStatus,
)
from lending_kernel.domain.units import quantize_ratio
from lending_kernel.domain.values import Amount
from lending_kernel.exceptions import (
    ApplicationNotFoundError,
    IllegalStateTransitionError,
    IncompatibleOfferError,
    InsufficientAvailabilityError,
    LoanAlreadyOriginatedError,
    OfferNotFoundError,
    SelfMatchError,
)
from lending_kernel.logging_config import LogContext, get_logger
from lending_kernel.models.loan import LoanModel
from lending_kernel.models.loan_application import LoanApplicationModel
from lending_kernel.models.loan_offer import LoanOfferModel
from lending_kernel.services.base import SYSTEM_ACTOR_ID, BaseService
from lending_kernel.services.reference_data_service import ReferenceDataService

logger = get_logger("services.matching")


@dataclass(frozen=True)
class MatchResult:
    """A matched application and the offer that now reserves its principal."""

    application: ApplicationInfo
    offer: OfferInfo
    matched_ltv_ratio: Decimal
    matched_collateral_valuation: Amount
    interest_rate: Decimal


def _incompatibility(
    offer: LoanOfferModel,
    application: LoanApplicationModel,
) -> str | None:
    """First reason ``offer`` cannot serve ``application``, or None."""
    if offer.principal_currency != application.principal_currency:
        return "principal currency differs"
    if application.term_in_months not in offer.term_options:
        return f"term {application.term_in_months} not in {sorted(offer.term_options)}"
    if offer.interest_rate > application.max_interest_rate:
        return (
            f"interest rate {offer.interest_rate} exceeds maximum "
            f"{application.max_interest_rate}"
        )
    if application.principal_amount < offer.min_loan_amount:
        return "principal below the offer's minimum loan amount"
    if application.principal_amount > offer.max_loan_amount:
        return "principal above the offer's maximum loan amount"
    return None


class MatchingService(BaseService[LoanOfferModel]):
    """Marketplace matching and loan origination."""

    def _load_application(self, application_id: UUID, *, lock: bool = False) -> LoanApplicationModel:
        application = (
            self.lock_row(LoanApplicationModel, application_id)
            if lock
            else self.session.get(LoanApplicationModel, application_id)
        )
        if application is None:
            raise ApplicationNotFoundError(str(application_id))
        return application

    def _lock_offer(self, offer_id: UUID) -> LoanOfferModel:
        offer = self.lock_row(LoanOfferModel, offer_id)
        if offer is None:
            raise OfferNotFoundError(str(offer_id))
        return offer

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def find_compatible_offers(self, application_id: UUID) -> list[OfferInfo]:
        """
        Published offers able to serve the application, cheapest first.

        Ties on interest rate go to the older offer.  Returns an empty list
        when the application is not (effectively) PUBLISHED.
        """
        now = self.clock.now()
        application = self._load_application(application_id)
        if effective_application_status(application, now) is not ApplicationStatus.PUBLISHED:
            return []

        candidates = self.session.execute(
            select(LoanOfferModel).where(
                LoanOfferModel.status == OfferStatus.PUBLISHED.value,
                LoanOfferModel.principal_blockchain_key == application.principal_blockchain_key,
                LoanOfferModel.principal_token_id == application.principal_token_id,
                LoanOfferModel.lender_id != application.borrower_id,
                LoanOfferModel.expiration_date > now,
            )
        ).scalars().all()

        # Amounts and rates are text on SQLite; compare them here.
        compatible = [
            offer
            for offer in candidates
            if _incompatibility(offer, application) is None
            and application.principal_amount <= offer.available_amount
        ]
        compatible.sort(key=lambda o: (o.interest_rate, o.creation_date))
        return [OfferInfo.from_model(offer, as_of=now) for offer in compatible]

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def match_application(self, application_id: UUID, offer_id: UUID) -> MatchResult:
        """
        Reserve the application's principal out of the offer and mark the
        application MATCHED.

        Raises:
            InsufficientAvailabilityError: the offer's availability is below
                the principal, possibly because a concurrent match won.
        """
        now = self.clock.now()
        application = self._load_application(application_id, lock=True)
        effective = effective_application_status(application, now)
        APPLICATION_WORKFLOW.apply(effective, "match", str(application_id))

        offer = self._lock_offer(offer_id)
        offer_status = effective_offer_status(offer, now)
        if offer_status is not OfferStatus.PUBLISHED:
            raise IncompatibleOfferError(
                str(offer_id), str(application_id), f"offer is {offer_status.value}"
            )
        if offer.lender_id == application.borrower_id:
            raise SelfMatchError(str(offer.lender_id))
        reason = _incompatibility(offer, application)
        if reason is not None:
            raise IncompatibleOfferError(str(offer_id), str(application_id), reason)

        reference = ReferenceDataService(self.session, self.clock, self.settings)
        principal_currency = reference.require_currency(application.principal_currency)
        collateral_currency = reference.require_currency(application.collateral_currency)
        principal = Amount(application.principal_amount, principal_currency.key)
        valuation = calculate_collateral_valuation(
            collateral=Amount(application.collateral_deposit_amount, collateral_currency.key),
            collateral_currency=collateral_currency,
            principal_currency=principal_currency,
            exchange_rate=reference.latest_exchange_rate(collateral_currency.key, as_of=now),
            quote_precision=self.settings.quote_precision,
        )
        ltv = calculate_ltv(principal, valuation.exact_units)
        if ltv > application.max_ltv_ratio:
            raise IncompatibleOfferError(
                str(offer_id),
                str(application_id),
                f"LTV {quantize_ratio(ltv)} exceeds maximum {application.max_ltv_ratio}",
            )

        self._reserve(offer, principal.units, application_id)
        self.transition(
            application,
            APPLICATION_WORKFLOW,
            "match",
            actor_id=SYSTEM_ACTOR_ID,
            matched_offer_id=offer.id,
            matched_date=now,
            matched_ltv_ratio=quantize_ratio(ltv),
            matched_collateral_valuation=valuation.value.units,
        )

        with LogContext.bind(offer_id=str(offer.id), application_id=str(application_id)):
            logger.info(
                "application_matched",
                extra={
                    "principal_amount": str(principal.units),
                    "available_amount": str(offer.available_amount),
                    "interest_rate": str(offer.interest_rate),
                    "matched_ltv_ratio": str(quantize_ratio(ltv)),
                    "matched_collateral_valuation": str(valuation.value.units),
                },
            )
        return MatchResult(
            application=ApplicationInfo.from_model(application, as_of=now),
            offer=OfferInfo.from_model(offer, as_of=now),
            matched_ltv_ratio=application.matched_ltv_ratio,
            matched_collateral_valuation=valuation.value,
            interest_rate=offer.interest_rate,
        )

    def _reserve(self, offer: LoanOfferModel, units: int, application_id: UUID) -> None:
        """Move ``units`` from available to reserved, one winner per slice."""
        offer_id = offer.id
        for attempt in range(self.settings.match_retry_limit):
            if offer.lifecycle_status is not OfferStatus.PUBLISHED:
                raise IncompatibleOfferError(
                    str(offer_id), str(application_id), f"offer is {offer.lifecycle_status.value}"
                )
            if offer.available_amount < units:
                raise InsufficientAvailabilityError(str(offer_id), units, offer.available_amount)
            written = self.compare_and_set(
                offer,
                offer.version,
                available_amount=offer.available_amount - units,
                reserved_amount=offer.reserved_amount + units,
                updated_by_id=SYSTEM_ACTOR_ID,
            )
            if written:
                return
            logger.warning(
                "match_lost_race",
                extra={"offer_id": str(offer_id), "requested": str(units), "attempt": attempt + 1},
            )
            offer = self._lock_offer(offer_id)
        raise InsufficientAvailabilityError(str(offer_id), units, offer.available_amount)

    # ------------------------------------------------------------------
    # Origination
    # ------------------------------------------------------------------

    def _existing_loan(self, application_id: UUID) -> LoanModel | None:
        return self.session.execute(
            select(LoanModel).where(LoanModel.application_id == application_id)
        ).scalar_one_or_none()

    def originate_loan(self, application_id: UUID) -> LoanInfo:
        """
        Create the DRAFT loan for a matched application.

        The schedule is computed with the provision rate the application was
        sized with and the fee rates of the policy effective now.  The
        offer's reservation moves to ``disbursed_amount``.
        """
        now: datetime = self.clock.now()
        application = self._load_application(application_id, lock=True)
        if application.lifecycle_status is not ApplicationStatus.MATCHED:
            raise IllegalStateTransitionError(
                entity_type=APPLICATION_WORKFLOW.name,
                entity_id=str(application_id),
                current_state=application.lifecycle_status.value,
                action="originate",
            )
        existing = self._existing_loan(application_id)
        if existing is not None:
            raise LoanAlreadyOriginatedError(str(application_id), str(existing.id))

        offer = self._lock_offer(application.matched_offer_id)
        reference = ReferenceDataService(self.session, self.clock, self.settings)
        policy = reference.effective_risk_policy(now)
        p = application.principal_currency
        principal = Amount(application.principal_amount, p)
        schedule = calculate_loan_origination(
            principal=principal,
            interest_rate=offer.interest_rate,
            term_in_months=int(application.term_in_months),
            collateral=Amount(application.collateral_deposit_amount, application.collateral_currency),
            matched_ltv_ratio=application.matched_ltv_ratio,
            matched_collateral_valuation=Amount(application.matched_collateral_valuation, p),
            policy=policy,
            origination_date=now,
            provision_rate=application.provision_rate,
        )

        loan = LoanModel(
            application_id=application.id,
            offer_id=offer.id,
            borrower_id=application.borrower_id,
            lender_id=offer.lender_id,
            principal_blockchain_key=application.principal_blockchain_key,
            principal_token_id=application.principal_token_id,
            collateral_blockchain_key=application.collateral_blockchain_key,
            collateral_token_id=application.collateral_token_id,
            principal_amount=schedule.principal.units,
            interest_rate=schedule.interest_rate,
            term_in_months=schedule.term_in_months,
            provision_rate=schedule.provision_rate,
            interest_amount=schedule.interest.units,
            premi_amount=schedule.premi.units,
            liquidation_fee_amount=schedule.liquidation_fee.units,
            repayment_amount=schedule.repayment.units,
            redelivery_fee_amount=schedule.redelivery_fee.units,
            redelivery_amount=schedule.redelivery.units,
            min_collateral_valuation=schedule.min_collateral_valuation.units,
            margin_call_ltv=quantize_ratio(schedule.margin_call_ltv),
            collateral_amount=schedule.collateral.units,
            matched_ltv_ratio=schedule.matched_ltv_ratio,
            matched_collateral_valuation=schedule.matched_collateral_valuation.units,
            policy_version=schedule.policy_version,
            origination_date=schedule.origination_date,
            maturity_date=schedule.maturity_date,
            status=LoanStatus.DRAFT.value,
            created_by_id=SYSTEM_ACTOR_ID,
        )
        try:
            with self.session.begin_nested():
                self.session.add(loan)
                self.session.flush()
        except IntegrityError as e:
            winner = self._existing_loan(application_id)
            raise LoanAlreadyOriginatedError(
                str(application_id), str(winner.id) if winner is not None else "unknown"
            ) from e

        self._disburse_reservation(offer, principal.units)

        with LogContext.bind(
            offer_id=str(offer.id), application_id=str(application_id), loan_id=str(loan.id)
        ):
            logger.info(
                "loan_originated",
                extra={
                    "principal_amount": str(schedule.principal.units),
                    "interest_amount": str(schedule.interest.units),
                    "premi_amount": str(schedule.premi.units),
                    "repayment_amount": str(schedule.repayment.units),
                    "min_collateral_valuation": str(schedule.min_collateral_valuation.units),
                    "margin_call_ltv": str(loan.margin_call_ltv),
                    "maturity_date": schedule.maturity_date.isoformat(),
                    "policy_version": schedule.policy_version,
                },
            )
        return LoanInfo.from_model(loan)

    def _disburse_reservation(self, offer: LoanOfferModel, units: int) -> None:
        offer_id = offer.id
        for _ in range(self.settings.match_retry_limit):
            written = self.compare_and_set(
                offer,
                offer.version,
                reserved_amount=offer.reserved_amount - units,
                disbursed_amount=offer.disbursed_amount + units,
                updated_by_id=SYSTEM_ACTOR_ID,
            )
            if written:
                return
            offer = self._lock_offer(offer_id)
        raise IllegalStateTransitionError(
            entity_type="loan_offer",
            entity_id=str(offer_id),
            current_state=offer.lifecycle_status.value,
            action="disburse_reservation",
        )
