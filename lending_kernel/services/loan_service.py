"""
LoanService -- originated loans from disbursement to a terminal outcome.

Responsibility:
    Activates loans on disbursement, runs the two-phase early-exit
    protocol (side-effect-free estimate, then an acknowledged request that
    parks the loan in a PENDING_* state), settles those requests, marks
    maturity and default, and records LTV valuations for monitoring.

Architecture position:
    Kernel > Services -- imperative shell.  Estimates are delegated to
    ``lending_engines.early_exit`` and ``lending_engines.valuation``;
    status writes go through ``LOAN_WORKFLOW``.

Invariants enforced:
    - Estimates never write: calling them any number of times leaves the
      database unchanged.
    - A request without ``acknowledgment=True`` is rejected before any
      row is read or locked.
    - The economic schedule written at origination is never updated; only
      status, outcome and monitoring columns change.
    - Early repayment charges the full scheduled interest.

Failure modes:
    - PreconditionNotAcknowledgedError for an unacknowledged request.
    - LoanNotFoundError for an unknown loan or one owned by someone else.
    - IllegalStateTransitionError for an action not legal from the loan's
      state (including maturing before the maturity date).
    - ExchangeRateNotFoundError when no collateral price is available.
    - StaleRecordError when a valuation loses the write race to another
      transaction on every retry.

Audit relevance:
    EarlyExitRequestModel rows keep the estimate the borrower acknowledged;
    LoanValuationModel rows keep the LTV history.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from lending_engines.early_exit import (
    EarlyLiquidationEstimate,
    EarlyRepaymentEstimate,
    estimate_early_liquidation,
    estimate_early_repayment,
)
from lending_engines.valuation import calculate_collateral_valuation, calculate_ltv
from lending_kernel.domain.dtos import EarlyExitInfo, LoanInfo, LoanValuationInfo
from lending_kernel.domain.lifecycle import LOAN_WORKFLOW, LoanStatus
from lending_kernel.domain.units import quantize_ratio
from lending_kernel.domain.values import Amount
from lending_kernel.exceptions import (
    IllegalStateTransitionError,
    LoanNotFoundError,
    PreconditionNotAcknowledgedError,
    StaleRecordError,
)
from lending_kernel.logging_config import LogContext, get_logger
from lending_kernel.models.invoice import InvoiceModel, InvoiceType
from lending_kernel.models.loan import (
    EarlyExitRequestModel,
    EarlyExitRequestStatus,
    EarlyExitType,
    LoanModel,
    LoanValuationModel,
)
from lending_kernel.services.base import SYSTEM_ACTOR_ID, BaseService
from lending_kernel.services.invoice_service import InvoiceService
from lending_kernel.services.reference_data_service import ReferenceDataService

logger = get_logger("services.loan")


class LoanService(BaseService[LoanModel]):
    """Operations on originated loans."""

    def _load(self, loan_id: UUID, *, lock: bool = False) -> LoanModel:
        loan = (
            self.lock_row(LoanModel, loan_id)
            if lock
            else self.session.get(LoanModel, loan_id)
        )
        if loan is None:
            raise LoanNotFoundError(str(loan_id))
        return loan

    def _load_owned(self, loan_id: UUID, borrower_id: UUID) -> LoanModel:
        loan = self._load(loan_id, lock=True)
        if loan.borrower_id != borrower_id:
            raise LoanNotFoundError(str(loan_id))
        return loan

    def _require_action(self, loan: LoanModel, action: str) -> None:
        LOAN_WORKFLOW.apply(loan.lifecycle_status, action, str(loan.id))

    def _pending_request(self, loan: LoanModel, exit_type: EarlyExitType) -> EarlyExitRequestModel | None:
        return self.session.execute(
            select(EarlyExitRequestModel)
            .where(
                EarlyExitRequestModel.loan_id == loan.id,
                EarlyExitRequestModel.exit_type == exit_type.value,
                EarlyExitRequestModel.status == EarlyExitRequestStatus.PENDING.value,
            )
            .order_by(EarlyExitRequestModel.request_date.desc())
            .limit(1)
        ).scalar_one_or_none()

    def get_loan(self, loan_id: UUID) -> LoanInfo:
        return LoanInfo.from_model(self._load(loan_id))

    # ------------------------------------------------------------------
    # Disbursement, maturity, default
    # ------------------------------------------------------------------

    def disburse_principal(self, loan_id: UUID, actor_id: UUID | None = None) -> LoanInfo:
        """DRAFT -> ACTIVE once the principal has been sent to the borrower."""
        now = self.clock.now()
        loan = self._load(loan_id, lock=True)
        self.transition(
            loan, LOAN_WORKFLOW, "disburse", actor_id=actor_id, disbursement_date=now
        )
        logger.info(
            "loan_disbursed",
            extra={"loan_id": str(loan_id), "principal_amount": str(loan.principal_amount)},
        )
        return LoanInfo.from_model(loan)

    def mark_matured(self, loan_id: UUID) -> LoanInfo:
        """
        ACTIVE -> MATURED.

        Raises:
            IllegalStateTransitionError: the loan is not ACTIVE or its
                maturity date has not been reached.
        """
        now = self.clock.now()
        loan = self._load(loan_id, lock=True)
        if now < loan.maturity_date:
            raise IllegalStateTransitionError(
                entity_type=LOAN_WORKFLOW.name,
                entity_id=str(loan_id),
                current_state=loan.lifecycle_status.value,
                action="mature",
            )
        self.transition(
            loan, LOAN_WORKFLOW, "mature", actor_id=SYSTEM_ACTOR_ID, concluded_date=now
        )
        logger.info("loan_matured", extra={"loan_id": str(loan_id)})
        return LoanInfo.from_model(loan)

    def mark_defaulted(self, loan_id: UUID) -> LoanInfo:
        now = self.clock.now()
        loan = self._load(loan_id, lock=True)
        self.transition(
            loan, LOAN_WORKFLOW, "default", actor_id=SYSTEM_ACTOR_ID, concluded_date=now
        )
        logger.warning("loan_defaulted", extra={"loan_id": str(loan_id)})
        return LoanInfo.from_model(loan)

    # ------------------------------------------------------------------
    # Early liquidation
    # ------------------------------------------------------------------

    def _liquidation_estimate(self, loan: LoanModel, now: datetime) -> EarlyLiquidationEstimate:
        reference = ReferenceDataService(self.session, self.clock, self.settings)
        principal_currency = reference.require_currency(loan.principal_currency)
        collateral_currency = reference.require_currency(loan.collateral_currency)
        p = loan.principal_currency
        return estimate_early_liquidation(
            principal=Amount(loan.principal_amount, p),
            interest=Amount(loan.interest_amount, p),
            premi=Amount(loan.premi_amount, p),
            liquidation_fee=Amount(loan.liquidation_fee_amount, p),
            collateral=Amount(loan.collateral_amount, loan.collateral_currency),
            principal_currency=principal_currency,
            collateral_currency=collateral_currency,
            exchange_rate=reference.latest_exchange_rate(loan.collateral_currency, as_of=now),
            policy=reference.effective_risk_policy(now),
            calculation_date=now,
            quote_precision=self.settings.quote_precision,
        )

    def estimate_early_liquidation(self, loan_id: UUID) -> EarlyLiquidationEstimate:
        """
        What liquidating the collateral now would raise.

        A negative ``estimated_surplus_deficit`` is a deficit, reported
        rather than raised.
        """
        now = self.clock.now()
        loan = self._load(loan_id)
        self._require_action(loan, "request_early_liquidation")
        return self._liquidation_estimate(loan, now)

    def request_early_liquidation(
        self,
        loan_id: UUID,
        borrower_id: UUID,
        acknowledgment: bool,
    ) -> EarlyExitInfo:
        """
        ACTIVE -> PENDING_LIQUIDATION with the acknowledged estimate recorded.

        Raises:
            PreconditionNotAcknowledgedError: ``acknowledgment`` is not True.
        """
        if acknowledgment is not True:
            raise PreconditionNotAcknowledgedError(str(loan_id), "request_early_liquidation")

        now = self.clock.now()
        loan = self._load_owned(loan_id, borrower_id)
        self._require_action(loan, "request_early_liquidation")
        estimate = self._liquidation_estimate(loan, now)

        self.transition(loan, LOAN_WORKFLOW, "request_early_liquidation", actor_id=borrower_id)
        request = EarlyExitRequestModel(
            loan_id=loan.id,
            exit_type=EarlyExitType.LIQUIDATION.value,
            status=EarlyExitRequestStatus.PENDING.value,
            acknowledged=True,
            request_date=now,
            total_outstanding=estimate.total_outstanding.units,
            current_valuation=estimate.current_valuation.units,
            estimated_liquidation=estimate.estimated_liquidation.units,
            surplus_deficit=estimate.estimated_surplus_deficit.units,
            created_by_id=borrower_id,
        )
        self.session.add(request)
        self.session.flush()

        with LogContext.bind(loan_id=str(loan_id)):
            logger.info(
                "early_liquidation_requested",
                extra={
                    "request_id": str(request.id),
                    "total_outstanding": str(estimate.total_outstanding.units),
                    "estimated_liquidation": str(estimate.estimated_liquidation.units),
                    "surplus_deficit": str(estimate.estimated_surplus_deficit.units),
                    "current_ltv": str(estimate.current_ltv),
                },
            )
        return EarlyExitInfo.from_model(request, loan.principal_currency)

    def settle_early_liquidation(self, loan_id: UUID, succeeded: bool = True) -> LoanInfo:
        """
        Settlement collaborator reports the outcome of a pending liquidation.

        Success concludes the loan as EARLY_LIQUIDATED; failure returns it
        to ACTIVE and marks the request FAILED.
        """
        now = self.clock.now()
        loan = self._load(loan_id, lock=True)
        action = "settle_liquidation" if succeeded else "liquidation_failed"
        values = {"concluded_date": now} if succeeded else {}
        self.transition(loan, LOAN_WORKFLOW, action, actor_id=SYSTEM_ACTOR_ID, **values)

        request = self._pending_request(loan, EarlyExitType.LIQUIDATION)
        if request is not None:
            request.status = (
                EarlyExitRequestStatus.SETTLED if succeeded else EarlyExitRequestStatus.FAILED
            ).value
            request.settled_date = now
            request.updated_by_id = SYSTEM_ACTOR_ID
            self.session.flush()

        logger.info(
            "early_liquidation_settled" if succeeded else "early_liquidation_failed",
            extra={"loan_id": str(loan_id)},
        )
        return LoanInfo.from_model(loan)

    # ------------------------------------------------------------------
    # Early repayment
    # ------------------------------------------------------------------

    def _repayment_estimate(self, loan: LoanModel, now: datetime) -> EarlyRepaymentEstimate:
        p = loan.principal_currency
        return estimate_early_repayment(
            origination_date=loan.origination_date,
            maturity_date=loan.maturity_date,
            calculation_date=now,
            repayment=Amount(loan.repayment_amount, p),
            interest=Amount(loan.interest_amount, p),
        )

    def estimate_early_repayment(self, loan_id: UUID) -> EarlyRepaymentEstimate:
        now = self.clock.now()
        loan = self._load(loan_id)
        self._require_action(loan, "request_early_repayment")
        return self._repayment_estimate(loan, now)

    def request_early_repayment(
        self,
        loan_id: UUID,
        borrower_id: UUID,
        acknowledgment: bool,
    ) -> EarlyExitInfo:
        """
        ACTIVE -> PENDING_REPAYMENT and issue a repayment invoice.

        The invoice is for the full scheduled repayment; interest is not
        pro-rated for the unused term.
        """
        if acknowledgment is not True:
            raise PreconditionNotAcknowledgedError(str(loan_id), "request_early_repayment")

        now = self.clock.now()
        loan = self._load_owned(loan_id, borrower_id)
        self._require_action(loan, "request_early_repayment")
        estimate = self._repayment_estimate(loan, now)

        self.transition(loan, LOAN_WORKFLOW, "request_early_repayment", actor_id=borrower_id)
        invoice = InvoiceService(self.session, self.clock, self.settings).issue_invoice(
            invoice_type=InvoiceType.LOAN_REPAYMENT,
            user_id=borrower_id,
            amount=estimate.total_repayment,
            subject_id=loan.id,
            due_date=loan.maturity_date,
        )
        request = EarlyExitRequestModel(
            loan_id=loan.id,
            exit_type=EarlyExitType.REPAYMENT.value,
            status=EarlyExitRequestStatus.PENDING.value,
            acknowledged=True,
            request_date=now,
            total_outstanding=estimate.total_repayment.units,
            remaining_term_days=estimate.remaining_term_days,
            repayment_invoice_id=invoice.id,
            created_by_id=borrower_id,
        )
        self.session.add(request)
        self.session.flush()

        with LogContext.bind(loan_id=str(loan_id), invoice_id=str(invoice.id)):
            logger.info(
                "early_repayment_requested",
                extra={
                    "request_id": str(request.id),
                    "total_repayment": str(estimate.total_repayment.units),
                    "remaining_term_days": estimate.remaining_term_days,
                },
            )
        return EarlyExitInfo.from_model(request, loan.principal_currency)

    def on_repayment_paid(self, loan_id: UUID, invoice: InvoiceModel) -> bool:
        """PENDING_REPAYMENT -> EARLY_REPAID once the repayment invoice is paid."""
        now = self.clock.now()
        loan = self._load(loan_id, lock=True)
        if loan.lifecycle_status is not LoanStatus.PENDING_REPAYMENT:
            logger.info(
                "loan_repayment_event_ignored",
                extra={"loan_id": str(loan_id), "status": loan.lifecycle_status.value},
            )
            return False
        if invoice.paid_amount < invoice.invoiced_amount:
            return False

        self.transition(
            loan,
            LOAN_WORKFLOW,
            "settle_repayment",
            actor_id=SYSTEM_ACTOR_ID,
            concluded_date=invoice.paid_date or now,
        )
        request = self._pending_request(loan, EarlyExitType.REPAYMENT)
        if request is not None:
            request.status = EarlyExitRequestStatus.SETTLED.value
            request.settled_date = invoice.paid_date or now
            request.updated_by_id = SYSTEM_ACTOR_ID
            self.session.flush()

        logger.info("early_repayment_settled", extra={"loan_id": str(loan_id)})
        return True

    # ------------------------------------------------------------------
    # LTV monitoring
    # ------------------------------------------------------------------

    def record_valuation(self, loan_id: UUID) -> LoanValuationInfo:
        """
        Value an active loan's collateral at the latest bid and store it.

        The loan's ``current_ltv`` is updated; ``breached_threshold`` is set
        when the LTV has reached the loan's margin-call LTV.  When another
        transaction changes the loan first, it is re-locked and revalued.

        Raises:
            IllegalStateTransitionError: the loan is not (or no longer) active.
            StaleRecordError: the loan changed under every one of
                ``match_retry_limit`` attempts.
        """
        now = self.clock.now()
        loan = self._load(loan_id, lock=True)
        reference = ReferenceDataService(self.session, self.clock, self.settings)

        for attempt in range(self.settings.match_retry_limit):
            if loan.lifecycle_status is not LoanStatus.ACTIVE:
                raise IllegalStateTransitionError(
                    entity_type=LOAN_WORKFLOW.name,
                    entity_id=str(loan_id),
                    current_state=loan.lifecycle_status.value,
                    action="record_valuation",
                )
            rate = reference.latest_exchange_rate(loan.collateral_currency, as_of=now)
            valuation = calculate_collateral_valuation(
                collateral=Amount(loan.collateral_amount, loan.collateral_currency),
                collateral_currency=reference.require_currency(loan.collateral_currency),
                principal_currency=reference.require_currency(loan.principal_currency),
                exchange_rate=rate,
                quote_precision=self.settings.quote_precision,
            )
            ltv = quantize_ratio(
                calculate_ltv(
                    Amount(loan.principal_amount, loan.principal_currency),
                    valuation.exact_units,
                )
            )
            if self.compare_and_set(
                loan,
                loan.version,
                current_ltv=ltv,
                last_valuation_date=now,
                updated_by_id=SYSTEM_ACTOR_ID,
            ):
                break
            logger.warning(
                "loan_valuation_conflict",
                extra={"loan_id": str(loan_id), "attempt": attempt + 1},
            )
            loan = self._load(loan_id, lock=True)
        else:
            raise StaleRecordError(
                LOAN_WORKFLOW.name, str(loan_id), self.settings.match_retry_limit
            )

        breached = ltv >= loan.margin_call_ltv
        record = LoanValuationModel(
            loan_id=loan.id,
            exchange_rate_id=valuation.exchange_rate_id,
            exchange_rate=valuation.exchange_rate,
            collateral_valuation=valuation.value.units,
            ltv_ratio=ltv,
            breached_threshold=breached,
            valuation_date=now,
            created_by_id=SYSTEM_ACTOR_ID,
        )
        self.session.add(record)
        self.session.flush()

        log = logger.warning if breached else logger.info
        log(
            "loan_valuation_recorded",
            extra={
                "loan_id": str(loan_id),
                "ltv_ratio": str(ltv),
                "margin_call_ltv": str(loan.margin_call_ltv),
                "collateral_valuation": str(valuation.value.units),
                "breached_threshold": breached,
            },
        )
        return LoanValuationInfo.from_model(record, loan.principal_currency)

    def loans_breaching_ltv(self, threshold: Decimal | None = None) -> list[LoanInfo]:
        """
        Active loans whose last recorded LTV is at or above ``threshold``.

        The threshold defaults to the effective policy's max LTV ratio.
        """
        if threshold is None:
            reference = ReferenceDataService(self.session, self.clock, self.settings)
            threshold = reference.effective_risk_policy(self.clock.now()).max_ltv_ratio
        loans = self.session.execute(
            select(LoanModel)
            .where(
                LoanModel.status == LoanStatus.ACTIVE.value,
                LoanModel.current_ltv.is_not(None),
            )
            .order_by(LoanModel.origination_date)
        ).scalars().all()
        return [LoanInfo.from_model(loan) for loan in loans if loan.current_ltv >= threshold]
