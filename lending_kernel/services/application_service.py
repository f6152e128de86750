"""
ApplicationService -- borrower applications from sizing to publication.

Responsibility:
    Quotes loan requirements without persisting anything, creates sized
    applications with their collateral-deposit invoices, publishes them
    when the collateral is deposited, and handles cancellation and expiry.

Architecture position:
    Kernel > Services -- imperative shell.  Sizing is delegated to
    ``lending_engines.requirements``; status writes go through
    ``APPLICATION_WORKFLOW``.

Invariants enforced:
    - Requirement quotes and application sizing run the same engine
      routine, so a quoted collateral figure equals the deposit invoiced.
    - ``max_interest_rate`` lies within the effective policy's bounds.
    - The requested principal lies within the principal currency's
      [min_loan_principal_amount, max_loan_principal_amount].
    - Cancellation is legal only from PENDING_COLLATERAL; a second cancel
      raises IllegalStateTransitionError.

Failure modes:
    - CurrencyNotSupportedError, ExchangeRateNotFoundError,
      RiskPolicyNotFoundError for missing reference data.
    - InvalidAmountError, InvalidTermError, RateOutOfPolicyBoundsError for
      bad requests.
    - ApplicationNotFoundError for an unknown application or one owned by
      someone else.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from lending_engines.requirements import (
    ApplicationSizing,
    LoanRequirements,
    calculate_loan_requirements,
    size_loan_application,
)
from lending_kernel.domain.dates import add_days
from lending_kernel.domain.dtos import ApplicationInfo, effective_application_status
from lending_kernel.domain.lifecycle import APPLICATION_WORKFLOW, ApplicationStatus
from lending_kernel.domain.units import HumanAmount
from lending_kernel.domain.values import Amount, Currency, LiquidationMode
from lending_kernel.exceptions import (
    ApplicationNotFoundError,
    IllegalStateTransitionError,
    InvalidAmountError,
)
from lending_kernel.logging_config import LogContext, get_logger
from lending_kernel.models.invoice import InvoiceModel, InvoiceType
from lending_kernel.models.loan_application import LoanApplicationModel
from lending_kernel.services.base import SYSTEM_ACTOR_ID, BaseService
from lending_kernel.services.invoice_service import InvoiceService
from lending_kernel.services.reference_data_service import ReferenceDataService

logger = get_logger("services.application")

DEFAULT_CANCEL_REASON = "Cancelled by borrower"
EXPIRED_REASON = "Expired"


class ApplicationService(BaseService[LoanApplicationModel]):
    """Borrower-side application operations."""

    def _currencies(
        self,
        principal_blockchain_key: str,
        principal_token_id: str,
        collateral_blockchain_key: str,
        collateral_token_id: str,
    ) -> tuple[ReferenceDataService, Currency, Currency]:
        reference = ReferenceDataService(self.session, self.clock, self.settings)
        principal = reference.get_currency(principal_blockchain_key, principal_token_id)
        collateral = reference.get_currency(collateral_blockchain_key, collateral_token_id)
        return reference, principal, collateral

    @staticmethod
    def _requested_principal(currency: Currency, principal_amount: HumanAmount) -> Amount:
        requested = currency.amount(principal_amount)
        if requested.units <= 0:
            raise InvalidAmountError(
                "principal_amount", str(principal_amount), "must be positive"
            )
        currency.check_principal(requested.units)
        return requested

    def calculate_requirements(
        self,
        *,
        principal_blockchain_key: str,
        principal_token_id: str,
        collateral_blockchain_key: str,
        collateral_token_id: str,
        principal_amount: HumanAmount,
        term_in_months: int | None = None,
        expiration_date: datetime | None = None,
    ) -> LoanRequirements:
        """
        Quote provision and required collateral for a principal.

        Nothing is persisted.  The exchange rate is the latest observation
        for the collateral currency as of now.
        """
        now = self.clock.now()
        reference, principal, collateral = self._currencies(
            principal_blockchain_key,
            principal_token_id,
            collateral_blockchain_key,
            collateral_token_id,
        )
        return calculate_loan_requirements(
            principal=self._requested_principal(principal, principal_amount),
            principal_currency=principal,
            collateral_currency=collateral,
            policy=reference.effective_risk_policy(now),
            exchange_rate=reference.latest_exchange_rate(collateral.key, as_of=now),
            term_in_months=(
                self.settings.default_term_months if term_in_months is None else term_in_months
            ),
            calculation_date=now,
            expiration_date=expiration_date,
            quote_precision=self.settings.quote_precision,
        )

    def create_application(
        self,
        *,
        borrower_id: UUID,
        principal_blockchain_key: str,
        principal_token_id: str,
        collateral_blockchain_key: str,
        collateral_token_id: str,
        principal_amount: HumanAmount,
        max_interest_rate: Decimal | str,
        term_in_months: int | None = None,
        liquidation_mode: LiquidationMode = LiquidationMode.FULL,
    ) -> ApplicationInfo:
        """
        Size and persist an application in PENDING_COLLATERAL.

        Issues a collateral-deposit invoice for the sized deposit, due at
        the application's expiration.
        """
        now = self.clock.now()
        reference, principal, collateral = self._currencies(
            principal_blockchain_key,
            principal_token_id,
            collateral_blockchain_key,
            collateral_token_id,
        )
        requested = self._requested_principal(principal, principal_amount)
        policy = reference.effective_risk_policy(now)
        max_rate = policy.check_interest_rate(max_interest_rate, "max_interest_rate")
        rate = reference.latest_exchange_rate(collateral.key, as_of=now)
        expiration_date = add_days(now, self.settings.application_expiry_days)

        sizing: ApplicationSizing = size_loan_application(
            principal=requested,
            principal_currency=principal,
            collateral_currency=collateral,
            policy=policy,
            exchange_rate=rate,
            term_in_months=(
                self.settings.default_term_months if term_in_months is None else term_in_months
            ),
            calculation_date=now,
            expiration_date=expiration_date,
            quote_precision=self.settings.quote_precision,
        )

        application = LoanApplicationModel(
            borrower_id=borrower_id,
            principal_blockchain_key=principal.key.blockchain_key,
            principal_token_id=principal.key.token_id,
            collateral_blockchain_key=collateral.key.blockchain_key,
            collateral_token_id=collateral.key.token_id,
            principal_amount=sizing.principal.units,
            provision_amount=sizing.provision_amount.units,
            collateral_deposit_amount=sizing.collateral_deposit_amount.units,
            provision_rate=sizing.provision_rate,
            min_ltv_ratio=sizing.min_ltv_ratio,
            max_ltv_ratio=sizing.max_ltv_ratio,
            policy_version=sizing.policy_version,
            exchange_rate_id=sizing.exchange_rate_id,
            exchange_rate=sizing.exchange_rate,
            term_in_months=sizing.term_in_months,
            max_interest_rate=max_rate,
            liquidation_mode=LiquidationMode(liquidation_mode).value,
            status=ApplicationStatus.PENDING_COLLATERAL.value,
            application_date=now,
            expiration_date=sizing.expiration_date,
            created_by_id=borrower_id,
        )
        self.session.add(application)
        self.session.flush()

        invoice = InvoiceService(self.session, self.clock, self.settings).issue_invoice(
            invoice_type=InvoiceType.LOAN_COLLATERAL,
            user_id=borrower_id,
            amount=sizing.collateral_deposit_amount,
            subject_id=application.id,
            due_date=sizing.expiration_date,
        )
        application.collateral_invoice_id = invoice.id
        self.session.flush()

        with LogContext.bind(application_id=str(application.id), invoice_id=str(invoice.id)):
            logger.info(
                "application_created",
                extra={
                    "borrower_id": str(borrower_id),
                    "principal_amount": str(sizing.principal.units),
                    "provision_amount": str(sizing.provision_amount.units),
                    "collateral_deposit_amount": str(sizing.collateral_deposit_amount.units),
                    "exchange_rate": str(sizing.exchange_rate),
                    "policy_version": sizing.policy_version,
                    "term_in_months": sizing.term_in_months,
                },
            )
        return ApplicationInfo.from_model(application, as_of=now)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _load(self, application_id: UUID, *, lock: bool = False) -> LoanApplicationModel:
        application = (
            self.lock_row(LoanApplicationModel, application_id)
            if lock
            else self.session.get(LoanApplicationModel, application_id)
        )
        if application is None:
            raise ApplicationNotFoundError(str(application_id))
        return application

    def get_application(self, application_id: UUID) -> ApplicationInfo:
        return ApplicationInfo.from_model(
            self._load(application_id), as_of=self.clock.now()
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def cancel_application(
        self,
        application_id: UUID,
        borrower_id: UUID,
        reason: str = DEFAULT_CANCEL_REASON,
    ) -> ApplicationInfo:
        """
        Borrower cancels an application still waiting for collateral.

        Raises:
            ApplicationNotFoundError: no such application for this borrower.
            IllegalStateTransitionError: the application is past
                PENDING_COLLATERAL (published, matched, cancelled, expired).
        """
        now = self.clock.now()
        application = self._load(application_id, lock=True)
        if application.borrower_id != borrower_id:
            raise ApplicationNotFoundError(str(application_id))

        effective = effective_application_status(application, now)
        if effective is ApplicationStatus.EXPIRED:
            raise IllegalStateTransitionError(
                entity_type=APPLICATION_WORKFLOW.name,
                entity_id=str(application_id),
                current_state=effective.value,
                action="cancel",
            )

        self.transition(
            application,
            APPLICATION_WORKFLOW,
            "cancel",
            actor_id=borrower_id,
            closed_date=now,
            closure_reason=reason,
        )
        logger.info(
            "application_cancelled",
            extra={"application_id": str(application_id), "reason": reason},
        )
        return ApplicationInfo.from_model(application, as_of=now)

    def on_collateral_paid(self, application_id: UUID, invoice: InvoiceModel) -> bool:
        """
        Publish the application once its deposit invoice is paid in full.

        Returns True if this call published it; replays, partial payments
        and late payments are logged no-ops.
        """
        now = self.clock.now()
        application = self._load(application_id, lock=True)
        status = application.lifecycle_status

        if status is not ApplicationStatus.PENDING_COLLATERAL:
            logger.info(
                "application_collateral_event_ignored",
                extra={"application_id": str(application_id), "status": status.value},
            )
            return False
        if invoice.paid_amount < application.collateral_deposit_amount:
            logger.info(
                "application_collateral_partial",
                extra={
                    "application_id": str(application_id),
                    "paid_amount": str(invoice.paid_amount),
                    "collateral_deposit_amount": str(application.collateral_deposit_amount),
                },
            )
            return False
        if application.is_past_expiration(now):
            logger.warning(
                "application_collateral_after_expiration",
                extra={"application_id": str(application_id), "invoice_id": str(invoice.id)},
            )
            return False

        self.transition(
            application,
            APPLICATION_WORKFLOW,
            "collateral_paid",
            actor_id=SYSTEM_ACTOR_ID,
            published_date=invoice.paid_date or now,
        )
        logger.info("application_published", extra={"application_id": str(application_id)})
        return True

    def expire_due_applications(self, as_of: datetime | None = None) -> int:
        as_of = as_of or self.clock.now()
        due_ids = self.session.execute(
            select(LoanApplicationModel.id).where(
                LoanApplicationModel.status.in_(
                    [
                        ApplicationStatus.PENDING_COLLATERAL.value,
                        ApplicationStatus.PUBLISHED.value,
                    ]
                ),
                LoanApplicationModel.expiration_date <= as_of,
            )
        ).scalars().all()

        expired = 0
        for application_id in due_ids:
            application = self._load(application_id, lock=True)
            if not APPLICATION_WORKFLOW.can(application.lifecycle_status, "expire"):
                continue
            self.transition(
                application,
                APPLICATION_WORKFLOW,
                "expire",
                actor_id=SYSTEM_ACTOR_ID,
                closed_date=as_of,
                closure_reason=EXPIRED_REASON,
            )
            expired += 1

        logger.info(
            "applications_expired",
            extra={"as_of": as_of.isoformat(), "candidates": len(due_ids), "expired": expired},
        )
        return expired
