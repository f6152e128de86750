"""
Module: lending_kernel.selectors.marketplace_selector
Responsibility: Read-only listings of offers, applications and loans for the
    marketplace surface.  Converts ORM models to frozen DTOs with external
    statuses.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only: no mutations performed on any queried data.
    - Offers and applications past their expiration date read (and filter)
      as EXPIRED even before a sweep persists it.  The filter runs in SQL:
      an expirable row is live only while ``expiration_date > now``.
    - Filtering, ordering and paging happen in the database; one page of
      rows is loaded plus one COUNT query for the total.
    - Applications are listed newest first; offers newest first; loans by
      origination date, newest first.

Failure modes:
    - Returns None or an empty page when nothing matches.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import Select, and_, func, or_, select

from lending_kernel.domain.dtos import (
    ApplicationInfo,
    LoanInfo,
    OfferInfo,
    Page,
)
from lending_kernel.domain.lifecycle import ApplicationStatus, LoanStatus, OfferStatus
from lending_kernel.models.loan import LoanModel
from lending_kernel.models.loan_application import LoanApplicationModel
from lending_kernel.models.loan_offer import LoanOfferModel
from lending_kernel.selectors.base import BaseSelector

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

T = TypeVar("T")

_EXPIRABLE_OFFER = (OfferStatus.FUNDING, OfferStatus.PUBLISHED)
_EXPIRABLE_APPLICATION = (ApplicationStatus.PENDING_COLLATERAL, ApplicationStatus.PUBLISHED)


class LoanRole(str, Enum):
    """Which side of a loan a user is on."""

    BORROWER = "borrower"
    LENDER = "lender"


def effective_status_clause(
    model: Any,
    status: Enum,
    expirable: tuple[Enum, ...],
    expired: Enum,
    now: datetime,
):
    """
    WHERE clause matching rows whose status *as of now* is ``status``.

    Rows in an expirable state whose expiration date has passed count as
    ``expired``, not as their stored state.
    """
    stored = [s.value for s in expirable]
    if status is expired:
        return or_(
            model.status == expired.value,
            and_(model.status.in_(stored), model.expiration_date <= now),
        )
    if status in expirable:
        return and_(model.status == status.value, model.expiration_date > now)
    return model.status == status.value


class MarketplaceSelector(BaseSelector[LoanOfferModel]):
    """
    Selector for marketplace listings.

    Contract:
        Listing methods return ``Page`` objects; ``page`` is 1-based and
        ``limit`` is clamped to ``MAX_PAGE_SIZE``.
    """

    def _page(
        self,
        stmt: Select,
        page: int,
        limit: int,
        to_dto: Callable[[Any], T],
    ) -> Page[T]:
        page = max(1, page)
        limit = min(max(1, limit), MAX_PAGE_SIZE)
        total = self.session.execute(
            select(func.count()).select_from(stmt.order_by(None).subquery())
        ).scalar_one()
        rows = self.session.execute(
            stmt.limit(limit).offset((page - 1) * limit)
        ).scalars().all()
        return Page(
            items=tuple(to_dto(row) for row in rows),
            page=page,
            limit=limit,
            total=total,
        )

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    def _offers(
        self,
        lender_id: UUID | None,
        status: OfferStatus | None,
        page: int,
        limit: int,
    ) -> Page[OfferInfo]:
        now = self.now()
        stmt = select(LoanOfferModel).order_by(
            LoanOfferModel.creation_date.desc(), LoanOfferModel.id
        )
        if lender_id is not None:
            stmt = stmt.where(LoanOfferModel.lender_id == lender_id)
        if status is not None:
            stmt = stmt.where(
                effective_status_clause(
                    LoanOfferModel, status, _EXPIRABLE_OFFER, OfferStatus.EXPIRED, now
                )
            )
        return self._page(stmt, page, limit, lambda row: OfferInfo.from_model(row, as_of=now))

    def list_offers(
        self,
        status: OfferStatus | None = OfferStatus.PUBLISHED,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page[OfferInfo]:
        """Offers in ``status`` (published by default), newest first."""
        return self._offers(None, status, page, limit)

    def list_lender_offers(
        self,
        lender_id: UUID,
        status: OfferStatus | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page[OfferInfo]:
        return self._offers(lender_id, status, page, limit)

    def get_offer(self, offer_id: UUID) -> OfferInfo | None:
        row = self.session.get(LoanOfferModel, offer_id)
        return OfferInfo.from_model(row, as_of=self.now()) if row is not None else None

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    def list_applications(
        self,
        borrower_id: UUID | None = None,
        status: ApplicationStatus | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page[ApplicationInfo]:
        """Applications, newest application date first."""
        now = self.now()
        stmt = select(LoanApplicationModel).order_by(
            LoanApplicationModel.application_date.desc(), LoanApplicationModel.id
        )
        if borrower_id is not None:
            stmt = stmt.where(LoanApplicationModel.borrower_id == borrower_id)
        if status is not None:
            stmt = stmt.where(
                effective_status_clause(
                    LoanApplicationModel,
                    status,
                    _EXPIRABLE_APPLICATION,
                    ApplicationStatus.EXPIRED,
                    now,
                )
            )
        return self._page(
            stmt, page, limit, lambda row: ApplicationInfo.from_model(row, as_of=now)
        )

    # ------------------------------------------------------------------
    # Loans
    # ------------------------------------------------------------------

    def list_loans(
        self,
        user_id: UUID,
        role: LoanRole = LoanRole.BORROWER,
        status: LoanStatus | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page[LoanInfo]:
        """Loans where ``user_id`` is the borrower or the lender."""
        column = LoanModel.borrower_id if LoanRole(role) is LoanRole.BORROWER else LoanModel.lender_id
        stmt = (
            select(LoanModel)
            .where(column == user_id)
            .order_by(LoanModel.origination_date.desc(), LoanModel.id)
        )
        if status is not None:
            stmt = stmt.where(LoanModel.status == status.value)
        return self._page(stmt, page, limit, LoanInfo.from_model)

    def get_loan(self, loan_id: UUID) -> LoanInfo | None:
        row = self.session.get(LoanModel, loan_id)
        return LoanInfo.from_model(row) if row is not None else None
