"""Tests for MarketplaceSelector listings and pagination."""

from uuid import uuid4

import pytest
from sqlalchemy import event

from lending_kernel.domain.dtos import Page
from lending_kernel.domain.lifecycle import ApplicationStatus, LoanStatus, OfferStatus
from lending_kernel.selectors.marketplace_selector import MAX_PAGE_SIZE, LoanRole


class TestOfferListings:

    def test_lists_published_offers_newest_first(
        self, marketplace_selector, create_published_offer, deterministic_clock
    ):
        older = create_published_offer()
        deterministic_clock.advance(60)
        newer = create_published_offer()

        page = marketplace_selector.list_offers()

        assert [o.id for o in page.items] == [newer.id, older.id]
        assert page.total == 2
        assert not page.has_more

    def test_closed_and_funding_offers_excluded(
        self, marketplace_selector, offer_service, create_published_offer
    ):
        closed = create_published_offer()
        offer_service.close_offer(closed.id, closed.lender_id)
        visible = create_published_offer()

        page = marketplace_selector.list_offers()

        assert [o.id for o in page.items] == [visible.id]
        assert marketplace_selector.list_offers(status=OfferStatus.CLOSED).total == 1

    def test_passively_expired_offers_filtered(
        self, marketplace_selector, create_published_offer, deterministic_clock
    ):
        offer = create_published_offer()
        deterministic_clock.advance_days(31)
        assert marketplace_selector.list_offers().total == 0
        expired = marketplace_selector.list_offers(status=OfferStatus.EXPIRED)
        assert [o.id for o in expired.items] == [offer.id]

    def test_lender_offers_any_status(
        self, marketplace_selector, offer_service, create_published_offer
    ):
        lender_id = uuid4()
        first = create_published_offer(lender_id=lender_id)
        create_published_offer(lender_id=lender_id)
        create_published_offer()
        offer_service.close_offer(first.id, lender_id)

        page = marketplace_selector.list_lender_offers(lender_id)

        assert page.total == 2
        assert {o.lender_id for o in page.items} == {lender_id}

    def test_get_offer(self, marketplace_selector, create_published_offer):
        offer = create_published_offer()
        assert marketplace_selector.get_offer(offer.id).id == offer.id
        assert marketplace_selector.get_offer(uuid4()) is None


class TestPagination:

    @pytest.fixture
    def statements(self, session):
        """SQL text of every statement the session sends while the test runs."""
        captured: list[str] = []
        engine = session.get_bind()

        def capture(conn, cursor, statement, parameters, context, executemany):
            captured.append(statement.upper())

        event.listen(engine, "before_cursor_execute", capture)
        yield captured
        event.remove(engine, "before_cursor_execute", capture)

    def test_listing_pages_in_sql(self, marketplace_selector, create_published_offer, statements):
        for _ in range(3):
            create_published_offer()
        statements.clear()

        page = marketplace_selector.list_offers(page=2, limit=2)

        assert len(page.items) == 1
        assert page.total == 3
        listing = [s for s in statements if "COUNT(" not in s]
        counts = [s for s in statements if "COUNT(" in s]
        assert len(listing) == 1
        assert len(counts) == 1
        assert "LIMIT" in listing[0] and "OFFSET" in listing[0]
        assert "WHERE" in listing[0] and "EXPIRATION_DATE" in listing[0]

    def test_expiry_filter_pages_consistently(
        self, marketplace_selector, create_published_offer, deterministic_clock
    ):
        create_published_offer()
        create_published_offer()
        deterministic_clock.advance_days(31)
        live = create_published_offer()

        page = marketplace_selector.list_offers(page=1, limit=1)

        assert [o.id for o in page.items] == [live.id]
        assert page.total == 1
        assert not page.has_more
        assert marketplace_selector.list_offers(status=OfferStatus.EXPIRED).total == 2

    def test_pages(self, marketplace_selector, create_published_offer):
        for _ in range(5):
            create_published_offer()

        first = marketplace_selector.list_offers(page=1, limit=2)
        last = marketplace_selector.list_offers(page=3, limit=2)

        assert len(first.items) == 2
        assert first.has_more
        assert len(last.items) == 1
        assert not last.has_more
        assert first.total == last.total == 5

    def test_limit_clamped(self, marketplace_selector):
        assert marketplace_selector.list_offers(limit=10_000).limit == MAX_PAGE_SIZE
        assert marketplace_selector.list_offers(page=0, limit=0).page == 1

    def test_page_has_more(self):
        assert Page(items=(), page=1, limit=10, total=11).has_more
        assert not Page(items=(), page=2, limit=10, total=11).has_more


class TestApplicationListings:

    def test_filter_by_borrower_and_status(
        self, marketplace_selector, application_service, create_published_application
    ):
        borrower_id = uuid4()
        published = create_published_application(borrower_id=borrower_id)
        create_published_application()

        mine = marketplace_selector.list_applications(borrower_id=borrower_id)
        assert [a.id for a in mine.items] == [published.id]

        everything = marketplace_selector.list_applications(status=ApplicationStatus.PUBLISHED)
        assert everything.total == 2

    def test_passively_expired_applications_filtered(
        self, marketplace_selector, create_published_application, deterministic_clock
    ):
        application = create_published_application()
        deterministic_clock.advance_days(31)

        assert marketplace_selector.list_applications(status=ApplicationStatus.PUBLISHED).total == 0
        expired = marketplace_selector.list_applications(status=ApplicationStatus.EXPIRED)
        assert [a.id for a in expired.items] == [application.id]
        assert expired.items[0].status is ApplicationStatus.EXPIRED


class TestLoanListings:

    def test_by_role(self, marketplace_selector, create_active_loan):
        loan = create_active_loan()

        as_borrower = marketplace_selector.list_loans(loan.borrower_id)
        as_lender = marketplace_selector.list_loans(loan.lender_id, role=LoanRole.LENDER)
        wrong_side = marketplace_selector.list_loans(loan.lender_id, role=LoanRole.BORROWER)

        assert [item.id for item in as_borrower.items] == [loan.id]
        assert [item.id for item in as_lender.items] == [loan.id]
        assert wrong_side.total == 0

    def test_filter_by_status(self, marketplace_selector, loan_service, create_active_loan):
        loan = create_active_loan()
        assert marketplace_selector.list_loans(loan.borrower_id, status=LoanStatus.ACTIVE).total == 1
        loan_service.mark_defaulted(loan.id)
        assert marketplace_selector.list_loans(loan.borrower_id, status=LoanStatus.ACTIVE).total == 0

    def test_get_loan(self, marketplace_selector, create_active_loan):
        loan = create_active_loan()
        assert marketplace_selector.get_loan(loan.id).status is LoanStatus.ACTIVE
        assert marketplace_selector.get_loan(uuid4()) is None
