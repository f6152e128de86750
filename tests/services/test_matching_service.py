"""
Tests for MatchingService: offer discovery, matching and origination.

Default fixtures give a 100 USDT offer at 12.5% over 3 or 6 months and a
10 USDT, 6-month application backed by 1 ETH at a 2000 bid.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from lending_kernel.domain.lifecycle import ApplicationStatus, LoanStatus, LoanView, OfferStatus
from lending_kernel.exceptions import (
    IllegalStateTransitionError,
    IncompatibleOfferError,
    InsufficientAvailabilityError,
    LoanAlreadyOriginatedError,
    SelfMatchError,
)
from tests.support import E18, ETH, USD, USDT


def _set_eth_bid(reference_service, clock, bid: int) -> None:
    reference_service.record_exchange_rate(
        base=ETH.key,
        quote=USD.key,
        bid_price=bid * E18,
        ask_price=(bid + 1) * E18,
        source="test-feed",
        source_date=clock.now(),
    )


class TestFindCompatibleOffers:

    def test_cheapest_first_then_oldest(
        self,
        matching_service,
        create_published_offer,
        create_published_application,
        deterministic_clock,
    ):
        expensive = create_published_offer(interest_rate="0.15")
        deterministic_clock.advance(60)
        cheap_old = create_published_offer(interest_rate="0.1")
        deterministic_clock.advance(60)
        cheap_new = create_published_offer(interest_rate="0.1")
        application = create_published_application(max_interest_rate="0.2")

        offers = matching_service.find_compatible_offers(application.id)

        assert [o.id for o in offers] == [cheap_old.id, cheap_new.id, expensive.id]

    def test_excludes_incompatible_offers(
        self, matching_service, create_published_offer, create_published_application
    ):
        borrower_id = uuid4()
        create_published_offer(interest_rate="0.3")
        create_published_offer(term_options=(12,))
        create_published_offer(min_loan_amount="50")
        create_published_offer(total_amount="5")
        create_published_offer(lender_id=borrower_id)
        good = create_published_offer()
        application = create_published_application(borrower_id=borrower_id)

        offers = matching_service.find_compatible_offers(application.id)

        assert [o.id for o in offers] == [good.id]

    def test_unpublished_application_has_no_candidates(
        self, matching_service, application_service, create_published_offer
    ):
        create_published_offer()
        application = application_service.create_application(
            borrower_id=uuid4(),
            principal_blockchain_key=USDT.key.blockchain_key,
            principal_token_id=USDT.key.token_id,
            collateral_blockchain_key=ETH.key.blockchain_key,
            collateral_token_id=ETH.key.token_id,
            principal_amount="10",
            max_interest_rate="0.2",
        )
        assert matching_service.find_compatible_offers(application.id) == []


class TestMatchApplication:

    def test_match_reserves_principal(
        self, matching_service, create_published_offer, create_published_application
    ):
        offer = create_published_offer()
        application = create_published_application()

        result = matching_service.match_application(application.id, offer.id)

        assert result.application.status is ApplicationStatus.MATCHED
        assert result.application.matched_offer_id == offer.id
        assert result.offer.available_amount.units == 90 * E18
        assert result.offer.reserved_amount.units == 10 * E18
        assert result.offer.status is OfferStatus.PUBLISHED
        assert result.matched_ltv_ratio == Decimal("0.005")
        assert result.matched_collateral_valuation.units == 2000 * E18
        assert result.interest_rate == Decimal("0.125")

    def test_self_match_rejected(
        self, matching_service, create_published_offer, create_published_application
    ):
        user_id = uuid4()
        offer = create_published_offer(lender_id=user_id)
        application = create_published_application(borrower_id=user_id)
        with pytest.raises(SelfMatchError):
            matching_service.match_application(application.id, offer.id)

    @pytest.mark.parametrize(
        "offer_kwargs",
        [
            {"interest_rate": "0.3"},
            {"term_options": (12,)},
            {"min_loan_amount": "50"},
            {"max_loan_amount": "5"},
        ],
        ids=["rate_above_maximum", "term_not_offered", "below_minimum", "above_maximum"],
    )
    def test_incompatible_offer_rejected(
        self,
        matching_service,
        create_published_offer,
        create_published_application,
        offer_kwargs,
    ):
        offer = create_published_offer(**offer_kwargs)
        application = create_published_application()
        with pytest.raises(IncompatibleOfferError):
            matching_service.match_application(application.id, offer.id)

    def test_offer_still_funding_rejected(
        self, matching_service, offer_service, create_published_application
    ):
        offer = offer_service.create_offer(
            lender_id=uuid4(),
            principal_blockchain_key=USDT.key.blockchain_key,
            principal_token_id=USDT.key.token_id,
            total_amount="100",
            interest_rate="0.1",
            term_options=[6],
            min_loan_amount="1",
        )
        application = create_published_application()
        with pytest.raises(IncompatibleOfferError):
            matching_service.match_application(application.id, offer.id)

    def test_ltv_above_maximum_rejected(
        self,
        matching_service,
        reference_service,
        create_published_offer,
        create_published_application,
        deterministic_clock,
    ):
        offer = create_published_offer()
        application = create_published_application()
        _set_eth_bid(reference_service, deterministic_clock, 10)
        with pytest.raises(IncompatibleOfferError) as exc_info:
            matching_service.match_application(application.id, offer.id)
        assert "LTV" in exc_info.value.reason

    def test_insufficient_availability(
        self, matching_service, create_published_offer, create_published_application
    ):
        offer = create_published_offer(total_amount="100")
        first = create_published_application(principal_amount="60")
        second = create_published_application(principal_amount="60")
        matching_service.match_application(first.id, offer.id)

        with pytest.raises(InsufficientAvailabilityError) as exc_info:
            matching_service.match_application(second.id, offer.id)

        assert exc_info.value.requested == 60 * E18
        assert exc_info.value.available == 40 * E18
        assert matching_service.find_compatible_offers(second.id) == []

    def test_matched_application_cannot_match_again(
        self, matching_service, create_published_offer, create_published_application
    ):
        offer = create_published_offer()
        application = create_published_application()
        matching_service.match_application(application.id, offer.id)
        with pytest.raises(IllegalStateTransitionError):
            matching_service.match_application(application.id, offer.id)

    def test_logs_match(
        self,
        matching_service,
        create_published_offer,
        create_published_application,
        captured_logs,
    ):
        offer = create_published_offer()
        application = create_published_application()
        matching_service.match_application(application.id, offer.id)
        matched = [r for r in captured_logs() if r["message"] == "application_matched"]
        assert matched[0]["offer_id"] == str(offer.id)
        assert matched[0]["principal_amount"] == str(10 * E18)


class TestOriginateLoan:

    @pytest.fixture
    def matched(self, matching_service, create_published_offer, create_published_application):
        offer = create_published_offer()
        application = create_published_application()
        matching_service.match_application(application.id, offer.id)
        return offer, application

    def test_originated_schedule(self, matching_service, matched):
        offer, application = matched
        loan = matching_service.originate_loan(application.id)

        assert loan.status is LoanStatus.DRAFT
        assert loan.view is LoanView.ORIGINATED
        assert loan.offer_id == offer.id
        assert loan.lender_id == offer.lender_id
        assert loan.borrower_id == application.borrower_id
        assert loan.principal_amount.units == 10 * E18
        assert loan.interest_amount.units == 125 * 10**16
        assert loan.premi_amount.units == 3 * 10**17
        assert loan.repayment_amount.units == 1155 * 10**16
        assert loan.liquidation_fee_amount.units == 2 * 10**17
        assert loan.min_collateral_valuation.units == 1175 * 10**16
        assert loan.collateral_amount.units == E18
        assert loan.matched_ltv_ratio == Decimal("0.005")

    def test_maturity_from_term(self, matching_service, matched):
        _, application = matched
        loan = matching_service.originate_loan(application.id)
        assert (loan.maturity_date.year, loan.maturity_date.month, loan.maturity_date.day) == (
            2025,
            7,
            15,
        )

    def test_reservation_moves_to_disbursed(self, matching_service, offer_service, matched):
        offer, application = matched
        matching_service.originate_loan(application.id)
        info = offer_service.get_offer(offer.id)
        assert info.reserved_amount.units == 0
        assert info.disbursed_amount.units == 10 * E18
        assert info.available_amount.units == 90 * E18

    def test_second_origination_rejected(self, matching_service, matched):
        _, application = matched
        loan = matching_service.originate_loan(application.id)
        with pytest.raises(LoanAlreadyOriginatedError) as exc_info:
            matching_service.originate_loan(application.id)
        assert exc_info.value.loan_id == str(loan.id)

    def test_unmatched_application_rejected(
        self, matching_service, create_published_application
    ):
        application = create_published_application()
        with pytest.raises(IllegalStateTransitionError):
            matching_service.originate_loan(application.id)
