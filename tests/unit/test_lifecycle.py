"""
Tests for the offer, application and loan state machines and the external
status views derived from them.
"""

import pytest

from lending_kernel.domain.lifecycle import (
    APPLICATION_WORKFLOW,
    LOAN_WORKFLOW,
    OFFER_WORKFLOW,
    ApplicationStatus,
    ApplicationView,
    LoanStatus,
    LoanView,
    OfferStatus,
    OfferView,
    application_view,
    loan_view,
    offer_view,
)
from lending_kernel.domain.workflow import Transition, Workflow
from lending_kernel.exceptions import IllegalStateTransitionError


class TestOfferWorkflow:

    def test_funding_paid_publishes(self):
        assert OFFER_WORKFLOW.apply(OfferStatus.FUNDING, "funding_paid") is OfferStatus.PUBLISHED

    def test_close_from_funding_and_published(self):
        for status in (OfferStatus.FUNDING, OfferStatus.PUBLISHED):
            assert OFFER_WORKFLOW.apply(status, "close") is OfferStatus.CLOSED

    @pytest.mark.parametrize("status", [OfferStatus.CLOSED, OfferStatus.EXPIRED])
    def test_terminal_states_reject_every_action(self, status):
        assert OFFER_WORKFLOW.is_terminal(status)
        assert OFFER_WORKFLOW.actions_from(status) == ()
        with pytest.raises(IllegalStateTransitionError) as exc_info:
            OFFER_WORKFLOW.apply(status, "close", "offer-1")
        assert exc_info.value.current_state == status.value
        assert exc_info.value.action == "close"

    def test_views(self):
        assert offer_view(OfferStatus.FUNDING) is OfferView.DRAFT
        assert offer_view(OfferStatus.PUBLISHED) is OfferView.PUBLISHED
        assert offer_view(OfferStatus.CLOSED) is OfferView.CLOSED
        assert offer_view(OfferStatus.EXPIRED) is OfferView.CLOSED


class TestApplicationWorkflow:

    def test_happy_path(self):
        published = APPLICATION_WORKFLOW.apply(
            ApplicationStatus.PENDING_COLLATERAL, "collateral_paid"
        )
        assert published is ApplicationStatus.PUBLISHED
        assert APPLICATION_WORKFLOW.apply(published, "match") is ApplicationStatus.MATCHED

    def test_cancel_only_before_publication(self):
        assert APPLICATION_WORKFLOW.can(ApplicationStatus.PENDING_COLLATERAL, "cancel")
        assert not APPLICATION_WORKFLOW.can(ApplicationStatus.PUBLISHED, "cancel")

    def test_second_cancel_is_illegal(self):
        cancelled = APPLICATION_WORKFLOW.apply(ApplicationStatus.PENDING_COLLATERAL, "cancel")
        with pytest.raises(IllegalStateTransitionError):
            APPLICATION_WORKFLOW.apply(cancelled, "cancel")

    def test_cannot_match_unpublished(self):
        with pytest.raises(IllegalStateTransitionError):
            APPLICATION_WORKFLOW.apply(ApplicationStatus.PENDING_COLLATERAL, "match")

    def test_every_status_has_a_view(self):
        expected = {
            ApplicationStatus.PENDING_COLLATERAL: ApplicationView.DRAFT,
            ApplicationStatus.PUBLISHED: ApplicationView.PUBLISHED,
            ApplicationStatus.MATCHED: ApplicationView.MATCHED,
            ApplicationStatus.CANCELLED: ApplicationView.CLOSED,
            ApplicationStatus.EXPIRED: ApplicationView.EXPIRED,
        }
        assert {s: application_view(s) for s in ApplicationStatus} == expected


class TestLoanWorkflow:

    def test_disburse_then_mature(self):
        active = LOAN_WORKFLOW.apply(LoanStatus.DRAFT, "disburse")
        assert LOAN_WORKFLOW.apply(active, "mature") is LoanStatus.MATURED

    def test_liquidation_can_fail_back_to_active(self):
        pending = LOAN_WORKFLOW.apply(LoanStatus.ACTIVE, "request_early_liquidation")
        assert LOAN_WORKFLOW.apply(pending, "liquidation_failed") is LoanStatus.ACTIVE
        assert LOAN_WORKFLOW.apply(pending, "settle_liquidation") is LoanStatus.EARLY_LIQUIDATED

    def test_early_exit_requires_active(self):
        with pytest.raises(IllegalStateTransitionError):
            LOAN_WORKFLOW.apply(LoanStatus.DRAFT, "request_early_repayment")
        with pytest.raises(IllegalStateTransitionError):
            LOAN_WORKFLOW.apply(LoanStatus.PENDING_LIQUIDATION, "request_early_repayment")

    def test_early_exit_transitions_are_guarded(self):
        for action in ("request_early_liquidation", "request_early_repayment"):
            transition = LOAN_WORKFLOW.find(LoanStatus.ACTIVE, action)
            assert transition.guard is not None
            assert transition.guard.name == "risk_acknowledged"

    def test_views(self):
        assert loan_view(LoanStatus.DRAFT) is LoanView.ORIGINATED
        assert loan_view(LoanStatus.PENDING_REPAYMENT) is LoanView.ACTIVE
        assert loan_view(LoanStatus.EARLY_REPAID) is LoanView.REPAID
        assert loan_view(LoanStatus.DEFAULTED) is LoanView.LIQUIDATED


class TestWorkflowDefinition:
    """Workflow construction rejects incomplete or contradictory tables."""

    def test_undeclared_state_rejected(self):
        with pytest.raises(ValueError):
            Workflow(
                name="broken",
                description="",
                state_type=OfferStatus,
                initial_state=OfferStatus.FUNDING,
                states=(OfferStatus.FUNDING, OfferStatus.PUBLISHED),
                transitions=(),
            )

    def test_terminal_state_with_exit_rejected(self):
        with pytest.raises(ValueError):
            Workflow(
                name="broken",
                description="",
                state_type=OfferStatus,
                initial_state=OfferStatus.FUNDING,
                states=tuple(OfferStatus),
                transitions=(Transition(OfferStatus.CLOSED, OfferStatus.FUNDING, "reopen"),),
                terminal_states=(OfferStatus.CLOSED,),
            )
