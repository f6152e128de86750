"""
Pytest fixtures for the lending kernel test suite.

Provides:
- A fresh database per test (SQLite file under tmp_path by default)
- Seeded reference data: currencies, an ETH/USD rate and risk policy v1
- Service fixtures wired to a DeterministicClock
- Factories for published offers, published applications and active loans

Environment Variables:
- LENDING_DATABASE_URL: run against another database (e.g. PostgreSQL).
  Tables are dropped and recreated for every test.
"""

import json
import logging
import os
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from lending_config.schema import LendingSettings
from lending_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from lending_kernel.domain.clock import DeterministicClock
from lending_kernel.domain.policy import PlatformRiskPolicy
from lending_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from lending_kernel.services import (
    ApplicationService,
    InvoiceEventService,
    InvoiceService,
    LoanService,
    MatchingService,
    OfferService,
    ReferenceDataService,
)
from lending_kernel.selectors import MarketplaceSelector
from tests.support import ETH, ETH_ASK, ETH_BID, FIXED_NOW, USD, USDT

TEST_ACTOR_ID = uuid4()


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture lending_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, offer_service):
            offer_service.create_offer(...)
            logs = captured_logs()
            assert any(r["message"] == "offer_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("lending_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Database
# =============================================================================


def get_database_url(tmp_path) -> str:
    """Database URL from the environment, or a throwaway SQLite file."""
    return os.environ.get(
        "LENDING_DATABASE_URL", f"sqlite:///{tmp_path}/lending_test.db"
    )


@pytest.fixture
def db_engine(tmp_path):
    """Engine with freshly created tables, disposed after the test."""
    url = get_database_url(tmp_path)
    eng = init_engine_from_url(url, echo=False, pool_size=10, max_overflow=10)
    if eng.dialect.name != "sqlite":
        drop_tables()
    create_tables()
    yield eng
    if eng.dialect.name != "sqlite":
        drop_tables()
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    """Session whose uncommitted work is rolled back after the test."""
    sess = get_session()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def session_factory(db_engine):
    """Session factory for tests that need one session per thread."""
    return get_session_factory()


# =============================================================================
# Time, settings and reference data
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def test_actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def test_policy() -> PlatformRiskPolicy:
    return PlatformRiskPolicy(
        version=1,
        effective_from=datetime(2024, 1, 1, tzinfo=UTC),
        provision_rate=Decimal("0.03"),
        min_ltv_ratio=Decimal("0.6"),
        max_ltv_ratio=Decimal("0.75"),
        liquidation_fee_rate=Decimal("0.02"),
        redelivery_fee_rate=Decimal("0.01"),
        liquidation_slippage_rate=Decimal("0.02"),
        min_interest_rate=Decimal("0.01"),
        max_interest_rate=Decimal("0.5"),
    )


@pytest.fixture
def settings(test_policy) -> LendingSettings:
    return LendingSettings(risk_policies=(test_policy,))


@pytest.fixture
def production_settings(test_policy) -> LendingSettings:
    return LendingSettings(
        environment="production",
        is_production=True,
        risk_policies=(test_policy,),
    )


@pytest.fixture
def seed_reference_data(deterministic_clock, settings):
    """
    Register USDT, ETH and USD, an ETH/USD rate one hour old, and the
    configured risk policies on ``session``.
    """

    def _seed(session: Session) -> None:
        reference = ReferenceDataService(session, deterministic_clock, settings)
        for currency in (USDT, ETH, USD):
            reference.register_currency(currency)
        reference.record_exchange_rate(
            base=ETH.key,
            quote=USD.key,
            bid_price=ETH_BID,
            ask_price=ETH_ASK,
            source="test-feed",
            source_date=deterministic_clock.now() - timedelta(hours=1),
        )
        reference.seed_from_settings(settings)

    return _seed


@pytest.fixture
def reference_data(session, seed_reference_data) -> Session:
    seed_reference_data(session)
    return session


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def reference_service(reference_data, deterministic_clock, settings):
    return ReferenceDataService(reference_data, deterministic_clock, settings)


@pytest.fixture
def invoice_service(reference_data, deterministic_clock, settings):
    return InvoiceService(reference_data, deterministic_clock, settings)


@pytest.fixture
def invoice_event_service(reference_data, deterministic_clock, settings):
    return InvoiceEventService(reference_data, deterministic_clock, settings)


@pytest.fixture
def offer_service(reference_data, deterministic_clock, settings):
    return OfferService(reference_data, deterministic_clock, settings)


@pytest.fixture
def application_service(reference_data, deterministic_clock, settings):
    return ApplicationService(reference_data, deterministic_clock, settings)


@pytest.fixture
def matching_service(reference_data, deterministic_clock, settings):
    return MatchingService(reference_data, deterministic_clock, settings)


@pytest.fixture
def loan_service(reference_data, deterministic_clock, settings):
    return LoanService(reference_data, deterministic_clock, settings)


@pytest.fixture
def marketplace_selector(reference_data, deterministic_clock):
    return MarketplaceSelector(reference_data, deterministic_clock)


# =============================================================================
# Lifecycle factories
# =============================================================================


@pytest.fixture
def create_published_offer(offer_service, invoice_event_service):
    """
    Create an offer and pay its funding invoice in full.

    Amounts are human-readable USDT values.
    """

    def _create(
        lender_id: UUID | None = None,
        total_amount: str = "100",
        interest_rate: str = "0.125",
        term_options: tuple[int, ...] = (3, 6),
        min_loan_amount: str = "1",
        max_loan_amount: str | None = None,
    ):
        offer = offer_service.create_offer(
            lender_id=lender_id or uuid4(),
            principal_blockchain_key=USDT.key.blockchain_key,
            principal_token_id=USDT.key.token_id,
            total_amount=total_amount,
            interest_rate=interest_rate,
            term_options=term_options,
            min_loan_amount=min_loan_amount,
            max_loan_amount=max_loan_amount,
        )
        invoice_event_service.record_payment(
            offer.funding_invoice_id,
            f"funding-{offer.id}",
            offer.offered_amount.units,
        )
        return offer_service.get_offer(offer.id)

    return _create


@pytest.fixture
def create_published_application(application_service, invoice_event_service):
    """Create an application and pay its collateral invoice in full."""

    def _create(
        borrower_id: UUID | None = None,
        principal_amount: str = "10",
        max_interest_rate: str = "0.2",
        term_in_months: int = 6,
    ):
        application = application_service.create_application(
            borrower_id=borrower_id or uuid4(),
            principal_blockchain_key=USDT.key.blockchain_key,
            principal_token_id=USDT.key.token_id,
            collateral_blockchain_key=ETH.key.blockchain_key,
            collateral_token_id=ETH.key.token_id,
            principal_amount=principal_amount,
            max_interest_rate=max_interest_rate,
            term_in_months=term_in_months,
        )
        invoice_event_service.record_payment(
            application.collateral_invoice_id,
            f"collateral-{application.id}",
            application.collateral_deposit_amount.units,
        )
        return application_service.get_application(application.id)

    return _create


@pytest.fixture
def create_active_loan(
    create_published_offer,
    create_published_application,
    matching_service,
    loan_service,
):
    """Match a fresh application to a fresh offer, originate and disburse."""

    def _create(interest_rate: str = "0.125", principal_amount: str = "10"):
        offer = create_published_offer(interest_rate=interest_rate)
        application = create_published_application(principal_amount=principal_amount)
        matching_service.match_application(application.id, offer.id)
        loan = matching_service.originate_loan(application.id)
        return loan_service.disburse_principal(loan.id)

    return _create
