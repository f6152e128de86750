"""
ReferenceDataService -- currencies, exchange rates and risk policies.

Responsibility:
    The lookup side of the price-feed and admin collaborators: registers
    currency metadata, appends exchange-rate observations, publishes risk
    policy versions, and resolves the records a calculation needs.  The
    calculators never look anything up themselves; services call this
    first and pass the results in.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - An unknown currency raises CurrencyNotSupportedError, distinct from
      validation failures.
    - Exchange rates and policies are append-only.
    - ``effective_risk_policy(as_of)`` returns the latest snapshot with
      ``effective_from <= as_of``; later versions never leak backwards.

Failure modes:
    - CurrencyNotSupportedError, ExchangeRateNotFoundError,
      RiskPolicyNotFoundError for missing reference data.
    - InvalidExchangeRateError for non-positive prices.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from lending_config.schema import LendingSettings
from lending_kernel.domain.policy import PlatformRiskPolicy, select_effective_policy
from lending_kernel.domain.values import Currency, CurrencyKey, ExchangeRateSnapshot
from lending_kernel.exceptions import (
    CurrencyNotSupportedError,
    ExchangeRateNotFoundError,
    InvalidRiskPolicyError,
)
from lending_kernel.logging_config import get_logger
from lending_kernel.models.currency import CurrencyModel, ExchangeRateModel
from lending_kernel.models.platform_policy import PlatformRiskPolicyModel
from lending_kernel.services.base import SYSTEM_ACTOR_ID, BaseService

logger = get_logger("services.reference_data")


class ReferenceDataService(BaseService[CurrencyModel]):
    """Reference data reads and append-only writes."""

    # ------------------------------------------------------------------
    # Currencies
    # ------------------------------------------------------------------

    def register_currency(
        self,
        currency: Currency,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> Currency:
        model = CurrencyModel(
            blockchain_key=currency.key.blockchain_key,
            token_id=currency.key.token_id,
            decimals=currency.decimals,
            symbol=currency.symbol,
            name=currency.name,
            min_loan_principal_amount=currency.min_loan_principal_amount,
            max_loan_principal_amount=currency.max_loan_principal_amount,
            created_by_id=actor_id,
        )
        self.session.add(model)
        self.session.flush()
        logger.info(
            "currency_registered",
            extra={
                "currency": str(currency.key),
                "decimals": currency.decimals,
                "min_loan_principal_amount": str(currency.min_loan_principal_amount),
                "max_loan_principal_amount": (
                    None
                    if currency.max_loan_principal_amount is None
                    else str(currency.max_loan_principal_amount)
                ),
            },
        )
        return currency

    def get_currency(self, blockchain_key: str, token_id: str) -> Currency:
        """
        Currency metadata for a key.

        Raises:
            CurrencyNotSupportedError: no such currency is registered.
        """
        model = self.session.execute(
            select(CurrencyModel).where(
                CurrencyModel.blockchain_key == blockchain_key,
                CurrencyModel.token_id == token_id,
            )
        ).scalar_one_or_none()
        if model is None:
            raise CurrencyNotSupportedError(blockchain_key, token_id)
        return model.to_domain()

    def require_currency(self, key: CurrencyKey) -> Currency:
        return self.get_currency(key.blockchain_key, key.token_id)

    # ------------------------------------------------------------------
    # Exchange rates
    # ------------------------------------------------------------------

    def record_exchange_rate(
        self,
        base: CurrencyKey,
        quote: CurrencyKey,
        bid_price: int,
        ask_price: int,
        source: str,
        source_date: datetime,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> ExchangeRateSnapshot:
        """Append a new observation; prior rows are never touched."""
        # Validate before touching the session.
        ExchangeRateSnapshot(
            base=base,
            quote=quote,
            bid_price=bid_price,
            ask_price=ask_price,
            source=source,
            source_date=source_date,
        )
        model = ExchangeRateModel(
            base_blockchain_key=base.blockchain_key,
            base_token_id=base.token_id,
            quote_blockchain_key=quote.blockchain_key,
            quote_token_id=quote.token_id,
            bid_price=int(bid_price),
            ask_price=int(ask_price),
            source=source,
            source_date=source_date,
            created_by_id=actor_id,
        )
        self.session.add(model)
        self.session.flush()
        logger.info(
            "exchange_rate_recorded",
            extra={
                "base": str(base),
                "quote": str(quote),
                "bid_price": str(bid_price),
                "source": source,
            },
        )
        return model.to_snapshot()

    def latest_exchange_rate(
        self,
        base: CurrencyKey,
        quote: CurrencyKey | None = None,
        as_of: datetime | None = None,
    ) -> ExchangeRateSnapshot:
        """
        Most recent observation for ``base`` (and ``quote`` when given).

        Raises:
            ExchangeRateNotFoundError: nothing observed as of ``as_of``.
        """
        stmt = select(ExchangeRateModel).where(
            ExchangeRateModel.base_blockchain_key == base.blockchain_key,
            ExchangeRateModel.base_token_id == base.token_id,
        )
        if quote is not None:
            stmt = stmt.where(
                ExchangeRateModel.quote_blockchain_key == quote.blockchain_key,
                ExchangeRateModel.quote_token_id == quote.token_id,
            )
        if as_of is not None:
            stmt = stmt.where(ExchangeRateModel.source_date <= as_of)
        model = self.session.execute(
            stmt.order_by(
                ExchangeRateModel.source_date.desc(),
                ExchangeRateModel.created_at.desc(),
            ).limit(1)
        ).scalar_one_or_none()
        if model is None:
            raise ExchangeRateNotFoundError(str(base), str(quote) if quote else "*")
        return model.to_snapshot()

    # ------------------------------------------------------------------
    # Risk policy
    # ------------------------------------------------------------------

    def publish_risk_policy(
        self,
        policy: PlatformRiskPolicy,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> PlatformRiskPolicy:
        """Insert a new policy version.  Existing versions are never edited."""
        existing = self.session.execute(
            select(PlatformRiskPolicyModel.id).where(
                PlatformRiskPolicyModel.version == policy.version
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise InvalidRiskPolicyError(policy.version, "version already published")
        self.session.add(PlatformRiskPolicyModel.from_domain(policy, actor_id))
        self.session.flush()
        logger.info("risk_policy_published", extra=policy.as_dict())
        return policy

    def effective_risk_policy(self, as_of: datetime | None = None) -> PlatformRiskPolicy:
        """
        Latest-effective policy as of ``as_of`` (defaults to now).

        Raises:
            RiskPolicyNotFoundError: no version is effective yet.
        """
        as_of = as_of or self.clock.now()
        rows = self.session.execute(
            select(PlatformRiskPolicyModel).where(
                PlatformRiskPolicyModel.effective_from <= as_of
            )
        ).scalars().all()
        return select_effective_policy((r.to_domain() for r in rows), as_of)

    def seed_from_settings(self, settings: LendingSettings | None = None) -> int:
        """Publish configured policies whose versions are not stored yet."""
        settings = settings or self.settings
        stored = set(
            self.session.execute(select(PlatformRiskPolicyModel.version)).scalars().all()
        )
        inserted = 0
        for policy in settings.risk_policies:
            if policy.version in stored:
                continue
            self.publish_risk_policy(policy)
            inserted += 1
        logger.info(
            "risk_policies_seeded",
            extra={"environment": settings.environment, "inserted": inserted},
        )
        return inserted
