"""
Module: lending_kernel.models.currency
Responsibility: ORM persistence for currency metadata and exchange-rate
    snapshots supplied by the price-feed collaborator.
Architecture position: Kernel > Models.  May import from db/ and domain value
    objects.  MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - (blockchain_key, token_id) is unique per currency (uq_currency_key).
    - Exchange rates are append-only: a new observation is a new row, and
      prices are positive integers scaled to the quote precision.

Failure modes:
    - IntegrityError on a duplicate currency key.
    - InvalidExchangeRateError from ``to_snapshot`` when a stored price is
      not positive.

Audit relevance:
    Every requirement and origination quote records the exchange-rate row
    it used, so a collateral figure can be traced to the exact price
    observation behind it.
"""

from datetime import datetime

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from lending_kernel.db.base import TrackedBase
from lending_kernel.db.types import SmallestUnits
from lending_kernel.domain.values import Currency, CurrencyKey, ExchangeRateSnapshot


class CurrencyModel(TrackedBase):
    """
    Token metadata keyed by (blockchain namespace, token identifier).

    Guarantees:
        - decimals is the smallest-unit scale for every amount of this token.
        - Loan principals are bounded by min/max_loan_principal_amount
          (smallest units); a NULL maximum is unbounded.
    """

    __tablename__ = "currencies"

    __table_args__ = (
        UniqueConstraint("blockchain_key", "token_id", name="uq_currency_key"),
    )

    blockchain_key: Mapped[str] = mapped_column(String(64), nullable=False)
    token_id: Mapped[str] = mapped_column(String(128), nullable=False)
    decimals: Mapped[int] = mapped_column(nullable=False)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    min_loan_principal_amount: Mapped[int] = mapped_column(
        SmallestUnits(), nullable=False, default=0
    )
    max_loan_principal_amount: Mapped[int | None] = mapped_column(
        SmallestUnits(), nullable=True
    )

    @property
    def key(self) -> CurrencyKey:
        return CurrencyKey(self.blockchain_key, self.token_id)

    def to_domain(self) -> Currency:
        return Currency(
            key=self.key,
            decimals=int(self.decimals),
            symbol=self.symbol,
            name=self.name,
            min_loan_principal_amount=int(self.min_loan_principal_amount or 0),
            max_loan_principal_amount=self.max_loan_principal_amount,
        )

    def __repr__(self) -> str:
        return f"<Currency {self.blockchain_key}:{self.token_id} decimals={self.decimals}>"


class ExchangeRateModel(TrackedBase):
    """
    One bid/ask observation for a base/quote pair.

    Contract:
        base is the collateral-side currency, quote the principal-side
        pricing currency.  Rows are never updated.
    """

    __tablename__ = "exchange_rates"

    __table_args__ = (
        Index(
            "idx_exchange_rate_lookup",
            "base_blockchain_key",
            "base_token_id",
            "quote_blockchain_key",
            "quote_token_id",
            "source_date",
        ),
    )

    base_blockchain_key: Mapped[str] = mapped_column(String(64), nullable=False)
    base_token_id: Mapped[str] = mapped_column(String(128), nullable=False)
    quote_blockchain_key: Mapped[str] = mapped_column(String(64), nullable=False)
    quote_token_id: Mapped[str] = mapped_column(String(128), nullable=False)

    # Integers scaled to the quote precision (10^18 by default)
    bid_price: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)
    ask_price: Mapped[int] = mapped_column(SmallestUnits(), nullable=False)

    source: Mapped[str] = mapped_column(String(64), nullable=False)
    source_date: Mapped[datetime] = mapped_column(nullable=False)

    def to_snapshot(self) -> ExchangeRateSnapshot:
        return ExchangeRateSnapshot(
            id=self.id,
            base=CurrencyKey(self.base_blockchain_key, self.base_token_id),
            quote=CurrencyKey(self.quote_blockchain_key, self.quote_token_id),
            bid_price=self.bid_price,
            ask_price=self.ask_price,
            source=self.source,
            source_date=self.source_date,
        )

    def __repr__(self) -> str:
        return (
            f"<ExchangeRate {self.base_blockchain_key}:{self.base_token_id}/"
            f"{self.quote_blockchain_key}:{self.quote_token_id} bid={self.bid_price}>"
        )
