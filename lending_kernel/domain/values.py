"""
Values -- Immutable, self-validating domain value objects.

Responsibility:
    Provides the value types every calculation and service works with:
    CurrencyKey, Currency, Amount and ExchangeRateSnapshot.  These replace
    bare ints and strings wherever money appears.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - An Amount always pairs integer smallest units with the currency it
      denominates; they are never separated on the wire.
    - Amount arithmetic across two currencies raises CurrencyMismatchError.
    - A Currency's ``decimals`` is a non-negative int and every amount of
      that currency is interpreted at that scale.
    - Loan principals in a currency lie within its configured
      [min_loan_principal_amount, max_loan_principal_amount].
    - Exchange-rate prices are positive integers scaled to the quote
      precision.

Failure modes:
    - ValueError on construction with an empty currency key or negative
      decimals.
    - InvalidExchangeRateError for non-positive bid/ask prices.
    - CurrencyMismatchError for cross-currency arithmetic.
    - RateOutOfPolicyBoundsError for a principal outside its currency's bounds.

Audit relevance:
    ``Amount.to_wire()`` is the only serialization of money leaving the
    kernel, so every persisted or returned amount is an integer string
    with its currency attached.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from lending_kernel.domain.units import parse_units, to_human, to_units
from lending_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidExchangeRateError,
    RateOutOfPolicyBoundsError,
)

DEFAULT_QUOTE_PRECISION = 18


@dataclass(frozen=True, slots=True)
class CurrencyKey:
    """Opaque (blockchain namespace, token identifier) pair."""

    blockchain_key: str
    token_id: str

    def __post_init__(self) -> None:
        if not self.blockchain_key or not self.token_id:
            raise ValueError("CurrencyKey requires blockchain_key and token_id")

    def __str__(self) -> str:
        return f"{self.blockchain_key}:{self.token_id}"


@dataclass(frozen=True, slots=True)
class Currency:
    """
    Currency metadata.

    Contract:
        Immutable description of a token: its key, its smallest-unit
        scale and the principal range the platform lends in it.
        Maintained by the price-feed collaborator and platform admins.

    Guarantees:
        - ``decimals`` is a non-negative int.
        - Principal bounds are smallest units; a ``None`` maximum is
          unbounded.
    """

    key: CurrencyKey
    decimals: int
    symbol: str = ""
    name: str = ""
    min_loan_principal_amount: int = 0
    max_loan_principal_amount: int | None = None

    def __post_init__(self) -> None:
        if isinstance(self.decimals, bool) or not isinstance(self.decimals, int):
            raise ValueError(f"decimals must be an int, got {self.decimals!r}")
        if self.decimals < 0:
            raise ValueError(f"decimals cannot be negative: {self.decimals}")
        if self.min_loan_principal_amount < 0:
            raise ValueError("min_loan_principal_amount cannot be negative")
        maximum = self.max_loan_principal_amount
        if maximum is not None and maximum < self.min_loan_principal_amount:
            raise ValueError(
                "max_loan_principal_amount cannot be below min_loan_principal_amount"
            )

    def check_principal(self, units: int, field: str = "principal_amount") -> int:
        """Return ``units`` if this currency lends that much, else raise."""
        minimum = self.min_loan_principal_amount
        maximum = self.max_loan_principal_amount
        if units < minimum or (maximum is not None and units > maximum):
            raise RateOutOfPolicyBoundsError(field, units, minimum, maximum)
        return units

    def amount(self, human_amount: str | int | Decimal) -> Amount:
        """Build an Amount from a human-readable value (truncating)."""
        return Amount(to_units(human_amount, self.decimals), self.key)

    def to_human(self, amount: Amount) -> Decimal:
        """Exact human-readable value of an amount of this currency."""
        if amount.currency != self.key:
            raise CurrencyMismatchError(str(self.key), str(amount.currency))
        return to_human(amount.units, self.decimals)


@dataclass(frozen=True, slots=True)
class Amount:
    """
    Integer smallest-unit amount paired with its currency.

    Contract:
        ``units`` is an int (arbitrary precision); ``currency`` is the
        CurrencyKey it denominates.  Arithmetic only within one currency.

    Non-goals:
        - Does NOT know the currency's decimals; use ``Currency.to_human``.
    """

    units: int
    currency: CurrencyKey

    def __post_init__(self) -> None:
        if isinstance(self.units, bool) or not isinstance(self.units, int):
            object.__setattr__(self, "units", parse_units(self.units))

    @classmethod
    def of(cls, units: int | str, currency: CurrencyKey) -> Amount:
        return cls(units=parse_units(units), currency=currency)

    @classmethod
    def zero(cls, currency: CurrencyKey) -> Amount:
        return cls(units=0, currency=currency)

    @property
    def is_zero(self) -> bool:
        return self.units == 0

    @property
    def is_negative(self) -> bool:
        return self.units < 0

    def _check_currency(self, other: Amount) -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(str(self.currency), str(other.currency))

    def __add__(self, other: Amount) -> Amount:
        self._check_currency(other)
        return Amount(self.units + other.units, self.currency)

    def __sub__(self, other: Amount) -> Amount:
        self._check_currency(other)
        return Amount(self.units - other.units, self.currency)

    def __neg__(self) -> Amount:
        return Amount(-self.units, self.currency)

    def __lt__(self, other: Amount) -> bool:
        self._check_currency(other)
        return self.units < other.units

    def __le__(self, other: Amount) -> bool:
        self._check_currency(other)
        return self.units <= other.units

    def __gt__(self, other: Amount) -> bool:
        self._check_currency(other)
        return self.units > other.units

    def __ge__(self, other: Amount) -> bool:
        self._check_currency(other)
        return self.units >= other.units

    def __str__(self) -> str:
        return f"{self.units} {self.currency}"

    def to_wire(self) -> dict[str, str]:
        """Boundary representation: integer string plus currency key."""
        return {
            "amount": str(self.units),
            "blockchain_key": self.currency.blockchain_key,
            "token_id": self.currency.token_id,
        }


class LiquidationMode(str, Enum):
    """How collateral is disposed of if the loan is liquidated."""

    PARTIAL = "partial"
    FULL = "full"


@dataclass(frozen=True, slots=True)
class ExchangeRateSnapshot:
    """
    Immutable bid/ask observation for a base/quote pair.

    Contract:
        Prices are integers scaled to the quote precision (18 by default).
        A new observation is a new snapshot; snapshots are never mutated.
    """

    base: CurrencyKey
    quote: CurrencyKey
    bid_price: int
    ask_price: int
    source: str
    source_date: datetime
    id: UUID | None = None

    def __post_init__(self) -> None:
        rate_id = str(self.id) if self.id else f"{self.base}/{self.quote}"
        for name in ("bid_price", "ask_price"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                object.__setattr__(self, name, parse_units(value, name))
            if getattr(self, name) <= 0:
                raise InvalidExchangeRateError(rate_id, f"{name} must be positive")

    def bid_decimal(self, precision: int = DEFAULT_QUOTE_PRECISION) -> Decimal:
        """Bid price as a decimal (bid / 10^precision)."""
        return to_human(self.bid_price, precision)

    def ask_decimal(self, precision: int = DEFAULT_QUOTE_PRECISION) -> Decimal:
        return to_human(self.ask_price, precision)
