"""
Module: lending_kernel.db.types
Responsibility: Portable column types for exact lending arithmetic.
    Smallest-unit amounts routinely exceed 64-bit integers (10 units of an
    18-decimals token is 10^19), and rates must round-trip without float
    contamination on every supported backend.
Architecture position: Kernel > DB.  Imported by db/base.py and models/.
    MUST NOT import from models/, services/, selectors/, or outer layers.

Invariants enforced:
    - SmallestUnits: Python int in, Python int out.  NUMERIC(78, 0) on
      PostgreSQL (fits uint256), canonical integer text elsewhere.
    - ExactDecimal: Decimal in, Decimal out.  NUMERIC(38, 18) on
      PostgreSQL, canonical decimal text elsewhere.  Never float.
    - UTCDateTime: always returns timezone-aware UTC datetimes, also on
      backends that drop tzinfo (SQLite).

Failure modes:
    - TypeError when binding a float into SmallestUnits or ExactDecimal.
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.types import TypeDecorator


class SmallestUnits(TypeDecorator):
    """Arbitrary-size integer amount in a currency's smallest unit."""

    impl = String(80)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Numeric(78, 0))
        return dialect.type_descriptor(String(80))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, (float, bool)):
            raise TypeError(f"SmallestUnits requires int, got {type(value).__name__}")
        units = int(value)
        if dialect.name == "postgresql":
            return Decimal(units)
        return str(units)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


class ExactDecimal(TypeDecorator):
    """Ratio or rate stored without float rounding."""

    impl = String(64)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Numeric(38, 18))
        return dialect.type_descriptor(String(64))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            raise TypeError("ExactDecimal does not accept float")
        value = value if isinstance(value, Decimal) else Decimal(str(value))
        if dialect.name == "postgresql":
            return value
        return format(value, "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value if isinstance(value, Decimal) else Decimal(str(value))


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp normalized to UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("UTCDateTime requires a timezone-aware datetime")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
