"""
Unit Converter -- human-readable amounts <-> integer smallest units.

Responsibility:
    Converts between a currency's human-readable decimal string and its
    integer "smallest unit" representation for a given decimal-places
    count.  Also hosts the high-precision Decimal contexts every
    calculation in the kernel and engines runs under.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O, no dependencies
    beyond ``lending_kernel.exceptions``.

Invariants enforced:
    - ``to_smallest_unit`` truncates toward zero; it never rounds up.
    - ``from_smallest_unit`` is exact: the divisor is a power of ten.
    - Round trip: ``to_smallest_unit(from_smallest_unit(x, d), d) == x``.
    - Floats are rejected at the boundary.

Failure modes:
    - InvalidAmountError for malformed, non-finite or float inputs.
    - ValueError for a negative or non-integer decimals count.

Audit relevance:
    Every amount that crosses the kernel boundary is produced or consumed
    here.  Truncation direction protects the platform from manufacturing
    value out of precision loss.
"""

from __future__ import annotations

from decimal import (
    ROUND_CEILING,
    ROUND_DOWN,
    ROUND_FLOOR,
    Context,
    Decimal,
    DivisionByZero,
    InvalidOperation,
    Overflow,
    localcontext,
)

from lending_kernel.exceptions import InvalidAmountError

# Wide enough for uint256 amounts at 18 decimals times any policy ratio.
PRECISION = 200

UNIT_CONTEXT = Context(
    prec=PRECISION,
    rounding=ROUND_DOWN,
    traps=[InvalidOperation, DivisionByZero, Overflow],
)

# Used where an inexact quotient must never round below the true value.
CEILING_CONTEXT = Context(
    prec=PRECISION,
    rounding=ROUND_CEILING,
    traps=[InvalidOperation, DivisionByZero, Overflow],
)

HumanAmount = str | int | Decimal
UnitsInput = str | int


def _check_decimals(decimals: int) -> None:
    if isinstance(decimals, bool) or not isinstance(decimals, int):
        raise ValueError(f"decimals must be an int, got {type(decimals).__name__}")
    if decimals < 0:
        raise ValueError(f"decimals cannot be negative: {decimals}")


def parse_decimal(value: HumanAmount, field: str = "amount") -> Decimal:
    """Parse a finite Decimal from str, int or Decimal (floats rejected)."""
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmountError(field, value, "floats are not accepted")
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, int):
        parsed = Decimal(value)
    elif isinstance(value, str):
        try:
            parsed = Decimal(value.strip())
        except InvalidOperation as e:
            raise InvalidAmountError(field, value, "not a decimal number") from e
    else:
        raise InvalidAmountError(field, value, f"unsupported type {type(value).__name__}")
    if not parsed.is_finite():
        raise InvalidAmountError(field, value, "must be finite")
    return parsed


def parse_units(value: UnitsInput, field: str = "amount") -> int:
    """Parse an integer smallest-unit amount from an int or integer string."""
    if isinstance(value, bool):
        raise InvalidAmountError(field, value, "booleans are not amounts")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        body = text[1:] if text[:1] in "+-" else text
        if not (body.isascii() and body.isdigit()):
            raise InvalidAmountError(field, value, "not an integer string")
        return int(text)
    raise InvalidAmountError(field, value, f"unsupported type {type(value).__name__}")


def to_units(human_amount: HumanAmount, decimals: int) -> int:
    """Scale a human amount to smallest units, truncating toward zero."""
    _check_decimals(decimals)
    amount = parse_decimal(human_amount)
    with localcontext(UNIT_CONTEXT):
        return int(amount.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))


def to_human(units: int, decimals: int) -> Decimal:
    """Exact Decimal value of an integer smallest-unit amount."""
    _check_decimals(decimals)
    with localcontext(UNIT_CONTEXT):
        return Decimal(units).scaleb(-decimals)


def to_smallest_unit(human_amount: HumanAmount, decimals: int) -> str:
    """
    Convert a human-readable amount into an integer smallest-unit string.

    Multiplies by 10^decimals and truncates toward zero.

    >>> to_smallest_unit("1.5", 6)
    '1500000'
    >>> to_smallest_unit("0.0000019", 6)
    '1'
    """
    return str(to_units(human_amount, decimals))


def from_smallest_unit(smallest_amount: UnitsInput, decimals: int) -> str:
    """
    Convert an integer smallest-unit amount into a human-readable string.

    The result carries exactly ``decimals`` fractional digits.

    >>> from_smallest_unit("1500000", 6)
    '1.500000'
    """
    units = parse_units(smallest_amount)
    return format(to_human(units, decimals), "f")


def truncate_to_int(value: Decimal) -> int:
    """Integer part of a Decimal, truncated toward zero."""
    with localcontext(UNIT_CONTEXT):
        return int(value.to_integral_value(rounding=ROUND_DOWN))


def floor_to_int(value: Decimal) -> int:
    with localcontext(UNIT_CONTEXT):
        return int(value.to_integral_value(rounding=ROUND_FLOOR))


def ceil_to_int(value: Decimal) -> int:
    with localcontext(UNIT_CONTEXT):
        return int(value.to_integral_value(rounding=ROUND_CEILING))


RATIO_PLACES = 18
_RATIO_QUANTUM = Decimal(1).scaleb(-RATIO_PLACES)


def quantize_ratio(value: Decimal) -> Decimal:
    """Truncate a ratio to the 18 places persisted and returned at the boundary."""
    with localcontext(UNIT_CONTEXT):
        return value.quantize(_RATIO_QUANTUM, rounding=ROUND_DOWN)
