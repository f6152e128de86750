"""
Unit Converter surface for engine callers.

The converter lives in ``lending_kernel.domain.units`` so value objects can
use it without importing the engines package; this module re-exports the
boundary functions under the engines namespace.
"""

from lending_kernel.domain.units import (
    from_smallest_unit,
    to_human,
    to_smallest_unit,
    to_units,
)

__all__ = [
    "to_smallest_unit",
    "from_smallest_unit",
    "to_units",
    "to_human",
]
