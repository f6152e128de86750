"""Selectors for the lending kernel (read side)."""

from lending_kernel.selectors.marketplace_selector import LoanRole, MarketplaceSelector

__all__ = [
    "LoanRole",
    "MarketplaceSelector",
]
