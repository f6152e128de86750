"""
Lending Kernel - collateralized lending marketplace core

A transactional core for a crypto-collateralized lending marketplace with:
- Exact smallest-unit currency arithmetic
- Explicit, versioned platform risk policy
- Closed lifecycle state machines for offers, applications and loans
- At-most-one-winner offer matching
- Idempotent invoice event handling
"""

__version__ = "0.1.0"
