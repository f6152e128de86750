"""Reference currencies and prices shared by the test suite."""

from datetime import UTC, datetime

from lending_kernel.domain.values import Currency, CurrencyKey

FIXED_NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=UTC)

E18 = 10**18

# USDT lends between 1 and 1,000,000 units; ETH and USD carry no loan bounds.
USDT = Currency(
    CurrencyKey("eip155:56", "bep20:usdt"),
    18,
    "USDT",
    "Tether USD",
    min_loan_principal_amount=E18,
    max_loan_principal_amount=1_000_000 * E18,
)
ETH = Currency(CurrencyKey("eip155:1", "slip44:60"), 18, "ETH", "Ether")
USD = Currency(CurrencyKey("iso4217", "usd"), 2, "USD", "US Dollar")

ETH_BID = 2000 * E18
ETH_ASK = 2001 * E18
