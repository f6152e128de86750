"""ORM models for the lending kernel."""

from lending_kernel.models.currency import CurrencyModel, ExchangeRateModel
from lending_kernel.models.invoice import (
    InvoiceModel,
    InvoicePaymentModel,
    InvoiceStatus,
    InvoiceType,
)
from lending_kernel.models.loan import (
    EarlyExitRequestModel,
    EarlyExitRequestStatus,
    EarlyExitType,
    LoanModel,
    LoanValuationModel,
)
from lending_kernel.models.loan_application import LiquidationMode, LoanApplicationModel
from lending_kernel.models.loan_offer import LoanOfferModel
from lending_kernel.models.platform_policy import PlatformRiskPolicyModel

__all__ = [
    "CurrencyModel",
    "ExchangeRateModel",
    "PlatformRiskPolicyModel",
    "InvoiceModel",
    "InvoicePaymentModel",
    "InvoiceStatus",
    "InvoiceType",
    "LoanOfferModel",
    "LoanApplicationModel",
    "LiquidationMode",
    "LoanModel",
    "LoanValuationModel",
    "EarlyExitRequestModel",
    "EarlyExitRequestStatus",
    "EarlyExitType",
]
