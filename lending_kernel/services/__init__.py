"""Services for the lending kernel (write side)."""

from lending_kernel.services.application_service import ApplicationService
from lending_kernel.services.base import SYSTEM_ACTOR_ID, BaseService
from lending_kernel.services.invoice_event_service import (
    InvoiceEventResult,
    InvoiceEventService,
    InvoiceEventStatus,
)
from lending_kernel.services.invoice_service import InvoiceService
from lending_kernel.services.loan_service import LoanService
from lending_kernel.services.matching_service import MatchingService, MatchResult
from lending_kernel.services.offer_service import OfferService
from lending_kernel.services.reference_data_service import ReferenceDataService

__all__ = [
    "ApplicationService",
    "BaseService",
    "InvoiceEventResult",
    "InvoiceEventService",
    "InvoiceEventStatus",
    "InvoiceService",
    "LoanService",
    "MatchResult",
    "MatchingService",
    "OfferService",
    "ReferenceDataService",
    "SYSTEM_ACTOR_ID",
]
