"""
Typed Exception Hierarchy for the Lending Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All domain exceptions inherit from LendingKernelError:

    LendingKernelError (base)
    |
    +-- CurrencyError
    |   +-- CurrencyNotSupportedError
    |   +-- CurrencyMismatchError
    |   +-- ExchangeRateNotFoundError
    |   +-- InvalidExchangeRateError
    |
    +-- PolicyError
    |   +-- RateOutOfPolicyBoundsError
    |   +-- RiskPolicyNotFoundError
    |   +-- InvalidRiskPolicyError
    |
    +-- ConcurrencyError
    |   +-- InsufficientAvailabilityError
    |   +-- ConcurrentEventConflictError
    |   +-- StaleRecordError
    |
    +-- LifecycleError
    |   +-- IllegalStateTransitionError
    |   +-- PreconditionNotAcknowledgedError
    |   +-- LoanAlreadyOriginatedError
    |
    +-- ValidationError
    |   +-- InvalidAmountError
    |   +-- InvalidTermError
    |   +-- InvalidDateError
    |   +-- CreationDateOutOfWindowError
    |   +-- SelfMatchError
    |   +-- IncompatibleOfferError
    |   +-- InvoicePaymentMismatchError
    |
    +-- NotFoundError
        +-- OfferNotFoundError
        +-- ApplicationNotFoundError
        +-- LoanNotFoundError
        +-- InvoiceNotFoundError

    CalculationInvariantError (RuntimeError, outside the hierarchy)

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | Retryable | When Raised
----------------|-------------------------------|-----------|---------------------------------
Currency        | CURRENCY_NOT_SUPPORTED        | yes       | Unknown currency or pair
                | CURRENCY_MISMATCH             | no        | Mixed currencies in arithmetic
                | EXCHANGE_RATE_NOT_FOUND       | yes       | No rate snapshot for the pair
                | INVALID_EXCHANGE_RATE         | no        | Bid/ask zero or negative
----------------|-------------------------------|-----------|---------------------------------
Policy          | RATE_OUT_OF_POLICY_BOUNDS     | no        | Rate or amount outside [min,max]
                | RISK_POLICY_NOT_FOUND         | no        | No policy effective at the date
                | INVALID_RISK_POLICY           | no        | Policy fields out of range
----------------|-------------------------------|-----------|---------------------------------
Concurrency     | INSUFFICIENT_AVAILABILITY     | yes       | Lost a race for offer principal
                | CONCURRENT_EVENT_CONFLICT     | yes       | Same invoice event delivered twice
                |                               |           | concurrently
----------------|-------------------------------|-----------|---------------------------------
Lifecycle       | ILLEGAL_STATE_TRANSITION      | no        | Action not legal from the state
                | PRECONDITION_NOT_ACKNOWLEDGED | no        | Early exit without acknowledgment
                | LOAN_ALREADY_ORIGINATED       | no        | Second origination for a match
----------------|-------------------------------|-----------|---------------------------------
Validation      | INVALID_AMOUNT                | no        | Malformed or non-positive amount
                | INVALID_TERM                  | no        | Term missing from offer options
                | INVALID_DATE                  | no        | Expiration not after creation
                | CREATION_DATE_OUT_OF_WINDOW   | no        | Production creation-date check
                | SELF_MATCH                    | no        | Borrower and lender are the same
                | INCOMPATIBLE_OFFER            | no        | Offer cannot serve application
                | INVOICE_PAYMENT_MISMATCH      | no        | Replayed payment changed amount
----------------|-------------------------------|-----------|---------------------------------
Not found       | OFFER_NOT_FOUND, APPLICATION_NOT_FOUND, LOAN_NOT_FOUND,
                | INVOICE_NOT_FOUND

===============================================================================
HANDLING PATTERNS
===============================================================================

1. RETRY RACE LOSERS, NOT STALE VIEWS:

    try:
        matching.match_application(application_id, offer_id)
    except InsufficientAvailabilityError as e:
        # Another borrower consumed the principal first; pick another offer
        retry_with_next_offer(e.offer_id)
    except IllegalStateTransitionError as e:
        # Client acted on an out-of-date state; refresh, do not retry
        return {"error": e.code, "state": e.current_state}

2. USE STRUCTURED DATA (not message parsing):

    except RateOutOfPolicyBoundsError as e:
        return {
            "error": e.code,
            "field": e.field,
            "minimum": str(e.minimum),
            "maximum": str(e.maximum),
        }

3. INVARIANT VIOLATIONS ARE NOT HANDLED:

    CalculationInvariantError signals a programming error (for example a
    zero LTV denominator that policy validation should have made
    unreachable).  It deliberately sits outside LendingKernelError so a
    boundary translating ``LendingKernelError`` never swallows it.
"""

from decimal import Decimal


class LendingKernelError(Exception):
    """
    Base exception for all lending kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification and a ``retryable`` flag.
    """

    code: str = "LENDING_KERNEL_ERROR"
    retryable: bool = False


# Currency-related exceptions


class CurrencyError(LendingKernelError):
    """Base exception for currency-related errors."""

    code: str = "CURRENCY_ERROR"


class CurrencyNotSupportedError(CurrencyError):
    """No currency record exists for the (blockchain, token) pair."""

    code: str = "CURRENCY_NOT_SUPPORTED"
    retryable: bool = True

    def __init__(self, blockchain_key: str, token_id: str):
        self.blockchain_key = blockchain_key
        self.token_id = token_id
        super().__init__(
            f"Currency not supported: {blockchain_key}:{token_id}"
        )


class CurrencyMismatchError(CurrencyError):
    """Arithmetic attempted across two different currencies."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, expected: str, received: str):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Currency mismatch: expected {expected}, received {received}"
        )


class ExchangeRateNotFoundError(CurrencyError):
    """No exchange rate snapshot exists for the currency pair."""

    code: str = "EXCHANGE_RATE_NOT_FOUND"
    retryable: bool = True

    def __init__(self, base: str, quote: str):
        self.base = base
        self.quote = quote
        super().__init__(f"No exchange rate for {base} -> {quote}")


class InvalidExchangeRateError(CurrencyError):
    """Exchange rate prices must be positive integers."""

    code: str = "INVALID_EXCHANGE_RATE"

    def __init__(self, rate_id: str, reason: str):
        self.rate_id = rate_id
        self.reason = reason
        super().__init__(f"Invalid exchange rate {rate_id}: {reason}")


# Policy-related exceptions


class PolicyError(LendingKernelError):
    """Base exception for platform risk policy errors."""

    code: str = "POLICY_ERROR"


class RateOutOfPolicyBoundsError(PolicyError):
    """
    A rate or requested amount lies outside its configured [min, max].

    The caller must resubmit with corrected values.
    """

    code: str = "RATE_OUT_OF_POLICY_BOUNDS"

    def __init__(
        self,
        field: str,
        value: Decimal | int,
        minimum: Decimal | int,
        maximum: Decimal | int | None,
    ):
        self.field = field
        self.value = value
        self.minimum = minimum
        self.maximum = maximum
        upper = "unbounded" if maximum is None else maximum
        super().__init__(
            f"{field}={value} outside allowed range [{minimum}, {upper}]"
        )


class RiskPolicyNotFoundError(PolicyError):
    """No platform risk policy is effective at the reference date."""

    code: str = "RISK_POLICY_NOT_FOUND"

    def __init__(self, as_of: str):
        self.as_of = as_of
        super().__init__(f"No platform risk policy effective at {as_of}")


class InvalidRiskPolicyError(PolicyError):
    """A risk policy snapshot failed validation."""

    code: str = "INVALID_RISK_POLICY"

    def __init__(self, version: int, reason: str):
        self.version = version
        self.reason = reason
        super().__init__(f"Invalid risk policy v{version}: {reason}")


# Concurrency-related exceptions


class ConcurrencyError(LendingKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class InsufficientAvailabilityError(ConcurrencyError):
    """
    The offer no longer has enough available principal.

    Raised to every concurrent match attempt except the winner.
    """

    code: str = "INSUFFICIENT_AVAILABILITY"

    def __init__(self, offer_id: str, requested: int, available: int):
        self.offer_id = offer_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Offer {offer_id} has {available} available, {requested} requested"
        )


class ConcurrentEventConflictError(ConcurrencyError):
    """Two deliveries of the same invoice event raced on insert."""

    code: str = "CONCURRENT_EVENT_CONFLICT"

    def __init__(self, invoice_id: str, payment_ref: str):
        self.invoice_id = invoice_id
        self.payment_ref = payment_ref
        super().__init__(
            f"Concurrent delivery of payment {payment_ref} for invoice {invoice_id}"
        )


class StaleRecordError(ConcurrencyError):
    """A versioned row kept changing under a write for every retry."""

    code: str = "STALE_RECORD"

    def __init__(self, entity_type: str, entity_id: str, attempts: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.attempts = attempts
        super().__init__(
            f"{entity_type} {entity_id} changed concurrently on each of {attempts} attempts"
        )


# Lifecycle-related exceptions


class LifecycleError(LendingKernelError):
    """Base exception for lifecycle state machine errors."""

    code: str = "LIFECYCLE_ERROR"


class IllegalStateTransitionError(LifecycleError):
    """
    The requested action is not legal from the entity's current state.

    Not retryable: indicates the caller acted on a stale view.
    """

    code: str = "ILLEGAL_STATE_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        action: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_state = current_state
        self.action = action
        super().__init__(
            f"Cannot {action} {entity_type} {entity_id} in state {current_state}"
        )


class PreconditionNotAcknowledgedError(LifecycleError):
    """An early-exit request arrived without the risk acknowledgment."""

    code: str = "PRECONDITION_NOT_ACKNOWLEDGED"

    def __init__(self, loan_id: str, action: str):
        self.loan_id = loan_id
        self.action = action
        super().__init__(
            f"{action} for loan {loan_id} requires explicit risk acknowledgment"
        )


class LoanAlreadyOriginatedError(LifecycleError):
    """A loan already exists for the matched application."""

    code: str = "LOAN_ALREADY_ORIGINATED"

    def __init__(self, application_id: str, loan_id: str):
        self.application_id = application_id
        self.loan_id = loan_id
        super().__init__(
            f"Application {application_id} already originated loan {loan_id}"
        )


# Validation exceptions


class ValidationError(LendingKernelError):
    """Base exception for request validation failures."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """An amount is malformed, negative, or otherwise unusable."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


class InvalidTermError(ValidationError):
    """A loan term is not positive or not offered."""

    code: str = "INVALID_TERM"

    def __init__(self, term_in_months: int, allowed: tuple[int, ...] = ()):
        self.term_in_months = term_in_months
        self.allowed = allowed
        super().__init__(
            f"Term of {term_in_months} months not allowed (options: {list(allowed)})"
        )


class InvalidDateError(ValidationError):
    """A date field is inconsistent with the record it belongs to."""

    code: str = "INVALID_DATE"

    def __init__(self, field: str, value: str, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value}: {reason}")


class CreationDateOutOfWindowError(ValidationError):
    """Production check: creation date too far from the current time."""

    code: str = "CREATION_DATE_OUT_OF_WINDOW"

    def __init__(self, creation_date: str, now: str, tolerance_seconds: int):
        self.creation_date = creation_date
        self.now = now
        self.tolerance_seconds = tolerance_seconds
        super().__init__(
            f"Creation date {creation_date} is more than {tolerance_seconds}s "
            f"from current time {now}"
        )


class SelfMatchError(ValidationError):
    """Borrower and lender are the same user."""

    code: str = "SELF_MATCH"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User {user_id} cannot borrow from their own offer")


class IncompatibleOfferError(ValidationError):
    """The offer cannot serve the application (currency, term, or status)."""

    code: str = "INCOMPATIBLE_OFFER"

    def __init__(self, offer_id: str, application_id: str, reason: str):
        self.offer_id = offer_id
        self.application_id = application_id
        self.reason = reason
        super().__init__(
            f"Offer {offer_id} incompatible with application {application_id}: {reason}"
        )


class InvoicePaymentMismatchError(ValidationError):
    """A replayed payment event carries a different amount than the original."""

    code: str = "INVOICE_PAYMENT_MISMATCH"

    def __init__(self, invoice_id: str, payment_ref: str, recorded: int, received: int):
        self.invoice_id = invoice_id
        self.payment_ref = payment_ref
        self.recorded = recorded
        self.received = received
        super().__init__(
            f"Payment {payment_ref} for invoice {invoice_id} recorded as "
            f"{recorded}, replay carries {received}"
        )


# Not-found exceptions


class NotFoundError(LendingKernelError):
    """Base exception for missing records."""

    code: str = "NOT_FOUND"


class OfferNotFoundError(NotFoundError):
    """Loan offer does not exist (or is not visible to the caller)."""

    code: str = "OFFER_NOT_FOUND"

    def __init__(self, offer_id: str):
        self.offer_id = offer_id
        super().__init__(f"Loan offer not found: {offer_id}")


class ApplicationNotFoundError(NotFoundError):
    """Loan application does not exist (or is not visible to the caller)."""

    code: str = "APPLICATION_NOT_FOUND"

    def __init__(self, application_id: str):
        self.application_id = application_id
        super().__init__(f"Loan application not found: {application_id}")


class LoanNotFoundError(NotFoundError):
    """Loan does not exist (or is not visible to the caller)."""

    code: str = "LOAN_NOT_FOUND"

    def __init__(self, loan_id: str):
        self.loan_id = loan_id
        super().__init__(f"Loan not found: {loan_id}")


class InvoiceNotFoundError(NotFoundError):
    """Invoice does not exist."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


# Programming-invariant violations


class CalculationInvariantError(RuntimeError):
    """
    A calculation reached a state policy validation should make impossible.

    Zero LTV or exchange-rate denominators land here.  Never caught by the
    service layer.
    """

    code: str = "CALCULATION_INVARIANT_VIOLATION"

    def __init__(self, calculation: str, reason: str):
        self.calculation = calculation
        self.reason = reason
        super().__init__(f"Invariant violated in {calculation}: {reason}")
