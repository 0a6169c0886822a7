"""
Error kinds and exceptions raised by the pricing engine.

Callers branch on ``error.kind`` rather than walking exception chains.
"""
from enum import Enum
from typing import Any, Optional


class ErrorKind(Enum):
    """Typed error kinds surfaced by resolution, calculation and diffing."""
    INVALID_CREDENTIAL = "invalid_credential"
    CATALOG_UNAVAILABLE = "catalog_unavailable"
    TIMEOUT = "timeout"
    AMBIGUOUS_MATCH = "ambiguous_match"
    NO_MATCH = "no_match"
    INTERNAL_INVARIANT_VIOLATION = "internal_invariant_violation"


class PricingError(Exception):
    """Base class for pricing engine errors."""
    kind: ErrorKind = ErrorKind.CATALOG_UNAVAILABLE
    retryable: bool = False


class InvalidCredentialError(PricingError):
    """Raised when the pricing catalog rejects the session credential."""
    kind = ErrorKind.INVALID_CREDENTIAL
    retryable = False

    def __init__(self, message: str, endpoint: Optional[str] = None):
        super().__init__(message)
        self.endpoint = endpoint


class CatalogUnavailableError(PricingError):
    """Raised when the catalog fails in a way that may succeed on retry."""
    kind = ErrorKind.CATALOG_UNAVAILABLE
    retryable = True

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class CatalogQueryError(PricingError):
    """Raised when the catalog rejects a query; retrying will not help."""
    kind = ErrorKind.CATALOG_UNAVAILABLE
    retryable = False


class CatalogTimeoutError(PricingError):
    """Raised when a single catalog call times out."""
    kind = ErrorKind.TIMEOUT
    retryable = True


class ResolutionTimeoutError(PricingError):
    """
    Raised when the overall resolution deadline expires.

    The project has already been updated with every batch that completed;
    ``report`` describes what was resolved.
    """
    kind = ErrorKind.TIMEOUT
    retryable = False

    def __init__(self, message: str, report: Any = None):
        super().__init__(message)
        self.report = report


class InternalInvariantViolation(PricingError):
    """Raised when the cost model is in a state that should be impossible."""
    kind = ErrorKind.INTERNAL_INVARIANT_VIOLATION
    retryable = False


class UsageError(ValueError):
    """Raised when supplied usage data cannot be applied to a resource."""
    pass
