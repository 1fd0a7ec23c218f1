from __future__ import annotations


class RetryableError(Exception):
    """Indicates a failure that may succeed on retry."""


class NonRetryableError(Exception):
    """Indicates a failure that should not be retried."""


class PricingError(NonRetryableError):
    """Base class for pricing engine failures surfaced to callers."""


class InvalidPrice(PricingError):
    """A price is negative or not a finite number."""


class InvalidParameter(PricingError):
    """A strategy or workflow parameter is outside its domain."""


class NotFound(PricingError):
    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class AlreadyResolved(PricingError):
    def __init__(self, update_id: str, status: str) -> None:
        super().__init__(f"pending update {update_id} already {status}")
        self.update_id = update_id
        self.status = status


class InvalidRule(PricingError):
    """A price rule failed shape validation or an illegal status change."""


class ConcurrentUpdate(RetryableError):
    """The SKU kept changing underneath a compare-and-set write."""
