"""Errors raised by the storage backends."""


class StoreError(Exception):
    """Base exception for storage errors."""

    pass


class CodeNotFoundError(StoreError):
    """Raised when a code id is not in the pool."""

    pass


class CodeNotAvailableError(StoreError):
    """Raised when a code is no longer available (sold, expired or lost race)."""

    pass


class PurchaseNotFoundError(StoreError):
    """Raised when a purchase id is not in the ledger."""

    pass


class PurchaseNotPendingError(StoreError):
    """Raised when a purchase is no longer waiting for a code."""

    pass


class DuplicateRecordError(StoreError):
    """Raised when a record id already exists."""

    pass
