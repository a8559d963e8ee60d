# Overview: Error taxonomy shared by ledger operations, services and routes.

"""
Ledger Error Taxonomy

Every failure raised by a ledger operation is a LedgerError carrying a short
human-readable message plus an optional details dict. Routes map each class
to an HTTP status via `http_status`; the message never includes internal ids
other than the failing entity's.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for business-operation failures."""

    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ValidationError(LedgerError, ValueError):
    """400-level input problem."""


class ConflictError(LedgerError, ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""

    http_status = 409


class NotFoundError(LedgerError):
    """Referenced entity does not exist (or belongs to another business)."""

    http_status = 404


class InsufficientStockError(LedgerError):
    http_status = 409


class InsufficientFundsError(LedgerError):
    http_status = 409


class CreditLimitExceededError(LedgerError):
    http_status = 409


class EmptyCartError(LedgerError):
    pass


class UnsupportedPaymentMethodError(LedgerError):
    pass


class StoreError(LedgerError):
    """Opaque wrapper around any underlying storage failure."""

    http_status = 503
