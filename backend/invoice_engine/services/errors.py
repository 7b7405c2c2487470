from __future__ import annotations

from typing import Iterable, List, Optional


class InvoicingError(Exception):
    """Base exception for invoice composition errors"""
    pass


class ConfigurationError(InvoicingError):
    """Raised when engine or collaborator configuration is unusable"""
    pass


class ValidationError(InvoicingError):
    """Raised when a document or selection fails validation.

    ``errors`` holds every problem found, not just the first one.
    """

    def __init__(self, errors: Iterable[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors: List[str] = list(errors)
        super().__init__("; ".join(self.errors))


class CounterpartyMismatch(InvoicingError):
    """Raised when selected charges belong to a different counterparty than the invoice"""

    def __init__(self, charge_ids: Iterable[str], expected: Optional[str] = None):
        self.charge_ids: List[str] = list(charge_ids)
        self.expected = expected
        super().__init__(
            f"Charges {', '.join(self.charge_ids)} do not belong to counterparty {expected or '(unset)'}"
        )


class NothingToImport(InvoicingError):
    """Raised when an import has no selected, eligible rows left"""
    pass


class AlreadyInvoiced(InvoicingError):
    """Raised when trying to select an import row already consumed by a prior invoice"""
    pass


class ServiceError(InvoicingError):
    """Raised by collaborators when an external service rejects a request"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class SubmitError(InvoicingError):
    """Raised when the invoicing service fails to accept a document"""
    pass
