"""
Error taxonomy for terminal-facing endpoints.

Every error a terminal can act on carries a stable code. Routes render
PosError subclasses as {"success": false, "error": code, ...} with the
class's HTTP status; anything else is an INTERNAL_ERROR.
"""

from __future__ import annotations

from typing import Any


class PosError(Exception):
    code = "POS_ERROR"
    http_status = 400

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body: dict[str, Any] = {"success": False, "error": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class InvalidPayloadError(PosError):
    code = "INVALID_PAYLOAD"

    def to_dict(self) -> dict:
        # Terminals read the human text from "details" for this code
        return {"success": False, "error": self.code, "details": self.message}


class SaleValidationError(PosError):
    """Catalog/stock problems. details is the full list of {sku, error}."""
    code = "VALIDATION_FAILED"


class CreditLimitExceededError(PosError):
    code = "CREDIT_LIMIT_EXCEEDED"


class InvoiceNotFoundError(PosError):
    code = "INVOICE_NOT_FOUND"
    http_status = 404


class CustomerMismatchError(PosError):
    code = "CUSTOMER_MISMATCH"


class InvoiceAlreadyPaidError(PosError):
    code = "INVOICE_ALREADY_PAID"


class NotFoundError(PosError):
    code = "NOT_FOUND"
    http_status = 404


class CustomerNotFoundError(PosError):
    code = "CUSTOMER_NOT_FOUND"
    http_status = 404


class InvoiceNotCreatedError(PosError):
    """The referenced terminal sale was rejected and never invoiced."""
    code = "INVOICE_NOT_CREATED"
