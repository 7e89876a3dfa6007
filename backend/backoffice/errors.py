# Overview: Domain and system error taxonomy for the settlement and credit ledger.

"""
LEDGER ERRORS

Domain errors (LedgerError subclasses) mean a business rule was violated.
They are never retried and always abort the enclosing transaction.

LedgerSystemError means the storage layer failed. It is deliberately not a
LedgerError so callers can tell "rule violated" from "system malfunction".
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base exception for all business rule violations."""
    code = "LEDGER_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class LedgerSystemError(Exception):
    """Raised when persistence fails; the transaction has been rolled back."""
    code = "SYSTEM_ERROR"


# =============================================================================
# NOT FOUND
# =============================================================================

class ProductNotFound(LedgerError):
    code = "PRODUCT_NOT_FOUND"
    http_status = 404


class CustomerNotFound(LedgerError):
    code = "CUSTOMER_NOT_FOUND"
    http_status = 404


class UserNotFound(LedgerError):
    code = "USER_NOT_FOUND"
    http_status = 404


class SaleNotFound(LedgerError):
    code = "SALE_NOT_FOUND"
    http_status = 404


class CreditNotFound(LedgerError):
    code = "CREDIT_NOT_FOUND"
    http_status = 404


# =============================================================================
# STOCK
# =============================================================================

class InsufficientStock(LedgerError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409


class InvalidQuantity(LedgerError):
    code = "INVALID_QUANTITY"


class InvalidMovementReason(LedgerError):
    code = "INVALID_MOVEMENT_REASON"


# =============================================================================
# SALES
# =============================================================================

class EmptySale(LedgerError):
    code = "EMPTY_SALE"


class InvalidPaymentKind(LedgerError):
    code = "INVALID_PAYMENT_KIND"


class SaleNotCompleted(LedgerError):
    code = "SALE_NOT_COMPLETED"
    http_status = 409


class HasOutstandingPayments(LedgerError):
    code = "HAS_OUTSTANDING_PAYMENTS"
    http_status = 409


# =============================================================================
# CREDIT AND PAYMENTS
# =============================================================================

class InvalidInstallmentCount(LedgerError):
    code = "INVALID_INSTALLMENT_COUNT"


class CreditNotActive(LedgerError):
    code = "CREDIT_NOT_ACTIVE"
    http_status = 409


class PaymentExceedsBalance(LedgerError):
    code = "PAYMENT_EXCEEDS_BALANCE"


class InvalidAmount(LedgerError):
    code = "INVALID_AMOUNT"


class InvalidPaymentMethod(LedgerError):
    code = "INVALID_PAYMENT_METHOD"
