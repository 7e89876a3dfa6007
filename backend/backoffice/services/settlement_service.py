# Overview: Service-layer operations for sale settlement; turns a priced cart into a committed sale.

"""
Sale Settlement

ONE TRANSACTION per call:
    1. validate cart, customer, cashier, installment count
    2. allocate sale number and insert the Sale (flush -> sale.id is known)
    3. per line: snapshot product, debit stock (reason SALE, reference = sale.id)
    4. compute subtotal / tax / total
    5. CREDIT -> originate credit, route supplied payments through distribution
       CASH   -> persist supplied payments against the sale
    6. commit

The sale id is allocated before the first debit, so every movement is
written once, already pointing at its sale. If any step fails (e.g.
InsufficientStock on the third line) the transaction rolls back and no
Sale, SaleLine, Payment, Credit or InventoryMovement from this call remains.

TOTALS (cents):
    subtotal = Σ (unit_price * quantity - line_discount)
    base     = subtotal - discount + shipping
    tax      = round_half_up(base * TAX_RATE_BPS / 10000)
    total    = base + tax
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from flask import current_app

from ..errors import (
    EmptySale,
    InvalidAmount,
    InvalidPaymentKind,
    InvalidQuantity,
    PaymentExceedsBalance,
    SaleNotFound,
)
from ..extensions import db
from ..models import Sale, SaleLine
from ..models.inventory import REASON_SALE
from ..models.sales import (
    METHOD_CASH,
    PAYMENT_KIND_CASH,
    PAYMENT_KIND_CREDIT,
    SALE_STATUS_COMPLETED,
    VALID_PAYMENT_KINDS,
)
from ..money import apply_rate_bps, format_cents
from ..time_utils import utcnow
from . import stock_ledger
from .concurrency import run_in_transaction
from .credit_service import originate_credit, validate_installment_count
from .document_service import next_sale_number
from .lookup_service import get_product, require_customer, require_user
from .payment_service import apply_payment_in_transaction, record_cash_payment

logger = logging.getLogger(__name__)


def _is_cents(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class SaleLineRequest:
    product_id: int
    quantity: int
    line_discount_cents: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SaleLineRequest":
        return cls(
            product_id=data.get("product_id"),
            quantity=data.get("quantity"),
            line_discount_cents=data.get("line_discount_cents") or 0,
        )


@dataclass(frozen=True)
class PaymentRequest:
    amount_cents: int
    method: str = METHOD_CASH
    reference: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PaymentRequest":
        return cls(
            amount_cents=data.get("amount_cents"),
            method=data.get("method") or METHOD_CASH,
            reference=data.get("reference"),
        )


def _normalize_lines(lines: Iterable) -> list[SaleLineRequest]:
    if lines is not None and not isinstance(lines, (list, tuple)):
        raise InvalidQuantity("Lines must be a list", details={"lines": repr(lines)})

    normalized = []
    for index, line in enumerate(lines or []):
        if isinstance(line, dict):
            line = SaleLineRequest.from_dict(line)
        elif not isinstance(line, SaleLineRequest):
            raise InvalidQuantity(
                "Each line must be an object with product_id and quantity",
                details={"line": index},
            )
        normalized.append(line)
    if not normalized:
        raise EmptySale("Cannot settle a sale with no lines")

    for index, line in enumerate(normalized):
        if not _is_cents(line.quantity) or line.quantity <= 0:
            raise InvalidQuantity(
                "Line quantity must be a positive integer",
                details={"line": index, "quantity": line.quantity},
            )
        if not _is_cents(line.line_discount_cents) or line.line_discount_cents < 0:
            raise InvalidAmount(
                "Line discount must be a non-negative number of cents",
                details={"line": index, "line_discount_cents": line.line_discount_cents},
            )
    return normalized


def _normalize_payments(payments: Iterable | None) -> list[PaymentRequest]:
    if payments is not None and not isinstance(payments, (list, tuple)):
        raise InvalidAmount("Payments must be a list", details={"payments": repr(payments)})

    normalized = []
    for index, payment in enumerate(payments or []):
        if isinstance(payment, dict):
            payment = PaymentRequest.from_dict(payment)
        elif not isinstance(payment, PaymentRequest):
            raise InvalidAmount(
                "Each payment must be an object with amount_cents",
                details={"payment": index},
            )
        normalized.append(payment)

    for index, payment in enumerate(normalized):
        if not _is_cents(payment.amount_cents) or payment.amount_cents <= 0:
            raise InvalidAmount(
                "Payment amount must be a positive number of cents",
                details={"payment": index, "amount_cents": payment.amount_cents},
            )
    return normalized


def compute_totals(subtotal_cents: int, discount_cents: int, shipping_cents: int, tax_rate_bps: int) -> dict:
    """Sale totals from a line subtotal. All values in cents."""
    base = subtotal_cents - discount_cents + shipping_cents
    tax = apply_rate_bps(base, tax_rate_bps)
    return {
        "subtotal_cents": subtotal_cents,
        "tax_cents": tax,
        "total_cents": base + tax,
    }


def _add_line(sale: Sale, request: SaleLineRequest, cashier_id: int) -> SaleLine:
    product = get_product(request.product_id, lock=True)

    gross = product.price_cents * request.quantity
    if request.line_discount_cents > gross:
        raise InvalidAmount(
            "Line discount exceeds the line amount",
            details={"product_id": product.id, "line_discount_cents": request.line_discount_cents, "line_gross_cents": gross},
        )

    movement = stock_ledger.debit(
        product.id,
        request.quantity,
        REASON_SALE,
        cashier_id,
        ref_id=sale.id,
        note=f"Sale {sale.number}",
    )

    line = SaleLine(
        sale_id=sale.id,
        product_id=product.id,
        product_name=product.name,
        sku=product.sku,
        unit_price_cents=product.price_cents,
        quantity=request.quantity,
        line_discount_cents=request.line_discount_cents,
        subtotal_cents=gross - request.line_discount_cents,
        inventory_movement_id=movement.id,
    )
    db.session.add(line)
    return line


def settle_sale(
    customer_id: int,
    cashier_id: int,
    lines: Iterable,
    payment_kind: str,
    installment_count: int | None = None,
    payments: Iterable | None = None,
    discount_cents: int = 0,
    shipping_cents: int = 0,
) -> Sale:
    """
    Commit a sale: debit stock, price it, and open a credit when paid on credit.

    Args:
        customer_id: Buyer
        cashier_id: User registering the sale (actor on every movement/payment)
        lines: SaleLineRequest or {"product_id", "quantity", "line_discount_cents"}
        payment_kind: CASH or CREDIT
        installment_count: 1..MAX_INSTALLMENTS, required for CREDIT
        payments: PaymentRequest or {"amount_cents", "method", "reference"}
        discount_cents: Sale-level discount
        shipping_cents: Shipping charged

    Returns:
        The committed Sale (COMPLETED)

    Raises:
        EmptySale, InvalidQuantity, InvalidAmount, InvalidPaymentKind,
        InvalidInstallmentCount, CustomerNotFound, UserNotFound,
        ProductNotFound, InsufficientStock, PaymentExceedsBalance,
        InvalidPaymentMethod. Nothing is persisted on failure.
    """
    line_requests = _normalize_lines(lines)
    payment_requests = _normalize_payments(payments)

    if payment_kind not in VALID_PAYMENT_KINDS:
        raise InvalidPaymentKind(
            f"Invalid payment kind: {payment_kind}. Must be one of {list(VALID_PAYMENT_KINDS)}",
            details={"payment_kind": payment_kind},
        )
    if payment_kind == PAYMENT_KIND_CREDIT:
        validate_installment_count(installment_count)

    for name, value in (("discount_cents", discount_cents), ("shipping_cents", shipping_cents)):
        if not _is_cents(value) or value < 0:
            raise InvalidAmount(f"{name} must be a non-negative number of cents", details={name: value})

    tax_rate_bps = current_app.config.get("TAX_RATE_BPS", 1800)

    def _op() -> Sale:
        require_customer(customer_id)
        require_user(cashier_id)

        sale = Sale(
            number=next_sale_number(),
            customer_id=customer_id,
            cashier_id=cashier_id,
            discount_cents=discount_cents,
            shipping_cents=shipping_cents,
            payment_kind=payment_kind,
            status=SALE_STATUS_COMPLETED,
            created_at=utcnow(),
        )
        db.session.add(sale)
        db.session.flush()  # sale.id is now known; movements reference it directly

        sale_lines = [_add_line(sale, request, cashier_id) for request in line_requests]

        subtotal = sum(line.subtotal_cents for line in sale_lines)
        if discount_cents > subtotal + shipping_cents:
            raise InvalidAmount(
                "Discount exceeds the sale amount",
                details={"discount_cents": discount_cents, "subtotal_cents": subtotal, "shipping_cents": shipping_cents},
            )

        totals = compute_totals(subtotal, discount_cents, shipping_cents, tax_rate_bps)
        sale.subtotal_cents = totals["subtotal_cents"]
        sale.tax_cents = totals["tax_cents"]
        sale.total_cents = totals["total_cents"]
        db.session.flush()

        if payment_kind == PAYMENT_KIND_CREDIT:
            credit = originate_credit(sale, installment_count)
            for request in payment_requests:
                apply_payment_in_transaction(
                    credit,
                    request.amount_cents,
                    request.method,
                    cashier_id,
                    reference=request.reference,
                )
        else:
            paid = sum(p.amount_cents for p in payment_requests)
            if paid > sale.total_cents:
                raise PaymentExceedsBalance(
                    f"Payments of {format_cents(paid)} exceed the sale total of {format_cents(sale.total_cents)}",
                    details={"paid_cents": paid, "total_cents": sale.total_cents},
                )
            for request in payment_requests:
                record_cash_payment(
                    sale,
                    request.amount_cents,
                    request.method,
                    cashier_id,
                    reference=request.reference,
                )

        return sale

    sale = run_in_transaction(_op)
    logger.info(
        "Sale %s settled: %s lines, total %s, %s",
        sale.number, len(line_requests), format_cents(sale.total_cents), sale.payment_kind,
    )
    return sale


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise SaleNotFound(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def get_sale_by_number(number: str) -> Sale:
    sale = db.session.query(Sale).filter_by(number=number).first()
    if sale is None:
        raise SaleNotFound(f"Sale {number} not found", details={"number": number})
    return sale


def cash_paid_cents(sale: Sale) -> int:
    """Sum of payments recorded directly on a CASH sale."""
    if sale.payment_kind != PAYMENT_KIND_CASH:
        return 0
    return sum(p.amount_cents for p in sale.payments if p.credit_id is None)
