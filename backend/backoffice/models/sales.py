from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


SALE_STATUS_COMPLETED = "COMPLETED"
SALE_STATUS_VOIDED = "VOIDED"

PAYMENT_KIND_CASH = "CASH"
PAYMENT_KIND_CREDIT = "CREDIT"
VALID_PAYMENT_KINDS = (PAYMENT_KIND_CASH, PAYMENT_KIND_CREDIT)

METHOD_CASH = "CASH"
METHOD_CARD = "CARD"
METHOD_TRANSFER = "TRANSFER"
METHOD_YAPE = "YAPE"
VALID_PAYMENT_METHODS = (METHOD_CASH, METHOD_CARD, METHOD_TRANSFER, METHOD_YAPE)


class Sale(db.Model):
    """
    Committed, stock-affecting sale.

    TOTALS (all cents):
        base  = subtotal - discount + shipping
        tax   = round_half_up(max(base, 0) * tax_rate)
        total = base + tax

    IMMUTABLE: once COMPLETED only status/voided_* change (to VOIDED).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number, sequential per year (e.g. "VEN-2025-00001")
    number = db.Column(db.String(32), nullable=False, unique=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_kind = db.Column(db.String(16), nullable=False)  # CASH, CREDIT
    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    # Void audit trail
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship("SaleLine", lazy=True, order_by="SaleLine.id")
    payments = db.relationship("Payment", lazy=True, order_by="Payment.id")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "number": self.number,
            "customer_id": self.customer_id,
            "cashier_id": self.cashier_id,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "shipping_cents": self.shipping_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "payment_kind": self.payment_kind,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "voided_by_user_id": self.voided_by_user_id,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class SaleLine(db.Model):
    """
    Line item with a snapshot of the product as sold.

    WHY snapshot: historical sales must not change when the catalog does.
    """
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    product_name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    line_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    # SALE movement that took this line's stock
    inventory_movement_id = db.Column(db.Integer, db.ForeignKey("inventory_movements.id"), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "sku": self.sku,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "line_discount_cents": self.line_discount_cents,
            "subtotal_cents": self.subtotal_cents,
            "inventory_movement_id": self.inventory_movement_id,
        }


class Payment(db.Model):
    """
    Money received against a sale.

    credit_id NULL -> cash-sale payment, never allocated to installments.
    credit_id set  -> payment against a credit, split across installments
                      by PaymentAllocation rows.

    IMMUTABLE: payments are never updated or deleted.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    credit_id = db.Column(db.Integer, db.ForeignKey("credits.id"), nullable=True, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False)

    # Card auth code, transfer number, etc.
    reference = db.Column(db.String(128), nullable=True)

    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    allocations = db.relationship("PaymentAllocation", lazy=True, order_by="PaymentAllocation.id")

    def to_dict(self, include_allocations: bool = False) -> dict:
        data = {
            "id": self.id,
            "sale_id": self.sale_id,
            "credit_id": self.credit_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "reference": self.reference,
            "cashier_id": self.cashier_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_allocations:
            data["allocations"] = [a.to_dict() for a in self.allocations]
        return data


class PaymentAllocation(db.Model):
    """
    Append-only record of how much of a Payment landed on one Installment.

    Σ amount_applied_cents over a payment's allocations == payment.amount_cents.
    """
    __tablename__ = "payment_allocations"
    __table_args__ = (
        db.UniqueConstraint("payment_id", "installment_id", name="uq_payment_alloc_payment_installment"),
        db.CheckConstraint("amount_applied_cents > 0", name="ck_payment_alloc_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)
    installment_id = db.Column(db.Integer, db.ForeignKey("installments.id"), nullable=False, index=True)
    amount_applied_cents = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "installment_id": self.installment_id,
            "amount_applied_cents": self.amount_applied_cents,
            "created_at": to_utc_z(self.created_at),
        }
