from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


DIRECTION_IN = "IN"
DIRECTION_OUT = "OUT"

REASON_PURCHASE = "PURCHASE"
REASON_SALE = "SALE"
REASON_RETURN = "RETURN"
REASON_ADJUSTMENT_POS = "ADJUSTMENT_POS"
REASON_ADJUSTMENT_NEG = "ADJUSTMENT_NEG"
REASON_LOSS = "LOSS"

# Each reason moves stock in exactly one direction
REASON_DIRECTIONS = {
    REASON_PURCHASE: DIRECTION_IN,
    REASON_RETURN: DIRECTION_IN,
    REASON_ADJUSTMENT_POS: DIRECTION_IN,
    REASON_SALE: DIRECTION_OUT,
    REASON_ADJUSTMENT_NEG: DIRECTION_OUT,
    REASON_LOSS: DIRECTION_OUT,
}


class InventoryMovement(db.Model):
    """
    Append-only record of one stock change.

    IMMUTABLE: rows are never updated or deleted. Corrections are new
    compensating rows (a voided sale produces RETURN movements).

    CHAIN: for a given product, ordered by id, each stock_before equals the
    previous stock_after, and the last stock_after equals
    Product.stock_on_hand.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_invmov_quantity_positive"),
        db.CheckConstraint("stock_after >= 0", name="ck_invmov_stock_after_non_negative"),
        db.Index("ix_invmov_product_id", "product_id", "id"),
        db.Index("ix_invmov_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    direction = db.Column(db.String(8), nullable=False)  # IN, OUT
    reason = db.Column(db.String(32), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    stock_before = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)

    # Source event (e.g. reference_type="SALE", reference_id=sale.id)
    reference_id = db.Column(db.Integer, nullable=True)
    reference_type = db.Column(db.String(32), nullable=True)

    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.direction == DIRECTION_IN else -self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "actor_id": self.actor_id,
            "direction": self.direction,
            "reason": self.reason,
            "quantity": self.quantity,
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
            "reference_id": self.reference_id,
            "reference_type": self.reference_type,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
