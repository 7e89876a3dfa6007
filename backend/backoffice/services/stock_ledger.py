# Overview: Service-layer operations for the stock ledger; the only writer of Product.stock_on_hand.

"""
Stock Ledger Invariants (authoritative)

- Product.stock_on_hand is never assigned anywhere but _move() below.
- Every change appends exactly one InventoryMovement in the same transaction
  as the counter update; an observer never sees one without the other.
- stock_before/stock_after are read with the product row locked, so for a
  product the movements ordered by id form an exact chain:
      movement[i].stock_before == movement[i-1].stock_after
      movement[-1].stock_after == product.stock_on_hand
- A debit never takes stock below zero (InsufficientStock). Credits are
  unbounded.
- Movements are append-only; corrections are new compensating movements.

debit()/credit() join the caller's transaction (settlement, reversal).
debit_stock()/credit_stock() are standalone entry points that run their own
transaction, for purchases and manual adjustments.
"""

from __future__ import annotations

import logging

from ..errors import InsufficientStock, InvalidMovementReason, InvalidQuantity
from ..extensions import db
from ..models import InventoryMovement
from ..models.inventory import (
    DIRECTION_IN,
    DIRECTION_OUT,
    REASON_DIRECTIONS,
    REASON_RETURN,
    REASON_SALE,
)
from ..time_utils import utcnow
from .concurrency import run_in_transaction
from .lookup_service import get_product, require_user

logger = logging.getLogger(__name__)

REFERENCE_TYPE_SALE = "SALE"


def _validate_quantity(qty) -> None:
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise InvalidQuantity("Quantity must be a positive integer", details={"quantity": qty})


def _validate_reason(reason: str, direction: str) -> None:
    expected = REASON_DIRECTIONS.get(reason)
    if expected is None:
        raise InvalidMovementReason(f"Unknown movement reason: {reason}", details={"reason": reason})
    if expected != direction:
        raise InvalidMovementReason(
            f"Reason {reason} cannot be used for {direction} movements",
            details={"reason": reason, "direction": direction},
        )


def _default_reference_type(reason: str, ref_id: int | None) -> str | None:
    if ref_id is None:
        return None
    if reason in (REASON_SALE, REASON_RETURN):
        return REFERENCE_TYPE_SALE
    return reason


def _move(
    *,
    product_id: int,
    qty: int,
    reason: str,
    direction: str,
    actor_id: int,
    ref_id: int | None,
    ref_type: str | None,
    note: str | None,
) -> InventoryMovement:
    _validate_quantity(qty)
    _validate_reason(reason, direction)
    require_user(actor_id)

    product = get_product(product_id, lock=True)
    stock_before = product.stock_on_hand

    if direction == DIRECTION_OUT:
        if qty > stock_before:
            raise InsufficientStock(
                f"Insufficient stock for {product.name}",
                details={
                    "product_id": product.id,
                    "sku": product.sku,
                    "requested_quantity": qty,
                    "on_hand": stock_before,
                },
            )
        stock_after = stock_before - qty
    else:
        stock_after = stock_before + qty

    product.stock_on_hand = stock_after

    movement = InventoryMovement(
        product_id=product.id,
        actor_id=actor_id,
        direction=direction,
        reason=reason,
        quantity=qty,
        stock_before=stock_before,
        stock_after=stock_after,
        reference_id=ref_id,
        reference_type=ref_type or _default_reference_type(reason, ref_id),
        note=note,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()  # assigns movement.id and writes the versioned product row

    logger.debug(
        "Stock %s %s x%s for product %s: %s -> %s",
        direction, reason, qty, product.id, stock_before, stock_after,
    )
    return movement


def debit(
    product_id: int,
    qty: int,
    reason: str,
    actor_id: int,
    ref_id: int | None = None,
    ref_type: str | None = None,
    note: str | None = None,
) -> InventoryMovement:
    """Take stock out inside the current transaction. Raises InsufficientStock."""
    return _move(
        product_id=product_id,
        qty=qty,
        reason=reason,
        direction=DIRECTION_OUT,
        actor_id=actor_id,
        ref_id=ref_id,
        ref_type=ref_type,
        note=note,
    )


def credit(
    product_id: int,
    qty: int,
    reason: str,
    actor_id: int,
    ref_id: int | None = None,
    ref_type: str | None = None,
    note: str | None = None,
) -> InventoryMovement:
    """Put stock back in inside the current transaction."""
    return _move(
        product_id=product_id,
        qty=qty,
        reason=reason,
        direction=DIRECTION_IN,
        actor_id=actor_id,
        ref_id=ref_id,
        ref_type=ref_type,
        note=note,
    )


def debit_stock(
    product_id: int,
    qty: int,
    reason: str,
    actor_id: int,
    ref_id: int | None = None,
    note: str | None = None,
) -> InventoryMovement:
    """Standalone debit (losses, negative adjustments) committed on its own."""
    movement = run_in_transaction(
        lambda: debit(product_id, qty, reason, actor_id, ref_id=ref_id, note=note)
    )
    logger.info("Stock debited: product=%s qty=%s reason=%s", product_id, qty, reason)
    return movement


def credit_stock(
    product_id: int,
    qty: int,
    reason: str,
    actor_id: int,
    ref_id: int | None = None,
    note: str | None = None,
) -> InventoryMovement:
    """Standalone credit (purchases, positive adjustments) committed on its own."""
    movement = run_in_transaction(
        lambda: credit(product_id, qty, reason, actor_id, ref_id=ref_id, note=note)
    )
    logger.info("Stock credited: product=%s qty=%s reason=%s", product_id, qty, reason)
    return movement


# =============================================================================
# READS
# =============================================================================

def get_stock_on_hand(product_id: int) -> int:
    return get_product(product_id).stock_on_hand


def list_movements(product_id: int, limit: int | None = None) -> list[InventoryMovement]:
    """Movements for a product, oldest first (chain order)."""
    get_product(product_id)
    query = db.session.query(InventoryMovement).filter_by(product_id=product_id).order_by(InventoryMovement.id)
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def list_movements_for_sale(sale_id: int) -> list[InventoryMovement]:
    return (
        db.session.query(InventoryMovement)
        .filter_by(reference_type=REFERENCE_TYPE_SALE, reference_id=sale_id)
        .order_by(InventoryMovement.id)
        .all()
    )


def verify_movement_chain(product_id: int) -> list[dict]:
    """
    Audit a product's movement history.

    Returns a list of discrepancies; an empty list means the chain is exact
    and ends at the product's current stock.
    """
    product = get_product(product_id)
    movements = list_movements(product_id)

    problems: list[dict] = []
    previous_after = None
    for movement in movements:
        expected_after = movement.stock_before + movement.signed_quantity
        if movement.stock_after != expected_after:
            problems.append({
                "movement_id": movement.id,
                "problem": "stock_after does not match stock_before +/- quantity",
                "expected": expected_after,
                "actual": movement.stock_after,
            })
        if previous_after is not None and movement.stock_before != previous_after:
            problems.append({
                "movement_id": movement.id,
                "problem": "stock_before does not match previous stock_after",
                "expected": previous_after,
                "actual": movement.stock_before,
            })
        previous_after = movement.stock_after

    if previous_after is not None and previous_after != product.stock_on_hand:
        problems.append({
            "movement_id": None,
            "problem": "last stock_after does not match stock_on_hand",
            "expected": product.stock_on_hand,
            "actual": previous_after,
        })
    return problems
