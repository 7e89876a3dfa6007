"""
Stock ledger tests.

The counter and the movement log must never disagree: every change is one
movement, movements chain exactly, and stock never goes below zero.
"""

import pytest
from backoffice.errors import (
    InsufficientStock,
    InvalidMovementReason,
    InvalidQuantity,
    ProductNotFound,
    UserNotFound,
)
from backoffice.models import InventoryMovement
from backoffice.models.inventory import (
    DIRECTION_IN,
    DIRECTION_OUT,
    REASON_ADJUSTMENT_NEG,
    REASON_ADJUSTMENT_POS,
    REASON_LOSS,
    REASON_PURCHASE,
    REASON_SALE,
)
from backoffice.services import stock_ledger


class TestMovements:

    def test_credit_records_before_and_after(self, db_session, make_product, cashier):
        product = make_product(stock=5)

        movement = stock_ledger.credit_stock(product.id, 7, REASON_PURCHASE, cashier.id, note="Supplier delivery")

        assert movement.direction == DIRECTION_IN
        assert movement.stock_before == 5
        assert movement.stock_after == 12
        assert movement.actor_id == cashier.id
        assert stock_ledger.get_stock_on_hand(product.id) == 12

    def test_debit_records_before_and_after(self, db_session, make_product, cashier):
        product = make_product(stock=5)

        movement = stock_ledger.debit_stock(product.id, 2, REASON_LOSS, cashier.id)

        assert movement.direction == DIRECTION_OUT
        assert movement.stock_before == 5
        assert movement.stock_after == 3
        assert movement.signed_quantity == -2
        assert stock_ledger.get_stock_on_hand(product.id) == 3

    def test_debit_to_exactly_zero_is_allowed(self, db_session, make_product, cashier):
        product = make_product(stock=4)

        stock_ledger.debit_stock(product.id, 4, REASON_ADJUSTMENT_NEG, cashier.id)

        assert stock_ledger.get_stock_on_hand(product.id) == 0

    def test_insufficient_stock_changes_nothing(self, db_session, make_product, cashier):
        product = make_product(stock=3)

        with pytest.raises(InsufficientStock) as exc_info:
            stock_ledger.debit_stock(product.id, 4, REASON_LOSS, cashier.id)

        assert exc_info.value.details["requested_quantity"] == 4
        assert exc_info.value.details["on_hand"] == 3
        assert stock_ledger.get_stock_on_hand(product.id) == 3
        assert len(stock_ledger.list_movements(product.id)) == 1

    def test_reference_defaults_to_reason(self, db_session, make_product, cashier):
        product = make_product(stock=0)

        movement = stock_ledger.credit_stock(product.id, 3, REASON_PURCHASE, cashier.id, ref_id=77)

        assert movement.reference_id == 77
        assert movement.reference_type == REASON_PURCHASE


class TestValidation:

    @pytest.mark.parametrize("qty", [0, -1, 1.5, "3", True])
    def test_rejects_bad_quantity(self, db_session, make_product, cashier, qty):
        product = make_product(stock=5)

        with pytest.raises(InvalidQuantity):
            stock_ledger.credit_stock(product.id, qty, REASON_PURCHASE, cashier.id)

    def test_rejects_out_reason_on_credit(self, db_session, make_product, cashier):
        product = make_product(stock=5)

        with pytest.raises(InvalidMovementReason):
            stock_ledger.credit_stock(product.id, 1, REASON_SALE, cashier.id)

    def test_rejects_in_reason_on_debit(self, db_session, make_product, cashier):
        product = make_product(stock=5)

        with pytest.raises(InvalidMovementReason):
            stock_ledger.debit_stock(product.id, 1, REASON_ADJUSTMENT_POS, cashier.id)

    def test_rejects_unknown_reason(self, db_session, make_product, cashier):
        product = make_product(stock=5)

        with pytest.raises(InvalidMovementReason):
            stock_ledger.debit_stock(product.id, 1, "THEFT", cashier.id)

    def test_unknown_product(self, db_session, cashier):
        with pytest.raises(ProductNotFound):
            stock_ledger.credit_stock(9999, 1, REASON_PURCHASE, cashier.id)

    def test_unknown_actor(self, db_session, make_product):
        product = make_product(stock=5)

        with pytest.raises(UserNotFound):
            stock_ledger.debit_stock(product.id, 1, REASON_LOSS, 9999)

        assert stock_ledger.get_stock_on_hand(product.id) == 5


class TestChain:

    def test_chain_is_exact_after_mixed_operations(self, db_session, make_product, cashier):
        product = make_product(stock=10)

        stock_ledger.debit_stock(product.id, 3, REASON_LOSS, cashier.id)
        stock_ledger.credit_stock(product.id, 5, REASON_ADJUSTMENT_POS, cashier.id)
        stock_ledger.debit_stock(product.id, 12, REASON_ADJUSTMENT_NEG, cashier.id)
        with pytest.raises(InsufficientStock):
            stock_ledger.debit_stock(product.id, 1, REASON_LOSS, cashier.id)

        movements = stock_ledger.list_movements(product.id)
        assert [m.stock_after for m in movements] == [10, 7, 12, 0]
        for previous, current in zip(movements, movements[1:]):
            assert current.stock_before == previous.stock_after
        assert movements[-1].stock_after == stock_ledger.get_stock_on_hand(product.id)
        assert stock_ledger.verify_movement_chain(product.id) == []

    def test_conservation(self, db_session, make_product, cashier):
        product = make_product(stock=8)

        stock_ledger.debit_stock(product.id, 2, REASON_LOSS, cashier.id)
        stock_ledger.credit_stock(product.id, 6, REASON_PURCHASE, cashier.id)

        movements = stock_ledger.list_movements(product.id)
        assert sum(m.signed_quantity for m in movements) == stock_ledger.get_stock_on_hand(product.id)

    def test_verify_detects_tampered_counter(self, db_session, make_product, cashier):
        product = make_product(stock=8)

        # Simulate a write that bypassed the ledger
        product.stock_on_hand = 20
        db_session.commit()

        problems = stock_ledger.verify_movement_chain(product.id)
        assert len(problems) == 1
        assert problems[0]["expected"] == 20
        assert problems[0]["actual"] == 8

    def test_verify_detects_broken_link(self, db_session, make_product, cashier):
        product = make_product(stock=8)
        stock_ledger.debit_stock(product.id, 3, REASON_LOSS, cashier.id)

        last = db_session.query(InventoryMovement).filter_by(product_id=product.id).order_by(
            InventoryMovement.id.desc()
        ).first()
        last.stock_before = 9
        last.stock_after = 6
        db_session.commit()

        problems = stock_ledger.verify_movement_chain(product.id)
        assert any(p["movement_id"] == last.id and p["expected"] == 8 for p in problems)

    def test_list_movements_limit(self, db_session, make_product, cashier):
        product = make_product(stock=1)
        stock_ledger.credit_stock(product.id, 1, REASON_PURCHASE, cashier.id)
        stock_ledger.credit_stock(product.id, 1, REASON_PURCHASE, cashier.id)

        movements = stock_ledger.list_movements(product.id, limit=2)
        assert [m.stock_after for m in movements] == [1, 2]
