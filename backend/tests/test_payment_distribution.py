"""
Payment distribution tests.

Every cent of an abono lands on exactly one installment, the allocations
explain the whole payment, and the credit balance always equals the sum of
installment balances.
"""

from datetime import date

import pytest
from backoffice.errors import (
    CreditNotActive,
    CreditNotFound,
    InvalidAmount,
    InvalidPaymentMethod,
    PaymentExceedsBalance,
    UserNotFound,
)
from backoffice.models import Installment, Payment, PaymentAllocation
from backoffice.models.credit import (
    CREDIT_STATUS_ACTIVE,
    CREDIT_STATUS_COMPLETED,
    INSTALLMENT_STATUS_PAID,
    INSTALLMENT_STATUS_PARTIAL,
)
from backoffice.models.sales import PAYMENT_KIND_CREDIT
from backoffice.services import credit_service, payment_service, reversal_service, settlement_service
from backoffice.services.payment_service import distribute
from backoffice.services.settlement_service import SaleLineRequest


@pytest.fixture
def make_credit(db_session, make_product, customer, cashier, no_tax):
    """Factory for an ACTIVE credit of a given total."""
    def _make(total_cents, installments):
        product = make_product(price_cents=total_cents, stock=1)
        sale = settlement_service.settle_sale(
            customer.id,
            cashier.id,
            [SaleLineRequest(product.id, 1)],
            PAYMENT_KIND_CREDIT,
            installment_count=installments,
        )
        return credit_service.get_credit_for_sale(sale.id)

    return _make


def _assert_balanced(credit):
    installments = credit_service.list_installments(credit.id)
    assert credit.remaining_cents == sum(i.remaining_cents for i in installments)
    for installment in installments:
        assert installment.amount_cents == installment.paid_cents + installment.remaining_cents
        allocated = sum(a.amount_applied_cents for a in payment_service.allocations_for_installment(installment.id))
        assert allocated == installment.paid_cents


def _installment(sequence_number, amount, paid=0):
    return Installment(
        sequence_number=sequence_number,
        amount_cents=amount,
        paid_cents=paid,
        remaining_cents=amount - paid,
        due_date=date(2030, 1, sequence_number),
    )


class TestDistribute:

    def test_even_split(self):
        installments = [_installment(n, 10000) for n in range(1, 13)]

        applied, residual = distribute(30000, installments, as_of=date(2025, 1, 1))

        assert residual == 0
        assert list(applied.values()) == [2500] * 12
        assert all(i.remaining_cents == 7500 for i in installments)
        assert all(i.status == INSTALLMENT_STATUS_PARTIAL for i in installments)

    def test_share_larger_than_a_nearly_paid_installment(self):
        installments = [_installment(1, 1000, paid=990), _installment(2, 1000), _installment(3, 1000)]

        applied, residual = distribute(600, installments, as_of=date(2025, 1, 1))

        assert residual == 0
        assert sum(applied.values()) == 600
        assert installments[0].remaining_cents == 0
        assert installments[0].status == INSTALLMENT_STATUS_PAID
        assert installments[1].remaining_cents + installments[2].remaining_cents == 1410

    def test_amount_smaller_than_installment_count(self):
        installments = [_installment(n, 1000) for n in range(1, 6)]

        applied, residual = distribute(3, installments, as_of=date(2025, 1, 1))

        assert residual == 0
        assert sum(applied.values()) == 3
        assert all(amount > 0 for amount in applied.values())

    def test_paid_installments_are_skipped(self):
        installments = [_installment(1, 1000, paid=1000), _installment(2, 1000)]

        applied, residual = distribute(400, installments, as_of=date(2025, 1, 1))

        assert residual == 0
        assert installments[0] not in applied
        assert applied[installments[1]] == 400

    def test_reports_residual_when_balances_are_short(self):
        installments = [_installment(1, 100)]

        applied, residual = distribute(150, installments, as_of=date(2025, 1, 1))

        assert applied[installments[0]] == 100
        assert residual == 50


class TestApplyPayment:

    def test_three_hundred_on_twelve_hundred(self, make_credit, cashier):
        credit = make_credit(120000, 12)

        payment, allocations = payment_service.apply_payment(credit.id, 30000, "CASH", actor_id=cashier.id)

        credit = credit_service.get_credit(credit.id)
        assert credit.remaining_cents == 90000
        assert [i.remaining_cents for i in credit_service.list_installments(credit.id)] == [7500] * 12
        assert len(allocations) == 12
        assert sum(a.amount_applied_cents for a in allocations) == payment.amount_cents
        assert payment.sale_id == credit.sale_id
        assert payment.cashier_id == cashier.id
        _assert_balanced(credit)

    def test_allocations_sum_to_payment_with_rounding(self, make_credit, cashier):
        credit = make_credit(100000, 3)

        payment, allocations = payment_service.apply_payment(credit.id, 10001, "CARD", actor_id=cashier.id)

        assert sum(a.amount_applied_cents for a in allocations) == 10001
        assert credit_service.get_credit(credit.id).remaining_cents == 100000 - 10001
        _assert_balanced(credit)

    def test_exact_payoff_completes_credit(self, make_credit, cashier):
        credit = make_credit(100000, 3)

        payment_service.apply_payment(credit.id, 40000, "TRANSFER", actor_id=cashier.id)
        payment_service.apply_payment(credit.id, 60000, "YAPE", reference="OP-77", actor_id=cashier.id)

        credit = credit_service.get_credit(credit.id)
        assert credit.remaining_cents == 0
        assert credit.status == CREDIT_STATUS_COMPLETED
        assert all(i.status == INSTALLMENT_STATUS_PAID for i in credit.installments)
        _assert_balanced(credit)

    def test_many_small_payments_stay_balanced(self, make_credit, cashier):
        credit = make_credit(10007, 4)

        for amount in (1, 7, 333, 2500, 4000, 1234):
            payment_service.apply_payment(credit.id, amount, "CASH", actor_id=cashier.id)

        credit = credit_service.get_credit(credit.id)
        assert credit.remaining_cents == 10007 - 8075
        assert credit.status == CREDIT_STATUS_ACTIVE
        _assert_balanced(credit)

    def test_payment_history(self, make_credit, cashier):
        credit = make_credit(50000, 2)
        payment_service.apply_payment(credit.id, 1000, "CASH", actor_id=cashier.id)
        payment_service.apply_payment(credit.id, 2000, "CARD", actor_id=cashier.id)

        history = payment_service.payment_history(credit.id)

        assert [p.amount_cents for p in history] == [1000, 2000]
        assert all(len(p.allocations) == 2 for p in history)


class TestRejections:

    def test_exceeds_balance_changes_nothing(self, make_credit, cashier, db_session):
        credit = make_credit(120000, 12)
        payment_service.apply_payment(credit.id, 30000, "CASH", actor_id=cashier.id)

        with pytest.raises(PaymentExceedsBalance) as exc_info:
            payment_service.apply_payment(credit.id, 90001, "CASH", actor_id=cashier.id)

        assert exc_info.value.details["remaining_cents"] == 90000
        credit = credit_service.get_credit(credit.id)
        assert credit.remaining_cents == 90000
        assert [i.remaining_cents for i in credit_service.list_installments(credit.id)] == [7500] * 12
        assert db_session.query(Payment).filter_by(credit_id=credit.id).count() == 1
        assert db_session.query(PaymentAllocation).count() == 12

    @pytest.mark.parametrize("amount", [0, -100, 10.5, None])
    def test_invalid_amount(self, make_credit, cashier, amount):
        credit = make_credit(10000, 2)

        with pytest.raises(InvalidAmount):
            payment_service.apply_payment(credit.id, amount, "CASH", actor_id=cashier.id)

    def test_invalid_method(self, make_credit, cashier):
        credit = make_credit(10000, 2)

        with pytest.raises(InvalidPaymentMethod):
            payment_service.apply_payment(credit.id, 100, "BITCOIN", actor_id=cashier.id)

    def test_unknown_credit(self, db_session, cashier):
        with pytest.raises(CreditNotFound):
            payment_service.apply_payment(9999, 100, "CASH", actor_id=cashier.id)

    def test_unknown_actor(self, make_credit):
        credit = make_credit(10000, 2)

        with pytest.raises(UserNotFound):
            payment_service.apply_payment(credit.id, 100, "CASH", actor_id=9999)

        assert credit_service.get_credit(credit.id).remaining_cents == 10000

    def test_completed_credit_is_not_active(self, make_credit, cashier):
        credit = make_credit(10000, 2)
        payment_service.apply_payment(credit.id, 10000, "CASH", actor_id=cashier.id)

        with pytest.raises(CreditNotActive):
            payment_service.apply_payment(credit.id, 1, "CASH", actor_id=cashier.id)

    def test_voided_credit_is_not_active(self, make_credit, cashier):
        credit = make_credit(10000, 2)
        reversal_service.void_sale(credit.sale_id, cashier.id)

        with pytest.raises(CreditNotActive):
            payment_service.apply_payment(credit.id, 100, "CASH", actor_id=cashier.id)
