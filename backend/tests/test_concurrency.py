"""
Transaction helper tests.

Conflicts are retried, domain errors are not, and storage failures surface
as LedgerSystemError with everything rolled back. Threaded writers on a
file-backed database must serialize: no lost update, no gap in the chain.
"""

import threading

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from backoffice import create_app
from backoffice.errors import InsufficientStock, LedgerSystemError
from backoffice.extensions import db
from backoffice.models import Customer, Installment, PaymentAllocation, Product, User
from backoffice.models.inventory import REASON_LOSS, REASON_PURCHASE
from backoffice.services import credit_service, payment_service, settlement_service, stock_ledger
from backoffice.services.concurrency import begin_write, run_in_transaction, run_with_retry
from backoffice.services.settlement_service import SaleLineRequest

pytestmark = pytest.mark.concurrency


class TestRunWithRetry:

    def test_retries_stale_data(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("version mismatch")
            return "done"

        assert run_with_retry(_op, attempts=3, backoff_base=0) == "done"
        assert len(calls) == 3

    def test_gives_up_after_attempts(self, db_session):
        def _op():
            raise StaleDataError("version mismatch")

        with pytest.raises(StaleDataError):
            run_with_retry(_op, attempts=2, backoff_base=0)

    def test_domain_errors_are_not_retried(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            raise InsufficientStock("no stock")

        with pytest.raises(InsufficientStock):
            run_with_retry(_op, attempts=3, backoff_base=0)
        assert len(calls) == 1


class TestRunInTransaction:

    def test_commits_on_success(self, db_session):
        def _op():
            product = Product(sku="TX-1", name="Tx", price_cents=100, stock_on_hand=0)
            db_session.add(product)
            return product

        run_in_transaction(_op)
        db_session.rollback()

        assert db_session.query(Product).filter_by(sku="TX-1").count() == 1

    def test_rolls_back_on_domain_error(self, db_session):
        def _op():
            db_session.add(Product(sku="TX-2", name="Tx", price_cents=100, stock_on_hand=0))
            db_session.flush()
            raise InsufficientStock("no stock")

        with pytest.raises(InsufficientStock):
            run_in_transaction(_op)

        assert db_session.query(Product).filter_by(sku="TX-2").count() == 0

    def test_storage_failure_becomes_system_error(self, db_session):
        db_session.add(Product(sku="TX-3", name="Tx", price_cents=100, stock_on_hand=0))
        db_session.commit()

        def _op():
            db_session.add(Product(sku="TX-3", name="Duplicate", price_cents=100, stock_on_hand=0))
            db_session.flush()

        with pytest.raises(LedgerSystemError) as exc_info:
            run_in_transaction(_op)

        assert isinstance(exc_info.value.__cause__, IntegrityError)
        assert db_session.query(Product).filter_by(sku="TX-3").count() == 1

    def test_write_after_a_read_in_the_same_session(self, db_session, make_product, cashier):
        product = make_product(stock=5)

        assert stock_ledger.get_stock_on_hand(product.id) == 5
        stock_ledger.debit_stock(product.id, 2, REASON_LOSS, cashier.id)

        assert stock_ledger.get_stock_on_hand(product.id) == 3
        assert stock_ledger.verify_movement_chain(product.id) == []


class TestBeginWrite:

    def _sqlite_connection(self, db_session):
        return db_session.connection().connection.dbapi_connection

    def test_opens_transaction_after_a_read(self, db_session, make_product):
        product = make_product(stock=1)
        db_session.get(Product, product.id)
        assert not self._sqlite_connection(db_session).in_transaction

        begin_write()

        assert self._sqlite_connection(db_session).in_transaction
        db_session.rollback()

    def test_second_call_joins_open_transaction(self, db_session):
        begin_write()
        begin_write()

        assert self._sqlite_connection(db_session).in_transaction
        db_session.rollback()


@pytest.fixture
def file_app(tmp_path):
    """App on a file-backed SQLite database shared by several threads, and the seeded row ids."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'ledger.sqlite3'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'check_same_thread': False, 'timeout': 30}},
        'LEDGER_RETRY_ATTEMPTS': 5,
        'TAX_RATE_BPS': 0,
    })

    with app.app_context():
        db.create_all()
        cashier = User(username="cashier", is_active=True)
        customer = Customer(name="Rosa Quispe", document_number="45871236", is_active=True)
        product = Product(sku="SKU-T1", name="Polo", price_cents=120000, stock_on_hand=0, is_active=True)
        db.session.add_all([cashier, customer, product])
        db.session.commit()
        stock_ledger.credit_stock(product.id, 100, REASON_PURCHASE, cashier.id, note="Opening stock")
        ids = {"cashier": cashier.id, "customer": customer.id, "product": product.id}

    yield app, ids

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _run_workers(app, worker, count):
    errors = []

    def _target(n):
        with app.app_context():
            try:
                worker(n)
            except Exception as exc:
                errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=_target, args=(n,)) for n in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return errors


class TestConcurrentWriters:

    def test_interleaved_debits_keep_the_chain(self, file_app):
        app, ids = file_app
        per_thread = 10

        def _worker(n):
            for _ in range(per_thread):
                stock_ledger.debit_stock(ids["product"], 1, REASON_LOSS, ids["cashier"], note=f"worker {n}")

        errors = _run_workers(app, _worker, 4)

        assert errors == []
        with app.app_context():
            assert stock_ledger.get_stock_on_hand(ids["product"]) == 100 - 4 * per_thread
            movements = stock_ledger.list_movements(ids["product"])
            assert len(movements) == 1 + 4 * per_thread
            assert [m.stock_after for m in movements] == list(range(100, 100 - 4 * per_thread - 1, -1))
            assert stock_ledger.verify_movement_chain(ids["product"]) == []

    def test_debits_never_overdraw(self, file_app):
        app, ids = file_app
        results = []

        def _worker(n):
            try:
                stock_ledger.debit_stock(ids["product"], 30, REASON_LOSS, ids["cashier"])
                results.append("ok")
            except InsufficientStock:
                results.append("rejected")

        errors = _run_workers(app, _worker, 4)

        assert errors == []
        assert sorted(results) == ["ok", "ok", "ok", "rejected"]
        with app.app_context():
            assert stock_ledger.get_stock_on_hand(ids["product"]) == 10
            assert stock_ledger.verify_movement_chain(ids["product"]) == []

    def test_interleaved_payments_on_one_credit(self, file_app):
        app, ids = file_app
        with app.app_context():
            sale = settlement_service.settle_sale(
                ids["customer"], ids["cashier"], [SaleLineRequest(ids["product"], 1)], "CREDIT", installment_count=12,
            )
            credit_id = credit_service.get_credit_for_sale(sale.id).id

        def _worker(n):
            for _ in range(10):
                payment_service.apply_payment(credit_id, 1000, "CASH", actor_id=ids["cashier"])

        errors = _run_workers(app, _worker, 2)

        assert errors == []
        with app.app_context():
            credit = credit_service.get_credit(credit_id)
            installments = db.session.query(Installment).filter_by(credit_id=credit_id).all()
            applied = sum(a.amount_applied_cents for a in db.session.query(PaymentAllocation).all())
            assert len(payment_service.payment_history(credit_id)) == 20
            assert applied == 20000
            assert credit.remaining_cents == 100000
            assert sum(i.remaining_cents for i in installments) == 100000
            assert all(0 <= i.remaining_cents <= i.amount_cents for i in installments)
