"""
Pytest fixtures for backoffice ledger tests.

Provides test database setup, catalog/actor fixtures, and test client.
"""

import itertools

import pytest
from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import Customer, Product, User
from backoffice.models.inventory import REASON_PURCHASE
from backoffice.services import stock_ledger


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_RETRY_ATTEMPTS': 1,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        db.session.remove()


@pytest.fixture(scope='function')
def cashier(db_session):
    """Create the user that registers sales and movements."""
    user = User(username="cashier", is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def customer(db_session):
    """Create an active customer."""
    c = Customer(name="Rosa Quispe", document_number="45871236", is_active=True)
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def make_product(db_session, cashier):
    """
    Factory for products with opening stock.

    Opening stock goes in through a PURCHASE movement so the movement chain
    is exact from the first row.
    """
    counter = itertools.count(1)

    def _make(price_cents=10000, stock=10, name=None):
        n = next(counter)
        product = Product(
            sku=f"SKU-{n:03d}",
            name=name or f"Product {n}",
            price_cents=price_cents,
            stock_on_hand=0,
            is_active=True,
        )
        db_session.add(product)
        db_session.commit()
        if stock:
            stock_ledger.credit_stock(product.id, stock, REASON_PURCHASE, cashier.id, note="Opening stock")
        return product

    return _make


@pytest.fixture(scope='function')
def no_tax(app, monkeypatch):
    """Settle sales without tax so totals are easy to reason about."""
    monkeypatch.setitem(app.config, 'TAX_RATE_BPS', 0)
