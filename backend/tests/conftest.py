"""
Pytest fixtures for stockledger backend tests.

Provides the in-memory application, per-test table cleanup, master data
fixtures, and helpers that stock a store through the real services.
"""

from decimal import Decimal

import pytest

from stockledger import create_app
from stockledger.decorators import ACTOR_HEADER
from stockledger.extensions import db
from stockledger.models import Category, Product, Store, Supplier, User
from stockledger.services import costing_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TX_RETRY_BACKOFF': 0,
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
    """Empty every table before the test; the schema is kept."""
    # Core deletes bypass the ORM guard that keeps stock movements immutable.
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def user(db_session):
    user = User(username="operator", name="Store Operator", is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def actor_headers(user):
    return {ACTOR_HEADER: str(user.id)}


@pytest.fixture(scope='function')
def store_a(db_session):
    store = Store(name="Main Store", code="MAIN")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_b(db_session):
    store = Store(name="Branch Store", code="BR01")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = Supplier(name="Acme Wholesale", code="ACME")
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def category(db_session):
    category = Category(name="Beverages")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def product(db_session, category, supplier):
    """purchase_price 10.00, selling_price 15.00, minimum_stock 5."""
    product = Product(
        sku="BEV-001",
        barcode="8990001",
        name="Mineral Water 600ml",
        category_id=category.id,
        supplier_id=supplier.id,
        purchase_price=Decimal("10.00"),
        selling_price=Decimal("15.00"),
        minimum_stock=5,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(db_session, category, supplier):
    product = Product(
        sku="BEV-002",
        name="Green Tea 350ml",
        category_id=category.id,
        supplier_id=supplier.id,
        purchase_price=Decimal("4.00"),
        selling_price=Decimal("6.50"),
        minimum_stock=10,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def stock(user):
    """stock(store, product, quantity, unit_cost) puts units on hand through a committed purchase receipt."""
    def _stock(store, product, quantity, unit_cost="10.00"):
        return costing_service.receive_purchase(
            store_id=store.id,
            product_id=product.id,
            quantity=quantity,
            unit_cost=unit_cost,
            user_id=user.id,
        )

    return _stock
