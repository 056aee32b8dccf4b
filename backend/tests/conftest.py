"""
Pytest fixtures for retail ledger tests.

Provides the test app (in-memory SQLite), a wiped database per test,
counterparties and a product with two stocked size variants.
"""

import pytest

from retail_ledger import create_app
from retail_ledger.config import TestConfig
from retail_ledger.extensions import db
from retail_ledger.models import Customer, Product, Supplier, Variant


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = Supplier(name="Acme Textiles", document_number="SUP-001")
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Jane Buyer", document_number="CUS-001", phone="555-0100")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def product(db_session):
    """Basic Tee at 1500 cents; size S holds 10 units, size M holds 5."""
    product = Product(sku="TEE-001", name="Basic Tee", sale_price_cents=1500)
    db_session.add(product)
    db_session.add(Variant(product=product, label="S", stock_quantity=10))
    db_session.add(Variant(product=product, label="M", stock_quantity=5))
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def small(product):
    return product.variants[0]


@pytest.fixture(scope='function')
def medium(product):
    return product.variants[1]


@pytest.fixture(scope='function')
def other_product(db_session):
    """Slim Jeans on offer: list 4200, offer 3500, one variant with 8 units."""
    product = Product(
        sku="JEANS-001",
        name="Slim Jeans",
        sale_price_cents=4200,
        offer_price_cents=3500,
        on_offer=True,
    )
    db_session.add(product)
    db_session.add(Variant(product=product, label="32", stock_quantity=8))
    db_session.commit()
    return product


def line(product, variant, quantity, unit_price_cents=None):
    """Mapping form of an order line, as the engine accepts it."""
    data = {"product_id": product.id, "variant_id": variant.id, "quantity": quantity}
    if unit_price_cents is not None:
        data["unit_price_cents"] = unit_price_cents
    return data
