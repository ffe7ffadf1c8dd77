"""
Pytest fixtures for Stockroom backend tests.

Provides test database setup, role fixtures, caller headers and test client.
"""

import pytest

from stockroom import create_app
from stockroom.config import TestingConfig
from stockroom.extensions import db
from stockroom.models import Category, Product, User
from stockroom.services import get_services
from stockroom.services.auth_service import hash_password

PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

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
def services(db_session):
    return get_services()


def _make_user(db_session, email, role, first_name="Test", last_name="User", is_active=True):
    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        role=role,
        is_active=is_active,
        password_hash=hash_password(PASSWORD, rounds=4),
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session):
    return _make_user(db_session, "admin@example.com", "ADMIN", "Admin", "User")


@pytest.fixture(scope='function')
def manager_user(db_session):
    return _make_user(db_session, "manager@example.com", "MANAGER", "Manager", "User")


@pytest.fixture(scope='function')
def sales_user(db_session):
    return _make_user(db_session, "sales@example.com", "SALESPERSON", "Sales", "Person")


@pytest.fixture(scope='function')
def make_user(db_session):
    def _factory(email, role="SALESPERSON", **kwargs):
        return _make_user(db_session, email, role, **kwargs)
    return _factory


def headers_for(user):
    """Caller headers as the authenticating gateway would forward them."""
    return {"X-User-Id": str(user.id)}


@pytest.fixture(scope='function')
def category(db_session):
    category = Category(name="Electronics", description="Electronic devices and accessories")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def make_product(db_session):
    """Insert a product row directly (no ledger entry)."""
    counter = {"n": 0}

    def _factory(quantity=10, price_cents=1000, cost_cents=500, is_active=True, **kwargs):
        counter["n"] += 1
        product = Product(
            sku=kwargs.pop("sku", f"SKU-{counter['n']:03d}"),
            name=kwargs.pop("name", f"Product {counter['n']}"),
            price_cents=price_cents,
            cost_cents=cost_cents,
            quantity=quantity,
            is_active=is_active,
            **kwargs,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _factory


@pytest.fixture(scope='function')
def product(make_product):
    """Product P with quantity 10 at 10.00."""
    return make_product(quantity=10, price_cents=1000, sku="P-001", name="Product P")
