"""
Concurrent sale creation against a file-backed SQLite database.

Each worker thread gets its own app context, hence its own session and
connection, the way separate requests would.
"""

import threading
from datetime import datetime

import pytest

from stockroom import create_app
from stockroom.config import TestingConfig
from stockroom.extensions import db
from stockroom.models import Product, Sale, StockMovement, User
from stockroom.services import get_services
from stockroom.services.auth_service import hash_password
from stockroom.services.products_service import InsufficientStock
from stockroom.validation import BasketLine

SALE_DAY = datetime(2024, 10, 21, 12, 0)


@pytest.fixture
def file_app(tmp_path):
    app = create_app(
        TestingConfig,
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        ATOMIC_RETRY_ATTEMPTS=8,
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


def _seed(app, quantity):
    with app.app_context():
        user = User(
            email="sales@example.com",
            first_name="Sales",
            last_name="Person",
            role="SALESPERSON",
            password_hash=hash_password("Password123!", rounds=4),
        )
        product = Product(sku="P-001", name="Product P", price_cents=1000, cost_cents=500, quantity=quantity)
        db.session.add_all([user, product])
        db.session.commit()
        return user.id, product.id


def _run_workers(app, count, user_id, product_id, quantity):
    results, errors = [], []
    barrier = threading.Barrier(count)

    def worker():
        with app.app_context():
            barrier.wait()
            try:
                sale = get_services().sales.create_sale(
                    {
                        "lines": [BasketLine(product_id, quantity, 1000)],
                        "discount_cents": 0,
                        "tax_cents": 0,
                    },
                    user_id,
                    now=SALE_DAY,
                )
                results.append(sale.sale_number)
            except Exception as exc:  # collected and asserted on below
                errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results, errors


class TestConcurrentSales:

    def test_sale_numbers_distinct_and_gapless(self, file_app):
        user_id, product_id = _seed(file_app, quantity=100)

        numbers, errors = _run_workers(file_app, 8, user_id, product_id, 1)

        assert errors == []
        assert len(numbers) == 8
        assert len(set(numbers)) == 8
        assert sorted(int(n.rsplit("-", 1)[1]) for n in numbers) == list(range(1, 9))

        with file_app.app_context():
            assert db.session.get(Product, product_id).quantity == 92
            assert db.session.query(Sale).count() == 8
            assert db.session.query(StockMovement).filter_by(type="OUT").count() == 8

    def test_no_oversell(self, file_app):
        user_id, product_id = _seed(file_app, quantity=15)

        numbers, errors = _run_workers(file_app, 10, user_id, product_id, 2)

        assert len(numbers) == 7
        assert len(errors) == 3
        assert all(isinstance(e, InsufficientStock) for e in errors)

        with file_app.app_context():
            assert db.session.get(Product, product_id).quantity == 1
            out_total = sum(
                m.quantity for m in db.session.query(StockMovement).filter_by(product_id=product_id, type="OUT")
            )
            assert out_total == 14
