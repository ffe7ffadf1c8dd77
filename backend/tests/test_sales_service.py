"""
Sale Engine tests (service level).

Verifies:
- Final amount arithmetic and item snapshots
- Stock decrement and one OUT movement per item
- Insufficient stock / inactive / missing products reject the whole sale
- Day-scoped sale numbers
- Refund restores stock, cancel does not
- Statistics over COMPLETED sales
"""

from datetime import datetime

import pytest

from stockroom.models import Sale, SaleItem, StockMovement
from stockroom.services.products_service import InsufficientStock, ProductInactive, ProductNotFound
from stockroom.services.sales_service import InvalidStatus, SaleError, SaleNotFound
from stockroom.validation import BasketLine


def basket(*lines, **header):
    data = {"lines": [BasketLine(product_id=p, quantity=q, price_cents=c) for p, q, c in lines]}
    data.setdefault("discount_cents", 0)
    data.setdefault("tax_cents", 0)
    data.update(header)
    return data


# =============================================================================
# CREATE
# =============================================================================


class TestCreateSale:

    def test_sell_three_of_ten(self, services, sales_user, product, db_session):
        sale = services.sales.create_sale(basket((product.id, 3, 1000)), sales_user.id)

        assert sale.status == "COMPLETED"
        assert sale.sold_by_id == sales_user.id
        assert product.quantity == 7

        movements = db_session.query(StockMovement).filter_by(sale_id=sale.id).all()
        assert len(movements) == 1
        assert movements[0].type == "OUT"
        assert movements[0].quantity == 3
        assert movements[0].reason == "Sale"
        assert movements[0].reference == sale.sale_number
        assert movements[0].actor_user_id == sales_user.id

    def test_final_amount_arithmetic(self, services, sales_user, make_product):
        a = make_product(quantity=5, price_cents=1999)
        b = make_product(quantity=5, price_cents=500)

        sale = services.sales.create_sale(
            basket((a.id, 2, 1999), (b.id, 1, 500), discount_cents=498, tax_cents=360),
            sales_user.id,
        )

        assert sale.total_amount_cents == 4498
        assert sale.discount_cents == 498
        assert sale.tax_cents == 360
        assert sale.final_amount_cents == 4498 - 498 + 360

        data = sale.to_dict()
        assert data["totalAmount"] == 44.98
        assert data["finalAmount"] == 43.60
        assert [item["total"] for item in data["saleItems"]] == [39.98, 5.00]

    def test_one_out_movement_per_item(self, services, sales_user, make_product, db_session):
        products = [make_product(quantity=20) for _ in range(3)]
        quantities = [1, 4, 7]

        sale = services.sales.create_sale(
            basket(*[(p.id, q, 1000) for p, q in zip(products, quantities)]),
            sales_user.id,
        )

        movements = (
            db_session.query(StockMovement)
            .filter_by(reference=sale.sale_number, type="OUT")
            .order_by(StockMovement.id)
            .all()
        )
        assert [m.product_id for m in movements] == [p.id for p in products]
        assert sum(m.quantity for m in movements) == sum(quantities)
        assert [p.quantity for p in products] == [19, 16, 13]

    def test_item_price_is_a_snapshot(self, services, sales_user, product, db_session):
        sale = services.sales.create_sale(basket((product.id, 1, 850)), sales_user.id)

        product.price_cents = 2000
        db_session.commit()

        item = db_session.query(SaleItem).filter_by(sale_id=sale.id).one()
        assert item.price_cents == 850
        assert item.total_cents == 850

    def test_exactly_available_quantity(self, services, sales_user, product):
        services.sales.create_sale(basket((product.id, 10, 1000)), sales_user.id)
        assert product.quantity == 0

    def test_one_more_than_available_rejected(self, services, sales_user, product, db_session):
        with pytest.raises(InsufficientStock) as exc_info:
            services.sales.create_sale(basket((product.id, 11, 1000)), sales_user.id)

        assert exc_info.value.available == 10
        assert exc_info.value.requested == 11
        assert "Product P" in str(exc_info.value)
        assert product.quantity == 10
        assert db_session.query(Sale).count() == 0
        assert db_session.query(StockMovement).count() == 0

    def test_failure_on_later_line_leaves_nothing_behind(self, services, sales_user, make_product, db_session):
        ok = make_product(quantity=10)
        short = make_product(quantity=1)

        with pytest.raises(InsufficientStock):
            services.sales.create_sale(basket((ok.id, 2, 1000), (short.id, 5, 1000)), sales_user.id)

        db_session.expire_all()
        assert ok.quantity == 10
        assert short.quantity == 1
        assert db_session.query(SaleItem).count() == 0
        assert db_session.query(StockMovement).count() == 0

    def test_repeated_product_lines_checked_together(self, services, sales_user, product):
        with pytest.raises(InsufficientStock) as exc_info:
            services.sales.create_sale(basket((product.id, 6, 1000), (product.id, 6, 1000)), sales_user.id)
        assert exc_info.value.requested == 12
        assert product.quantity == 10

    def test_inactive_product_rejected(self, services, sales_user, make_product):
        inactive = make_product(quantity=10, is_active=False)
        with pytest.raises(ProductInactive):
            services.sales.create_sale(basket((inactive.id, 1, 1000)), sales_user.id)

    def test_missing_product_rejected(self, services, sales_user):
        with pytest.raises(ProductNotFound):
            services.sales.create_sale(basket((9999, 1, 1000)), sales_user.id)

    def test_empty_basket_rejected(self, services, sales_user):
        with pytest.raises(SaleError):
            services.sales.create_sale({"lines": []}, sales_user.id)

    def test_discount_above_total_rejected(self, services, sales_user, product):
        with pytest.raises(SaleError, match="Discount cannot exceed"):
            services.sales.create_sale(basket((product.id, 1, 1000), discount_cents=1001), sales_user.id)
        assert product.quantity == 10


# =============================================================================
# SALE NUMBERS
# =============================================================================


class TestSaleNumbers:

    def test_day_scoped_sequence(self, services, sales_user, product):
        day = datetime(2024, 10, 21, 9, 30)
        first = services.sales.create_sale(basket((product.id, 1, 1000)), sales_user.id, now=day)
        second = services.sales.create_sale(basket((product.id, 1, 1000)), sales_user.id, now=day)

        assert first.sale_number == "SALE-20241021-0001"
        assert second.sale_number == "SALE-20241021-0002"

    def test_new_day_restarts_at_one(self, services, sales_user, product):
        services.sales.create_sale(basket((product.id, 1, 1000)), sales_user.id, now=datetime(2024, 10, 21, 23, 0))
        next_day = services.sales.create_sale(
            basket((product.id, 1, 1000)), sales_user.id, now=datetime(2024, 10, 22, 0, 5)
        )
        assert next_day.sale_number == "SALE-20241022-0001"

    def test_numbers_strictly_increasing_without_gaps(self, services, sales_user, product):
        day = datetime(2024, 10, 21, 12, 0)
        numbers = [
            services.sales.create_sale(basket((product.id, 1, 1000)), sales_user.id, now=day).sale_number
            for _ in range(5)
        ]
        assert [int(n.rsplit("-", 1)[1]) for n in numbers] == [1, 2, 3, 4, 5]

    def test_failed_sale_does_not_consume_a_number(self, services, sales_user, product):
        day = datetime(2024, 10, 21, 12, 0)
        with pytest.raises(InsufficientStock):
            services.sales.create_sale(basket((product.id, 50, 1000)), sales_user.id, now=day)

        sale = services.sales.create_sale(basket((product.id, 1, 1000)), sales_user.id, now=day)
        assert sale.sale_number == "SALE-20241021-0001"


# =============================================================================
# STATUS CHANGES
# =============================================================================


class TestUpdateStatus:

    def test_refund_restores_stock(self, services, sales_user, manager_user, product, db_session):
        sale = services.sales.create_sale(basket((product.id, 2, 1000)), sales_user.id)
        assert product.quantity == 8

        refunded = services.sales.update_status(sale.id, "REFUNDED", manager_user.id)

        assert refunded.status == "REFUNDED"
        assert product.quantity == 10
        refund = db_session.query(StockMovement).filter_by(sale_id=sale.id, type="IN").one()
        assert refund.quantity == 2
        assert refund.reason == "Refund"
        assert refund.reference == sale.sale_number
        assert refund.actor_user_id == manager_user.id

    def test_refund_round_trip_multiple_items(self, services, sales_user, make_product):
        products = [make_product(quantity=10) for _ in range(3)]
        sale = services.sales.create_sale(
            basket(*[(p.id, i + 1, 1000) for i, p in enumerate(products)]), sales_user.id
        )
        services.sales.update_status(sale.id, "REFUNDED", sales_user.id)

        assert [p.quantity for p in products] == [10, 10, 10]

    def test_second_refund_does_not_restore_again(self, services, sales_user, product):
        sale = services.sales.create_sale(basket((product.id, 2, 1000)), sales_user.id)
        services.sales.update_status(sale.id, "REFUNDED", sales_user.id)
        services.sales.update_status(sale.id, "REFUNDED", sales_user.id)
        assert product.quantity == 10

    def test_cancel_keeps_stock(self, services, sales_user, product, db_session):
        sale = services.sales.create_sale(basket((product.id, 3, 1000)), sales_user.id)
        cancelled = services.sales.update_status(sale.id, "CANCELLED", sales_user.id)

        assert cancelled.status == "CANCELLED"
        assert product.quantity == 7
        assert db_session.query(StockMovement).filter_by(sale_id=sale.id, type="IN").count() == 0

    def test_invalid_status(self, services, sales_user, product):
        sale = services.sales.create_sale(basket((product.id, 1, 1000)), sales_user.id)
        with pytest.raises(InvalidStatus):
            services.sales.update_status(sale.id, "SHIPPED", sales_user.id)

    def test_unknown_sale(self, services, sales_user):
        with pytest.raises(SaleNotFound):
            services.sales.update_status(424242, "REFUNDED", sales_user.id)


# =============================================================================
# READS
# =============================================================================


class TestSaleReads:

    def test_statistics_counts_completed_only(self, services, sales_user, product):
        now = datetime(2024, 10, 25, 12, 0)
        services.sales.create_sale(basket((product.id, 1, 1000)), sales_user.id, now=datetime(2024, 10, 21))
        services.sales.create_sale(basket((product.id, 2, 1000)), sales_user.id, now=datetime(2024, 10, 22))
        refunded = services.sales.create_sale(basket((product.id, 1, 1000)), sales_user.id, now=datetime(2024, 10, 23))
        services.sales.update_status(refunded.id, "REFUNDED", sales_user.id)

        stats = services.sales.statistics(30, now=now)

        assert stats == {
            "totalRevenue": 30.0,
            "totalSales": 2,
            "averageOrderValue": 15.0,
            "period": 30,
        }

    def test_statistics_respects_period(self, services, sales_user, product):
        services.sales.create_sale(basket((product.id, 1, 1000)), sales_user.id, now=datetime(2024, 9, 1))
        services.sales.create_sale(basket((product.id, 1, 2000)), sales_user.id, now=datetime(2024, 10, 24))

        stats = services.sales.statistics(7, now=datetime(2024, 10, 25))
        assert stats["totalSales"] == 1
        assert stats["totalRevenue"] == 20.0

    def test_statistics_average_rounds_half_up(self, services, sales_user, product):
        day = datetime(2024, 10, 24)
        for price in (1000, 1000, 1001):
            services.sales.create_sale(basket((product.id, 1, price)), sales_user.id, now=day)

        stats = services.sales.statistics(30, now=datetime(2024, 10, 25))
        assert stats["averageOrderValue"] == 10.0

    def test_statistics_empty_period(self, services):
        stats = services.sales.statistics(30)
        assert stats["totalRevenue"] == 0.0
        assert stats["totalSales"] == 0
        assert stats["averageOrderValue"] == 0.0

    def test_statistics_rejects_non_positive_period(self, services):
        with pytest.raises(SaleError):
            services.sales.statistics(0)

    def test_list_filters_and_search(self, services, sales_user, manager_user, product):
        services.sales.create_sale(
            basket((product.id, 1, 1000), customer_name="John Doe"), sales_user.id, now=datetime(2024, 10, 21)
        )
        services.sales.create_sale(
            basket((product.id, 1, 1000), customer_name="Jane Smith"), manager_user.id, now=datetime(2024, 10, 22)
        )

        by_name = services.sales.list_sales(search="jane")
        assert [s["customerName"] for s in by_name["sales"]] == ["Jane Smith"]

        by_seller = services.sales.list_sales(sold_by=sales_user.id)
        assert by_seller["pagination"]["total"] == 1

        by_day = services.sales.list_sales(date_from=datetime(2024, 10, 22), date_to=datetime(2024, 10, 23))
        assert [s["saleNumber"] for s in by_day["sales"]] == ["SALE-20241022-0001"]

    def test_list_pagination_and_order(self, services, sales_user, product):
        for day in (21, 22, 23):
            services.sales.create_sale(basket((product.id, 1, 1000)), sales_user.id, now=datetime(2024, 10, day))

        page = services.sales.list_sales(page=1, limit=2)
        assert page["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
        assert page["sales"][0]["saleNumber"] == "SALE-20241023-0001"

        oldest_first = services.sales.list_sales(sort_by="createdAt", sort_order="asc")
        assert oldest_first["sales"][0]["saleNumber"] == "SALE-20241021-0001"
