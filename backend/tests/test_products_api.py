"""
Product catalog API tests.
"""

import pytest

from stockroom.models import Product, StockMovement

from conftest import headers_for


def product_body(**overrides):
    body = {
        "sku": "IPH15PRO001",
        "barcode": "123456789012",
        "name": "iPhone 15 Pro",
        "description": "Latest Apple iPhone",
        "price": 999.99,
        "cost": 750.00,
        "quantity": 25,
        "minStock": 5,
        "maxStock": 100,
    }
    body.update(overrides)
    return body


# =============================================================================
# CREATE
# =============================================================================


class TestCreateProduct:

    def test_create_records_initial_stock(self, client, manager_user, category, db_session):
        resp = client.post(
            "/api/products",
            json=product_body(categoryId=category.id),
            headers=headers_for(manager_user),
        )

        assert resp.status_code == 201
        product = resp.get_json()["product"]
        assert product["price"] == 999.99
        assert product["cost"] == 750.0
        assert product["quantity"] == 25
        assert product["category"] == {"id": category.id, "name": "Electronics"}
        assert product["isLowStock"] is False

        movement = db_session.query(StockMovement).filter_by(product_id=product["id"]).one()
        assert (movement.type, movement.quantity, movement.reason, movement.reference) == (
            "IN", 25, "Initial stock", "INITIAL",
        )
        assert movement.actor_user_id == manager_user.id

    def test_zero_quantity_has_no_movement(self, client, admin_user, db_session):
        resp = client.post("/api/products", json=product_body(quantity=0), headers=headers_for(admin_user))
        assert resp.status_code == 201
        assert db_session.query(StockMovement).count() == 0

    def test_duplicate_sku_is_409(self, client, admin_user):
        client.post("/api/products", json=product_body(), headers=headers_for(admin_user))
        resp = client.post(
            "/api/products", json=product_body(barcode="999"), headers=headers_for(admin_user)
        )
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "Product with this SKU already exists"

    def test_duplicate_barcode_is_409(self, client, admin_user):
        client.post("/api/products", json=product_body(), headers=headers_for(admin_user))
        resp = client.post("/api/products", json=product_body(sku="OTHER-1"), headers=headers_for(admin_user))
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "Product with this barcode already exists"

    def test_blank_barcodes_do_not_collide(self, client, admin_user):
        first = client.post("/api/products", json=product_body(barcode=""), headers=headers_for(admin_user))
        second = client.post(
            "/api/products", json=product_body(sku="OTHER-1", barcode=""), headers=headers_for(admin_user)
        )
        assert first.status_code == 201
        assert second.status_code == 201
        assert second.get_json()["product"]["barcode"] is None

    def test_unknown_category(self, client, admin_user):
        resp = client.post("/api/products", json=product_body(categoryId=404), headers=headers_for(admin_user))
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Category not found"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"name": "X"},
            {"sku": "A"},
            {"price": 0},
            {"cost": -5},
            {"price": 1.999},
            {"quantity": -1},
            {"quantity": 2.5},
            {"maxStock": 0},
            {"minStock": 50, "maxStock": 10},
            {"imageUrl": "ftp://nope"},
            {"price": 1e30},
            {"cost": "1e400"},
            {"quantity": 10**12},
            {"supplier": "ACME"},
        ],
    )
    def test_validation(self, client, admin_user, overrides):
        resp = client.post("/api/products", json=product_body(**overrides), headers=headers_for(admin_user))
        assert resp.status_code == 400

    def test_missing_required_fields(self, client, admin_user):
        resp = client.post("/api/products", json={"name": "Thing"}, headers=headers_for(admin_user))
        assert resp.status_code == 400
        assert "Missing required fields" in resp.get_json()["error"]

    def test_salesperson_cannot_create(self, client, sales_user):
        resp = client.post("/api/products", json=product_body(), headers=headers_for(sales_user))
        assert resp.status_code == 403


# =============================================================================
# UPDATE / DELETE
# =============================================================================


class TestUpdateProduct:

    def test_quantity_change_is_manual_adjustment(self, client, manager_user, product, db_session):
        resp = client.put(
            f"/api/products/{product.id}", json={"quantity": 4}, headers=headers_for(manager_user)
        )

        assert resp.status_code == 200
        assert resp.get_json()["product"]["quantity"] == 4
        movement = db_session.query(StockMovement).filter_by(product_id=product.id).one()
        assert (movement.type, movement.quantity, movement.reason, movement.reference) == (
            "OUT", 6, "Manual adjustment", "ADJUSTMENT",
        )

    def test_unchanged_quantity_no_movement(self, client, manager_user, product, db_session):
        resp = client.put(
            f"/api/products/{product.id}",
            json={"quantity": 10, "name": "Renamed"},
            headers=headers_for(manager_user),
        )
        assert resp.status_code == 200
        assert resp.get_json()["product"]["name"] == "Renamed"
        assert db_session.query(StockMovement).count() == 0

    def test_min_stock_above_existing_max_rejected(self, client, manager_user, product):
        resp = client.put(
            f"/api/products/{product.id}", json={"minStock": 5000}, headers=headers_for(manager_user)
        )
        assert resp.status_code == 400

    def test_duplicate_sku_on_update(self, client, manager_user, make_product):
        a = make_product(sku="AAA-1")
        make_product(sku="BBB-1")
        resp = client.put(f"/api/products/{a.id}", json={"sku": "BBB-1"}, headers=headers_for(manager_user))
        assert resp.status_code == 409

    def test_update_missing_product(self, client, manager_user):
        resp = client.put("/api/products/999", json={"name": "Nope"}, headers=headers_for(manager_user))
        assert resp.status_code == 404


class TestDeleteProduct:

    def test_delete_unsold_product(self, client, admin_user, db_session):
        created = client.post(
            "/api/products", json=product_body(), headers=headers_for(admin_user)
        ).get_json()["product"]

        resp = client.delete(f"/api/products/{created['id']}", headers=headers_for(admin_user))

        assert resp.status_code == 200
        assert db_session.get(Product, created["id"]) is None
        assert db_session.query(StockMovement).count() == 0

    def test_delete_sold_product_refused(self, client, admin_user, product):
        client.post(
            "/api/sales",
            json={"items": [{"productId": product.id, "quantity": 1, "price": 10.0}]},
            headers=headers_for(admin_user),
        )
        resp = client.delete(f"/api/products/{product.id}", headers=headers_for(admin_user))
        assert resp.status_code == 400
        assert "sales history" in resp.get_json()["error"]

    def test_delete_missing(self, client, admin_user):
        assert client.delete("/api/products/999", headers=headers_for(admin_user)).status_code == 404


# =============================================================================
# READS
# =============================================================================


class TestProductReads:

    def test_list_search_and_pagination(self, client, sales_user, make_product):
        make_product(name="Coffee Maker Deluxe", sku="CMD001")
        make_product(name="Yoga Mat Premium", sku="YMP001")
        make_product(name="Coffee Beans", sku="CB001")

        resp = client.get("/api/products?search=coffee&limit=1", headers=headers_for(sales_user))

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}
        assert data["products"][0]["name"] == "Coffee Beans"

    def test_list_low_stock_filter(self, client, sales_user, make_product):
        make_product(name="Plenty", quantity=50, min_stock=10)
        make_product(name="Scarce", quantity=8, min_stock=10)

        data = client.get("/api/products?lowStock=true", headers=headers_for(sales_user)).get_json()
        assert [p["name"] for p in data["products"]] == ["Scarce"]
        assert data["lowStockCount"] == 1

    def test_list_sort_by_quantity_desc(self, client, sales_user, make_product):
        for qty in (5, 50, 20):
            make_product(quantity=qty)
        data = client.get(
            "/api/products?sortBy=quantity&sortOrder=desc", headers=headers_for(sales_user)
        ).get_json()
        assert [p["quantity"] for p in data["products"]] == [50, 20, 5]

    def test_list_filter_by_category(self, client, sales_user, make_product, category):
        make_product(name="In category", category_id=category.id)
        make_product(name="Loose")
        data = client.get(f"/api/products?categoryId={category.id}", headers=headers_for(sales_user)).get_json()
        assert [p["name"] for p in data["products"]] == ["In category"]

    def test_low_stock_alerts(self, client, sales_user, make_product):
        make_product(name="Empty", quantity=0, min_stock=5)
        make_product(name="Low", quantity=3, min_stock=5)
        make_product(name="Fine", quantity=30, min_stock=5)
        make_product(name="Retired", quantity=0, min_stock=5, is_active=False)

        data = client.get("/api/products/alerts/low-stock", headers=headers_for(sales_user)).get_json()
        assert [p["name"] for p in data["products"]] == ["Empty", "Low"]
        assert data["count"] == 2

    def test_get_product_with_movements(self, client, admin_user):
        created = client.post(
            "/api/products", json=product_body(), headers=headers_for(admin_user)
        ).get_json()["product"]

        resp = client.get(f"/api/products/{created['id']}", headers=headers_for(admin_user))
        assert resp.status_code == 200
        data = resp.get_json()["product"]
        assert data["sku"] == "IPH15PRO001"
        assert [m["reason"] for m in data["stockMovements"]] == ["Initial stock"]

    def test_movement_history(self, client, admin_user, product):
        client.put(f"/api/products/{product.id}", json={"quantity": 12}, headers=headers_for(admin_user))
        client.put(f"/api/products/{product.id}", json={"quantity": 9}, headers=headers_for(admin_user))

        data = client.get(f"/api/products/{product.id}/movements", headers=headers_for(admin_user)).get_json()
        assert [(m["type"], m["quantity"]) for m in data["movements"]] == [("OUT", 3), ("IN", 2)]

    def test_missing_product(self, client, sales_user):
        assert client.get("/api/products/999", headers=headers_for(sales_user)).status_code == 404
        assert client.get("/api/products/999/movements", headers=headers_for(sales_user)).status_code == 404
