# Overview: Flask API routes for the product catalog; parses input and returns JSON responses.

"""
Product routes.

SECURITY: All routes require an authenticated caller.
- Reads are open to every role
- Writes (create / update / delete) require ADMIN or MANAGER
"""
from flask import Blueprint, current_app, g, request

from ..decorators import require_auth, require_role
from ..models import Product
from ..services import get_services
from ..services.auth_service import ROLE_ADMIN, ROLE_MANAGER
from ..services.products_service import (
    PRODUCT_SORT_FIELDS,
    CategoryNotFound,
    ProductError,
    ProductNotFound,
)
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_product,
    validate_payload,
)
from . import bool_arg, page_args, sort_args

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku": "sku",
        "barcode": "barcode",
        "name": "name",
        "description": "description",
        "imageUrl": "image_url",
        "price": "price_cents",
        "cost": "cost_cents",
        "quantity": "quantity",
        "minStock": "min_stock",
        "maxStock": "max_stock",
        "isActive": "is_active",
        "categoryId": "category_id",
    },
    required_on_create={"sku", "name", "price", "cost"},
    amount_fields={"price", "cost"},
    min_length={"sku": 2, "name": 2},
    min_values={"quantity": 0, "minStock": 0, "maxStock": 1},
    url_fields={"imageUrl"},
    blank_as_null={"barcode", "description", "imageUrl"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    """
    List products.

    Query params:
    - search: substring of name, SKU or description (case-insensitive)
    - categoryId: int
    - lowStock: true/false - only products at or below minStock
    - sortBy: name | sku | price | quantity | createdAt | updatedAt (default name)
    - sortOrder: asc | desc (default asc)
    - page, limit (default 10, max 100)
    """
    try:
        page, limit = page_args()
        sort_by, sort_order = sort_args(PRODUCT_SORT_FIELDS, "name", "asc")
        result = get_services().catalog.list_products(
            search=request.args.get("search", "").strip(),
            category_id=request.args.get("categoryId", type=int),
            low_stock=bool(bool_arg("lowStock")),
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            limit=limit,
        )
        return result, 200
    except ValidationError as e:
        return {"error": str(e)}, 400


@products_bp.get("/alerts/low-stock")
@require_auth
def low_stock_alerts():
    """Active products at or below their minimum stock level, lowest quantity first."""
    products = get_services().catalog.low_stock_products()
    return {"products": [p.to_dict() for p in products], "count": len(products)}, 200


@products_bp.get("/<int:product_id>")
@require_auth
def get_product(product_id: int):
    """Product with its category and 10 most recent stock movements."""
    services = get_services()
    try:
        product = services.catalog.get(product_id)
    except ProductNotFound:
        return {"error": "Product not found"}, 404

    data = product.to_dict()
    data["stockMovements"] = services.ledger.history(product.id, page=1, limit=10)["movements"]
    return {"product": data}, 200


@products_bp.get("/<int:product_id>/movements")
@require_auth
def product_movements(product_id: int):
    """Stock movement history for a product, newest first (page, limit)."""
    services = get_services()
    try:
        services.catalog.get(product_id)
    except ProductNotFound:
        return {"error": "Product not found"}, 404

    page, limit = page_args()
    return services.ledger.history(product_id, page=page, limit=limit), 200


@products_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_product_route():
    """
    Create a new product. A starting quantity is recorded as an "Initial stock" movement.

    Requires ADMIN or MANAGER.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        created = get_services().catalog.create_product(patch, actor_user_id=g.auth.user_id)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except CategoryNotFound as e:
        return {"error": str(e)}, 400
    except ProductError as e:
        return {"error": str(e), "details": e.details}, 400
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500

    return {"message": "Product created successfully", "product": created.to_dict()}, 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def update_product_route(product_id: int):
    """
    Update a product. A quantity change is recorded as a "Manual adjustment" movement.

    Requires ADMIN or MANAGER.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        updated = get_services().catalog.update_product(product_id, patch, actor_user_id=g.auth.user_id)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except ProductNotFound:
        return {"error": "Product not found"}, 404
    except ProductError as e:
        return {"error": str(e), "details": e.details}, 400
    except Exception:
        current_app.logger.exception("Failed to update product %s", product_id)
        return {"error": "Internal server error"}, 500

    return {"message": "Product updated successfully", "product": updated.to_dict()}, 200


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_product_route(product_id: int):
    """
    Delete a product. Refused when the product has sales history.

    Requires ADMIN or MANAGER.
    """
    try:
        get_services().catalog.delete_product(product_id)
    except ProductNotFound:
        return {"error": "Product not found"}, 404
    except ProductError as e:
        return {"error": str(e)}, 400

    return {"message": "Product deleted successfully"}, 200
