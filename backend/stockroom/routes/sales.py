# Overview: Flask API routes for sales; parses input and returns JSON responses.

"""Sales API routes with role enforcement"""

from datetime import timedelta

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..services import get_services
from ..services.auth_service import ROLE_ADMIN, ROLE_MANAGER
from ..services.ledger_service import InvalidMovement
from ..services.products_service import ProductError
from ..services.sales_service import SALE_SORT_FIELDS, SaleError, SaleNotFound
from ..time_utils import parse_iso_datetime
from ..validation import ValidationError, validate_sale_payload
from . import page_args, sort_args

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _date_arg(name: str, *, end_of_range: bool = False):
    raw = request.args.get(name)
    try:
        value = parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date or datetime")
    # A bare date as the upper bound covers that whole day
    if value is not None and end_of_range and len(raw.strip()) == 10:
        value = value + timedelta(days=1)
    return value


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Create a COMPLETED sale, decrementing stock for every item.

    Body: items [{productId, quantity, price}], optional discount, tax,
    customerName, customerEmail, customerPhone, paymentMethod, notes.
    Available to: every authenticated role
    """
    try:
        basket = validate_sale_payload(request.get_json(silent=True))
        sale = get_services().sales.create_sale(basket, g.auth.user_id)
        sale = get_services().sales.get_sale(sale.id)

        return jsonify({"message": "Sale created successfully", "sale": sale.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except (SaleError, ProductError) as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except InvalidMovement as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    List sales with items.

    Query params: search, status, dateFrom, dateTo, soldBy, sortBy, sortOrder,
    page, limit (max 100).
    """
    try:
        page, limit = page_args()
        sort_by, sort_order = sort_args(SALE_SORT_FIELDS, "createdAt", "desc")
        result = get_services().sales.list_sales(
            search=request.args.get("search", "").strip(),
            status=request.args.get("status") or None,
            date_from=_date_arg("dateFrom"),
            date_to=_date_arg("dateTo", end_of_range=True),
            sold_by=request.args.get("soldBy", type=int),
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            limit=limit,
        )
        return jsonify(result), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except SaleError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    """Get a sale with its items and seller."""
    try:
        sale = get_services().sales.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict()}), 200

    except SaleNotFound as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to fetch sale %s", sale_id)
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.patch("/<int:sale_id>/status")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def update_sale_status_route(sale_id: int):
    """
    Change a sale's status. COMPLETED -> REFUNDED restores stock.

    Body: {status}
    Available to: ADMIN, MANAGER
    """
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("status") if isinstance(data, dict) else None

        sale = get_services().sales.update_status(sale_id, status, g.auth.user_id)
        sale = get_services().sales.get_sale(sale.id)

        return jsonify({"message": "Sale status updated successfully", "sale": sale.to_dict()}), 200

    except SaleNotFound as e:
        return jsonify({"error": str(e)}), 404
    except (SaleError, ProductError) as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to update sale status")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/stats/overview")
@require_auth
def sales_statistics_route():
    """
    Revenue, count and average order value of COMPLETED sales.

    Query params: period (days, default 30)
    """
    raw_period = request.args.get("period", "30")
    try:
        period = int(raw_period)
    except ValueError:
        return jsonify({"error": "period must be a positive integer"}), 400

    try:
        stats = get_services().sales.statistics(period)
        return jsonify(stats), 200

    except SaleError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to compute sales statistics")
        return jsonify({"error": "Internal server error"}), 500
