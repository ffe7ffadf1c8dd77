# Overview: Flask API routes for product categories; parses input and returns JSON responses.

from flask import Blueprint, current_app, request

from ..decorators import require_auth, require_role
from ..models import Category
from ..services import get_services
from ..services.auth_service import ROLE_ADMIN, ROLE_MANAGER
from ..services.category_service import CategoryError, CategoryNotFoundError
from ..validation import ConflictError, ModelValidationPolicy, ValidationError, validate_payload

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name": "name", "description": "description"},
    required_on_create={"name"},
    min_length={"name": 2},
    blank_as_null={"description"},
)

categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@categories_bp.get("")
@require_auth
def list_categories():
    """All categories by name, each with its product count."""
    return {"categories": get_services().categories.list_categories()}, 200


@categories_bp.get("/<int:category_id>")
@require_auth
def get_category(category_id: int):
    try:
        return {"category": get_services().categories.category_detail(category_id)}, 200
    except CategoryNotFoundError as e:
        return {"error": str(e)}, 404


@categories_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_category():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
        category = get_services().categories.create_category(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to create category")
        return {"error": "Internal server error"}, 500

    return {"message": "Category created successfully", "category": category.to_dict()}, 201


@categories_bp.put("/<int:category_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def update_category(category_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)
        category = get_services().categories.update_category(category_id, patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except CategoryNotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to update category %s", category_id)
        return {"error": "Internal server error"}, 500

    return {"message": "Category updated successfully", "category": category.to_dict()}, 200


@categories_bp.delete("/<int:category_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_category(category_id: int):
    """Delete a category. Refused while any product references it."""
    try:
        get_services().categories.delete_category(category_id)
    except CategoryNotFoundError as e:
        return {"error": str(e)}, 404
    except CategoryError as e:
        return {"error": str(e)}, 400

    return {"message": "Category deleted successfully"}, 200
