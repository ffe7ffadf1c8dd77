# Overview: Flask API routes for user administration; parses input and returns JSON responses.

"""
User administration routes.

ADMIN manages every account. Any other role may read and edit only their own
record and change their own password; role and isActive stay ADMIN-only.
"""
from flask import Blueprint, current_app, g, request

from ..decorators import require_auth, require_role
from ..models import User
from ..services import get_services
from ..services.auth_service import ROLE_ADMIN, PasswordValidationError
from ..services.user_service import UserAccessDenied, UserError, UserNotFound
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_user,
    validate_payload,
)
from . import bool_arg, page_args

USER_POLICY = ModelValidationPolicy(
    writable_fields={
        "email": "email",
        "firstName": "first_name",
        "lastName": "last_name",
        "role": "role",
        "isActive": "is_active",
    },
    required_on_create={"email", "firstName", "lastName"},
    min_length={"firstName": 2, "lastName": 2},
    email_fields={"email"},
)

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


def _user_error(e: UserError):
    if isinstance(e, UserNotFound):
        return {"error": str(e)}, 404
    if isinstance(e, UserAccessDenied):
        return {"error": str(e)}, 403
    return {"error": str(e)}, 400


@users_bp.get("")
@require_auth
@require_role(ROLE_ADMIN)
def list_users():
    """
    List users.

    Query params: search (first/last name, email), role, isActive, page, limit
    """
    try:
        page, limit = page_args()
        result = get_services().users.list_users(
            search=request.args.get("search", "").strip(),
            role=request.args.get("role") or None,
            is_active=bool_arg("isActive"),
            page=page,
            limit=limit,
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    return result, 200


@users_bp.get("/<int:user_id>")
@require_auth
def get_user(user_id: int):
    """User record with sales count and the 10 most recent sales. ADMIN or self."""
    try:
        return {"user": get_services().users.user_profile(g.auth, user_id)}, 200
    except UserError as e:
        return _user_error(e)


@users_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_user():
    """
    Create a user.

    Body: email, password, firstName, lastName, role (default SALESPERSON)
    """
    payload = dict(request.get_json(silent=True) or {})
    password = payload.pop("password", None)

    if not password:
        return {"error": "Missing required fields: password"}, 400

    try:
        patch = validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=False)
        enforce_rules_user(patch)
        user = get_services().users.create_user(patch, password)
    except (ValidationError, PasswordValidationError) as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to create user")
        return {"error": "Internal server error"}, 500

    return {"message": "User created successfully", "user": user.to_dict()}, 201


@users_bp.put("/<int:user_id>")
@require_auth
def update_user(user_id: int):
    """Update profile fields. Non-admins: own record only, role/isActive ignored."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=True)
        enforce_rules_user(patch)
        user = get_services().users.update_user(g.auth, user_id, patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except UserError as e:
        return _user_error(e)
    except Exception:
        current_app.logger.exception("Failed to update user %s", user_id)
        return {"error": "Internal server error"}, 500

    return {"message": "User updated successfully", "user": user.to_dict()}, 200


@users_bp.patch("/<int:user_id>/password")
@require_auth
def change_password(user_id: int):
    """
    Body: newPassword, currentPassword (required when changing your own).
    """
    data = request.get_json(silent=True) or {}
    new_password = data.get("newPassword")
    if not new_password:
        return {"error": "newPassword required"}, 400

    try:
        get_services().users.change_password(
            g.auth,
            user_id,
            new_password,
            current_password=data.get("currentPassword"),
        )
    except PasswordValidationError as e:
        return {"error": str(e)}, 400
    except UserError as e:
        return _user_error(e)

    return {"message": "Password changed successfully"}, 200


@users_bp.patch("/<int:user_id>/activate")
@require_auth
@require_role(ROLE_ADMIN)
def activate_user(user_id: int):
    try:
        user = get_services().users.set_active(g.auth, user_id, True)
    except UserError as e:
        return _user_error(e)
    return {"message": "User activated successfully", "user": user.to_dict()}, 200


@users_bp.patch("/<int:user_id>/deactivate")
@require_auth
@require_role(ROLE_ADMIN)
def deactivate_user(user_id: int):
    try:
        user = get_services().users.set_active(g.auth, user_id, False)
    except UserError as e:
        return _user_error(e)
    return {"message": "User deactivated successfully", "user": user.to_dict()}, 200


@users_bp.delete("/<int:user_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_user(user_id: int):
    """Delete a user. Refused for your own account or a user with sales."""
    try:
        get_services().users.delete_user(g.auth, user_id)
    except UserError as e:
        return _user_error(e)
    return {"message": "User deleted successfully"}, 200
