# Overview: Request decorators for caller identity and role checks.

from functools import wraps

from flask import current_app, g, jsonify, request

from .extensions import db
from .services.auth_service import resolve_auth_context


def _is_authenticated() -> bool:
    return getattr(g, "auth", None) is not None


def require_auth(f):
    """
    Require a known, active caller.

    The authenticating gateway forwards the verified user id in the header named
    by AUTH_USER_HEADER. Sets g.auth to an AuthContext(user_id, role).

    Returns 401 if the header is missing or malformed, the user does not exist,
    or the account is deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        header = current_app.config["AUTH_USER_HEADER"]
        raw_user_id = request.headers.get(header)

        if not raw_user_id:
            return jsonify({"error": "Authentication required"}), 401

        context = resolve_auth_context(db.session, raw_user_id)
        if context is None:
            current_app.logger.warning(
                "Rejected caller id %r on %s %s", raw_user_id, request.method, request.path
            )
            return jsonify({"error": "Invalid or inactive user"}), 401

        g.auth = context
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require the caller's role to be one of roles. Must be applied after @require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if g.auth.role not in roles:
                current_app.logger.info(
                    "Role %s denied on %s %s", g.auth.role, request.method, request.path
                )
                return jsonify({
                    "error": "Insufficient permissions",
                    "requiredRoles": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator
