# Overview: Query-string helpers shared by the API blueprints.

from flask import current_app, request

from ..validation import ValidationError


def page_args() -> tuple[int, int]:
    """Read page/limit from the query string; limit is capped at MAX_PAGE_SIZE."""
    page = request.args.get("page", type=int) or 1
    limit = request.args.get("limit", type=int) or current_app.config["DEFAULT_PAGE_SIZE"]
    page = max(1, page)
    limit = max(1, min(limit, current_app.config["MAX_PAGE_SIZE"]))
    return page, limit


def bool_arg(name: str):
    """'true'/'false' (any case) -> bool, absent -> None, anything else -> ValidationError."""
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    lowered = raw.strip().lower()
    if lowered not in {"true", "false"}:
        raise ValidationError(f"{name} must be true or false")
    return lowered == "true"


def sort_args(allowed, default: str, default_order: str) -> tuple[str, str]:
    sort_by = request.args.get("sortBy", default)
    sort_order = request.args.get("sortOrder", default_order).lower()
    if sort_by not in allowed:
        raise ValidationError(f"sortBy must be one of: {', '.join(sorted(allowed))}")
    if sort_order not in {"asc", "desc"}:
        raise ValidationError("sortOrder must be asc or desc")
    return sort_by, sort_order
