from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .money import AmountError, amount_to_cents
from .models import USER_ROLES

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
URL_RE = re.compile(r"^https?://\S+$", re.IGNORECASE)

# Upper bound of the 32-bit Integer columns (ids, quantities, stock levels)
MAX_INT = 2_147_483_647


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, details: list | None = None):
        super().__init__(message)
        self.details = details or []


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: wire name -> column key; what clients are allowed to set
      (security boundary). Wire names are camelCase, columns snake_case.
    - required_on_create: wire fields required for POST
    - amount_fields: wire fields carrying decimal money, stored as integer cents
    - min_length / min_values: per wire field bounds beyond column metadata
    """
    writable_fields: dict[str, str]
    required_on_create: set[str] = field(default_factory=set)
    amount_fields: set[str] = field(default_factory=set)
    min_length: dict[str, int] = field(default_factory=dict)
    min_values: dict[str, int] = field(default_factory=dict)
    email_fields: set[str] = field(default_factory=set)
    url_fields: set[str] = field(default_factory=set)
    # Blank strings become NULL for these (e.g. optional unique barcode)
    blank_as_null: set[str] = field(default_factory=set)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(name: str, col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        # Already an int (but not bool which is a subclass of int)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        # String input - must be plain digits (with optional leading minus)
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{name} must be an integer")
            # Reject scientific notation (e.g., "1e15", "1E10")
            if 'e' in stripped.lower():
                raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
            # Reject decimal points (e.g., "12.5")
            if '.' in stripped:
                raise ValidationError(f"{name} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{name} must be an integer")
        # Whole floats (JSON "3.0") are accepted, fractional ones rejected
        if isinstance(value, float):
            if value.is_integer():
                return int(value)
            raise ValidationError(f"{name} must be an integer, not a decimal")
        raise ValidationError(f"{name} must be an integer")

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
            return value.strip().lower() == "true"
        raise ValidationError(f"{name} must be a boolean")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        if not isinstance(value, (str, int, float)) or isinstance(value, bool):
            raise ValidationError(f"{name} must be a string")
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict keyed by column name, with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if policy.writable_fields[k] not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        key = policy.writable_fields[k]
        col = cols[key]

        if k in policy.blank_as_null and isinstance(raw, str) and not raw.strip():
            raw = None

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[key] = None
            continue

        if k in policy.amount_fields:
            try:
                patch[key] = amount_to_cents(raw, k)
            except AmountError as e:
                raise ValidationError(str(e))
            continue

        val = _coerce_value(k, col, raw)

        if isinstance(col.type, Integer) and isinstance(val, int) and abs(val) > MAX_INT:
            raise ValidationError(f"{k} is out of range")

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        if k in policy.min_length and isinstance(val, str) and len(val) < policy.min_length[k]:
            raise ValidationError(f"{k} must be at least {policy.min_length[k]} characters")

        if k in policy.min_values and isinstance(val, int) and val < policy.min_values[k]:
            raise ValidationError(f"{k} must be >= {policy.min_values[k]}")

        if k in policy.email_fields and isinstance(val, str) and val and not EMAIL_RE.match(val):
            raise ValidationError(f"{k} must be a valid email")

        if k in policy.url_fields and isinstance(val, str) and val and not URL_RE.match(val):
            raise ValidationError(f"{k} must be a valid URL")

        patch[key] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    for key, label in (("price_cents", "price"), ("cost_cents", "cost")):
        if key in patch and patch[key] is not None and patch[key] <= 0:
            raise ValidationError(f"{label} must be greater than 0")

    min_stock = patch.get("min_stock")
    max_stock = patch.get("max_stock")
    if min_stock is not None and max_stock is not None and min_stock > max_stock:
        raise ValidationError("minStock cannot exceed maxStock")



def enforce_rules_user(patch: dict) -> None:
    """Role must be a known role; emails are stored lower-case."""
    if "role" in patch and patch["role"] not in USER_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(USER_ROLES)}")
    if patch.get("email"):
        patch["email"] = patch["email"].lower()

# =============================================================================
# Sale basket
# =============================================================================

SALE_HEADER_FIELDS = {
    "customerName": ("customer_name", 100),
    "customerEmail": ("customer_email", 255),
    "customerPhone": ("customer_phone", 20),
    "paymentMethod": ("payment_method", 50),
    "notes": ("notes", 500),
}
SALE_ALLOWED_FIELDS = set(SALE_HEADER_FIELDS) | {"discount", "tax", "items"}


@dataclass(frozen=True)
class BasketLine:
    product_id: int
    quantity: int
    price_cents: int


def _positive_int(value: Any, name: str, max_value: int = MAX_INT) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    if value <= 0:
        raise ValidationError(f"{name} must be greater than 0")
    if value > max_value:
        raise ValidationError(f"{name} cannot exceed {max_value}")
    return value


def validate_sale_payload(payload: Any) -> dict:
    """
    Validate a sale creation body.

    Returns {"lines": [BasketLine, ...], "discount_cents", "tax_cents", plus
    header columns}. Every problem found is reported in details at once.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    details: list[dict] = []

    unknown = sorted(k for k in payload if k not in SALE_ALLOWED_FIELDS)
    for k in unknown:
        details.append({"field": k, "message": f"Field not allowed: {k}"})

    cleaned: dict = {}
    for wire, (column, max_len) in SALE_HEADER_FIELDS.items():
        raw = payload.get(wire)
        if raw is None:
            cleaned[column] = None
            continue
        if not isinstance(raw, str):
            details.append({"field": wire, "message": f"{wire} must be a string"})
            continue
        value = raw.strip()
        if len(value) > max_len:
            details.append({"field": wire, "message": f"{wire} exceeds max length {max_len}"})
            continue
        cleaned[column] = value or None

    email = cleaned.get("customer_email")
    if email and not EMAIL_RE.match(email):
        details.append({"field": "customerEmail", "message": "customerEmail must be a valid email"})

    for wire in ("discount", "tax"):
        raw = payload.get(wire)
        if raw is None:
            cleaned[f"{wire}_cents"] = 0
            continue
        try:
            cents = amount_to_cents(raw, wire)
        except AmountError as e:
            details.append({"field": wire, "message": str(e)})
            continue
        if cents < 0:
            details.append({"field": wire, "message": f"{wire} must be >= 0"})
            continue
        cleaned[f"{wire}_cents"] = cents

    items = payload.get("items")
    lines: list[BasketLine] = []
    if not isinstance(items, list) or not items:
        details.append({"field": "items", "message": "items must contain at least 1 item"})
    else:
        for i, item in enumerate(items):
            prefix = f"items.{i}"
            if not isinstance(item, dict):
                details.append({"field": prefix, "message": f"{prefix} must be an object"})
                continue
            try:
                product_id = _positive_int(item.get("productId"), f"{prefix}.productId")
                quantity = _positive_int(item.get("quantity"), f"{prefix}.quantity")
                price_cents = amount_to_cents(item.get("price"), f"{prefix}.price")
            except (ValidationError, AmountError) as e:
                details.append({"field": prefix, "message": str(e)})
                continue
            if price_cents <= 0:
                details.append({"field": f"{prefix}.price", "message": f"{prefix}.price must be greater than 0"})
                continue
            lines.append(BasketLine(product_id=product_id, quantity=quantity, price_cents=price_cents))

    if details:
        raise ValidationError("Validation Error", details=details)

    cleaned["lines"] = lines
    return cleaned
