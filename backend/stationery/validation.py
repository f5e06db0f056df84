from __future__ import annotations

from typing import Any


# Upper bound for a single cart line; the backend rejects anything larger
# when the order is created.
MAX_LINE_QUANTITY = 9_999


class ValidationError(ValueError):
    """400-level input problem, raised before any state is mutated."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., ordering while the window is closed)."""


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for values coming from JSON payloads.

    - bool is rejected (it is an int subclass)
    - floats are accepted only when integral (2.0 -> 2)
    - strings must be plain digits with an optional leading minus
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be an integer")

    if isinstance(value, int):
        return value

    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{field} must be an integer, not a decimal")
        return int(value)

    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e3")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")

    raise ValidationError(f"{field} must be an integer")


def coerce_quantity(value: Any, *, minimum: int = 1, field: str = "qty") -> int:
    """
    Coerce a requested quantity and clamp it to [minimum, MAX_LINE_QUANTITY].

    Non-numeric input is a validation error; numeric input below the minimum
    is clamped, never rejected.
    """
    qty = coerce_int(value, field)
    if qty < minimum:
        return minimum
    if qty > MAX_LINE_QUANTITY:
        raise ValidationError(f"{field} cannot exceed {MAX_LINE_QUANTITY}")
    return qty


def require_product(product: Any) -> dict:
    """
    Validate a product reference and return a normalized copy.

    Only `id` is required; display fields (name, unit, image) are kept as-is
    so the cart can render without another backend round-trip.
    """
    if not isinstance(product, dict):
        raise ValidationError("product must be an object")
    if product.get("id") is None:
        raise ValidationError("product.id is required")
    normalized = dict(product)
    normalized["id"] = coerce_int(product["id"], "product.id")
    return normalized


def is_valid_cart_entry(entry: Any) -> bool:
    """Shape check used when reading the persisted cart."""
    if not isinstance(entry, dict):
        return False
    product = entry.get("product")
    if not isinstance(product, dict) or product.get("id") is None:
        return False
    qty = entry.get("qty")
    if isinstance(qty, bool) or not isinstance(qty, (int, float)):
        return False
    # NaN and infinities are not integral either
    return not isinstance(qty, float) or qty.is_integer()


def require_json_object(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def require_text(value: Any, field: str, *, max_length: int | None = None) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text
