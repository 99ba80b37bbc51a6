from __future__ import annotations
from datetime import datetime
from checkout_tracker.time_utils import parse_iso_datetime, normalize_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import JSON, Boolean, Integer, String, Text, DateTime

from .errors import ValidationError


# $9,999,999.99
MAX_PRICE_CENTS = 999_999_999

MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _field_error(field: str, message: str) -> ValidationError:
    return ValidationError(message, errors=[{"field": field, "message": message}])


def _columns_by_key(model) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """Strict integer: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise _field_error(field, f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise _field_error(field, f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise _field_error(field, f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise _field_error(field, f"{field} must be an integer")
    if isinstance(value, float):
        raise _field_error(field, f"{field} must be an integer, not a decimal")
    raise _field_error(field, f"{field} must be an integer")


def coerce_datetime(value: Any, field: str) -> datetime:
    """ISO-8601 string or datetime, normalized to UTC-naive."""
    if isinstance(value, datetime):
        return normalize_datetime(value)
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise _field_error(field, f"{field} must be an ISO-8601 datetime")
        if dt is None:
            raise _field_error(field, f"{field} must be an ISO-8601 datetime")
        return dt
    raise _field_error(field, f"{field} must be an ISO-8601 datetime")


def coerce_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "false", "1", "0"}:
        return value.strip().lower() in {"true", "1"}
    raise _field_error(field, f"{field} must be a boolean")


def require_text(value: Any, field: str, *, max_length: int, required: bool = True) -> str | None:
    """Trimmed string; blank counts as missing."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise _field_error(field, f"{field} is required")
        return None
    if not isinstance(value, str):
        raise _field_error(field, f"{field} must be a string")
    text = value.strip()
    if len(text) > max_length:
        raise _field_error(field, f"{field} cannot exceed {max_length} characters")
    return text


def require_choice(value: Any, field: str, choices, *, default=None):
    if value is None:
        if default is None:
            raise _field_error(field, f"{field} is required")
        return default
    if value not in choices:
        raise _field_error(field, f"{field} must be one of: {', '.join(choices)}")
    return value


def parse_pagination(args, *, default_limit: int = 20) -> tuple[int, int]:
    """(page, limit) from query args; page >= 1, 1 <= limit <= 100."""
    page = coerce_int(args.get("page", 1), "page")
    limit = coerce_int(args.get("limit", default_limit), "limit")
    if page < 1:
        raise _field_error("page", "page must be a positive integer")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise _field_error("limit", f"limit must be between 1 and {MAX_PAGE_SIZE}")
    return page, limit


def pagination_dict(page: int, limit: int, total: int) -> dict:
    return {
        "current_page": page,
        "total_pages": (total + limit - 1) // limit,
        "total_items": total,
        "items_per_page": limit,
    }


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        return coerce_bool(value, col.key)

    if isinstance(coltype, DateTime):
        return coerce_datetime(value, col.key)

    if isinstance(coltype, (String, Text)):
        if isinstance(value, (dict, list)):
            raise _field_error(col.key, f"{col.key} must be a string")
        return str(value).strip()

    if isinstance(coltype, JSON):
        return value

    return value


def validate_payload(
    *,
    model,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                errors=[{"field": f, "message": "is required"} for f in missing],
            )

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise _field_error(k, f"Field not allowed: {k}")
        if k not in cols:
            raise _field_error(k, f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise _field_error(k, f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise _field_error(k, f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise _field_error(k, f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_item(patch: dict) -> None:
    """Item rules not captured by column metadata."""
    from .models.items import ITEM_STATUSES, ITEM_UNITS

    for key in ("total_quantity", "available_quantity"):
        if key in patch and patch[key] is not None and patch[key] < 0:
            raise _field_error(key, f"{key} must be >= 0")

    for key in ("cost_cents", "value_cents"):
        if key in patch and patch[key] is not None:
            if patch[key] < 0:
                raise _field_error(key, f"{key} must be >= 0")
            if patch[key] > MAX_PRICE_CENTS:
                raise _field_error(key, f"{key} cannot exceed {MAX_PRICE_CENTS}")

    if "max_checkout_days" in patch and patch["max_checkout_days"] is not None:
        if patch["max_checkout_days"] < 1:
            raise _field_error("max_checkout_days", "max_checkout_days must be at least 1")

    if "status" in patch and patch["status"] not in ITEM_STATUSES:
        raise _field_error("status", f"status must be one of: {', '.join(ITEM_STATUSES)}")

    if "unit" in patch and patch["unit"] not in ITEM_UNITS:
        raise _field_error("unit", f"unit must be one of: {', '.join(ITEM_UNITS)}")

    if "tags" in patch and patch["tags"] is not None:
        tags = patch["tags"]
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise _field_error("tags", "tags must be a list of strings")
        patch["tags"] = [t.strip() for t in tags if t.strip()]

    if patch.get("sku"):
        patch["sku"] = patch["sku"].upper()
