from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .money import to_money
from .time_utils import parse_iso_date


# Largest money amount accepted on input: 9,999,999,999,999.99 fits Numeric(15, 2)
MAX_MONEY = Decimal("9999999999999.99")

# Integer columns are 32-bit
MIN_INT = -(2 ** 31)
MAX_INT = 2 ** 31 - 1


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _check_int_range(key: str, value: int) -> int:
    if value < MIN_INT or value > MAX_INT:
        raise ValidationError(f"{key} is out of range")
    return value


def coerce_int(key: str, value: Any) -> int:
    """Strict integer coercion: rejects bools, floats, decimals, scientific notation and out-of-range values."""
    if isinstance(value, int) and not isinstance(value, bool):
        return _check_int_range(key, value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            parsed = int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
        return _check_int_range(key, parsed)
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def coerce_money(key: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number")
    try:
        amount = to_money(value)
    except ValueError:
        raise ValidationError(f"{key} must be a number")
    if amount < 0:
        raise ValidationError(f"{key} must be >= 0")
    if amount > MAX_MONEY:
        raise ValidationError(f"{key} cannot exceed {MAX_MONEY}")
    return amount


def coerce_date(key: str, value: Any) -> date:
    try:
        parsed = parse_iso_date(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a date (YYYY-MM-DD)")
    if parsed is None:
        raise ValidationError(f"{key} must be a date (YYYY-MM-DD)")
    return parsed


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

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
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) is None)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def require_items(payload: dict, key: str = "items") -> list[dict]:
    items = payload.get(key)
    if not isinstance(items, list) or not items:
        raise ValidationError(f"{key} must be a non-empty list")
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError(f"each entry of {key} must be an object")
    return items


def enforce_rules_inventory_settings(
    patch: dict,
    *,
    current_minimum: int | None = None,
    current_maximum: int | None = None,
) -> None:
    """minimum_stock >= 0; maximum_stock null or >= minimum_stock."""
    minimum = patch["minimum_stock"] if "minimum_stock" in patch else current_minimum
    if minimum is not None and minimum < 0:
        raise ValidationError("minimum_stock must be >= 0")

    maximum = patch["maximum_stock"] if "maximum_stock" in patch else current_maximum
    if maximum is not None:
        if maximum < 0:
            raise ValidationError("maximum_stock must be >= 0")
        if minimum is not None and maximum < minimum:
            raise ValidationError("maximum_stock must be >= minimum_stock")
