from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from stockflow.time_utils import parse_iso_datetime

from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from stockflow.errors import ValidationError, ConflictError  # noqa: F401


# Maximum money amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_MONEY_CENTS = 999_999_999

# Percentages are stored as basis points (12.5% -> 1250)
MAX_PERCENT_BPS = 10_000

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - money_fields: wire name -> *_cents column (decimal in, integer cents stored)
    - percent_fields: wire name -> *_bps column (percent in, basis points stored)
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)
    money_fields: dict[str, str] = field(default_factory=dict)
    percent_fields: dict[str, str] = field(default_factory=dict)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def parse_int(value: Any, field_name: str, *, minimum: int | None = None) -> int:
    """Strict integer parsing: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field_name} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field_name} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field_name} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field_name} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field_name} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field_name} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field_name} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field_name} must be >= {minimum}")
    return result


def parse_optional_int(value: Any, field_name: str, *, minimum: int | None = None) -> int | None:
    if value is None or value == "":
        return None
    return parse_int(value, field_name, minimum=minimum)


def _to_decimal(value: Any, field_name: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field_name} must be a number")
    try:
        # str() keeps floats like 0.1 from dragging binary noise along
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be a finite number")
    return amount


def parse_money(value: Any, field_name: str) -> int:
    """Decimal amount with at most 2 places -> non-negative integer cents."""
    amount = _to_decimal(value, field_name)
    if amount != amount.quantize(_CENT):
        raise ValidationError(f"{field_name} must have at most 2 decimal places")
    if amount < 0:
        raise ValidationError(f"{field_name} must be >= 0")
    cents = int(amount * 100)
    if cents > MAX_MONEY_CENTS:
        raise ValidationError(f"{field_name} cannot exceed {MAX_MONEY_CENTS / 100:,.2f}")
    return cents


def parse_percent(value: Any, field_name: str) -> int:
    """Percentage 0-100 with at most 2 places -> basis points."""
    amount = _to_decimal(value, field_name)
    if amount != amount.quantize(_CENT):
        raise ValidationError(f"{field_name} must have at most 2 decimal places")
    bps = int(amount * 100)
    if bps < 0 or bps > MAX_PERCENT_BPS:
        raise ValidationError(f"{field_name} must be between 0 and 100")
    return bps


def cents_to_money(cents: int | None) -> float | None:
    if cents is None:
        return None
    return float(Decimal(cents) / 100)


def bps_to_percent(bps: int | None) -> float | None:
    if bps is None:
        return None
    return float(Decimal(bps) / 100)


def percent_of(amount_cents: int, bps: int) -> int:
    """Round-half-up share of an amount in cents."""
    share = (Decimal(amount_cents) * Decimal(bps) / Decimal(10_000)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(share)


def parse_choice(value: Any, field_name: str, choices: Iterable[str]) -> str:
    allowed = set(choices)
    if not isinstance(value, str) or value not in allowed:
        raise ValidationError(
            f"Invalid {field_name} '{value}'. Must be one of: {', '.join(sorted(allowed))}"
        )
    return value


def parse_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "1", "yes"}:
        return True
    if isinstance(value, str) and value.strip().lower() in {"false", "0", "no", ""}:
        return False
    raise ValidationError(f"{field_name} must be a boolean")


def parse_datetime(value: Any, field_name: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO-8601 datetime")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return parse_int(value, col.key)

    if isinstance(coltype, Boolean):
        return parse_bool(value, col.key)

    if isinstance(coltype, DateTime):
        dt = parse_datetime(value, col.key)
        if dt is None:
            raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
        return dt

    # Strings / Text
    if isinstance(coltype, (String, Text)):
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
    Returns a cleaned patch dict keyed by column name.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)
    patch: dict = {}

    for k, raw in payload.items():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")

        if k in policy.money_fields:
            column_key = policy.money_fields[k]
            patch[column_key] = None if raw is None and cols[column_key].nullable else parse_money(raw, k)
            continue
        if k in policy.percent_fields:
            column_key = policy.percent_fields[k]
            patch[column_key] = None if raw is None and cols[column_key].nullable else parse_percent(raw, k)
            continue

        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch
