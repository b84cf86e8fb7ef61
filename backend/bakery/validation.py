from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from sqlalchemy import Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .time_utils import parse_iso_datetime

# Maximum money amount: 99,999,999.99 (fits Numeric(10, 2))
MAX_MONEY = Decimal("99999999.99")
CENT = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """
    Strict integer parsing.

    Rejects booleans, floats, decimals in strings and scientific notation.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", field=field)
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)", field=field)
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field=field)
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field=field)
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field=field)
    else:
        raise ValidationError(f"{field} must be an integer", field=field)

    if minimum is not None and result < minimum:
        if minimum == 1:
            raise ValidationError(f"{field} must be greater than 0", field=field)
        raise ValidationError(f"{field} must be at least {minimum}", field=field)
    return result


def parse_money(value: Any, field: str) -> Decimal:
    """Non-negative decimal amount rounded half-up to cents."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        # floats go through str() so 0.1 stays 0.1
        amount = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", field=field)
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number", field=field)
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)
    if amount > MAX_MONEY:
        raise ValidationError(f"{field} exceeds the maximum of {MAX_MONEY}", field=field)
    return quantize_money(amount)


def require_choice(value: Any, field: str, choices) -> str:
    if not isinstance(value, str) or value.strip().lower() not in choices:
        raise ValidationError(
            f"{field} must be one of: {', '.join(choices)}",
            field=field,
            details={"allowed": list(choices)},
        )
    return value.strip().lower()


def optional_text(value: Any, field: str, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}", field=field)
    return text


def parse_date_filter(value: Any, field: str) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date", field=field)


@dataclass(frozen=True)
class Page:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def meta(self, total_records: int) -> dict:
        total_pages = -(-total_records // self.limit) if total_records else 0
        return {
            "current_page": self.page,
            "total_pages": total_pages,
            "total_records": total_records,
            "per_page": self.limit,
            "has_next": self.page < total_pages,
            "has_prev": self.page > 1,
        }


def parse_page(page: Any, limit: Any, *, default_limit: int = 10, max_limit: int = 100) -> Page:
    """Clamp page >= 1 and 1 <= limit <= max_limit; garbage falls back to defaults."""
    def _as_int(raw, fallback):
        try:
            return int(raw)
        except (TypeError, ValueError):
            return fallback

    page_num = max(1, _as_int(page, 1))
    size = min(max(1, _as_int(limit, default_limit)), max_limit)
    return Page(page=page_num, limit=size)


def parse_sort(sort: Any, order: Any, allowed: dict, *, default: str, default_order: str = "desc"):
    """
    Map a client sort key onto an allow-listed column.

    Unknown keys fall back to the default. Returns (key, order, column).
    """
    key = sort if isinstance(sort, str) and sort in allowed else default
    direction = str(order or default_order).lower()
    if direction not in ("asc", "desc"):
        direction = default_order
    return key, direction, allowed[key]


@dataclass(frozen=True)
class ModelValidationPolicy:
    """writable_fields: what clients are allowed to set (security boundary)."""
    writable_fields: set[str]


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    if value is None:
        return None

    if isinstance(col.type, Numeric):
        return parse_money(value, col.key)

    if isinstance(col.type, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
) -> dict:
    """
    Validates + normalizes an incoming partial update against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", field=k)
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", field=k)

    cleaned: dict[str, Any] = {}
    for k, v in payload.items():
        col = cols[k]
        if v is None and not col.nullable:
            raise ValidationError(f"{k} cannot be null", field=k)

        coerced = _coerce_value(col, v)

        if isinstance(col.type, String) and coerced is not None:
            max_len = getattr(col.type, "length", None)
            if max_len is not None and len(coerced) > max_len:
                raise ValidationError(f"{k} exceeds max length {max_len}", field=k)

        cleaned[k] = coerced

    return cleaned
