from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable

from .errors import ValidationError
from .time_utils import parse_iso_date, parse_iso_datetime


# Maximum line price: NPR 9,999,999.99 (999,999,999 paisa)
MAX_PRICE_PAISA = 999_999_999

# Single-line quantities beyond this are data-entry errors, not orders
MAX_LINE_QUANTITY = 100_000

MIN_RETURN_REASON_LENGTH = 5


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for API payloads.

    Accepts ints (not bools) and plain digit strings with optional leading minus.
    Rejects floats, decimals and scientific notation ("1e3").
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", field=field)
        if "e" in stripped.lower():
            raise ValidationError(
                f"{field} must be a plain integer (scientific notation not allowed)", field=field
            )
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field=field)
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field=field)
    raise ValidationError(f"{field} must be an integer", field=field)


def require_positive_int(value: Any, field: str, *, maximum: int | None = None) -> int:
    number = coerce_int(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be greater than zero", field=field)
    if maximum is not None and number > maximum:
        raise ValidationError(f"{field} must not exceed {maximum}", field=field)
    return number


def optional_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    return coerce_int(value, field)


def require_money(value: Any, field: str, *, allow_zero: bool = True) -> int:
    amount = coerce_int(value, field)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'>= 0' if allow_zero else '> 0'}", field=field)
    if amount > MAX_PRICE_PAISA:
        raise ValidationError(f"{field} exceeds maximum allowed amount", field=field)
    return amount


def clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def require_text(value: Any, field: str, *, min_length: int = 1) -> str:
    text = clean_text(value)
    if text is None or len(text) < min_length:
        if min_length > 1:
            raise ValidationError(f"{field} must be at least {min_length} characters", field=field)
        raise ValidationError(f"{field} is required", field=field)
    return text


def require_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    allowed = set(choices)
    text = clean_text(value)
    if text not in allowed:
        raise ValidationError(
            f"{field} must be one of: {', '.join(sorted(allowed))}", field=field
        )
    return text


def coerce_date(value: Any, field: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return parse_iso_date(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 date", field=field)
    raise ValidationError(f"{field} must be a date", field=field)


def coerce_datetime(value: Any, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime", field=field)
    raise ValidationError(f"{field} must be a datetime", field=field)


def require_items(items: Any, field: str = "items") -> list[dict]:
    """Non-empty list of dicts; element validation is left to the caller."""
    if not isinstance(items, list) or not items:
        raise ValidationError(f"{field} must be a non-empty list", field=field)
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"{field}[{index}] must be an object", field=field)
    return items
