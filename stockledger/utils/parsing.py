from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from stockledger.errors import ValidationError


def clean_text(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def require_text(value, *, field: str, label: str | None = None) -> str:
    text = clean_text(value)
    if text is None:
        raise ValidationError(f"{label or field} is required.", field=field)
    return text


def parse_quantity(value, *, field: str, allow_zero: bool = True) -> int:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required.", field=field)
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a whole number.", field=field)
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a whole number.", field=field)
    if not number.is_finite() or number != number.to_integral_value():
        raise ValidationError(f"{field} must be a whole number.", field=field)
    quantity = int(number)
    if quantity < 0 or (quantity == 0 and not allow_zero):
        qualifier = "zero or more" if allow_zero else "greater than zero"
        raise ValidationError(f"{field} must be {qualifier}.", field=field)
    return quantity


def parse_money(value, *, field: str, default: Decimal | None = None) -> Decimal:
    if value is None or (isinstance(value, str) and not value.strip()):
        if default is not None:
            return default
        raise ValidationError(f"{field} is required.", field=field)
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number.", field=field)
    if not number.is_finite() or number < 0:
        raise ValidationError(f"{field} must be zero or more.", field=field)
    return number.quantize(Decimal("0.01"))


def parse_date(value, *, field: str, default: date | None = None) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = clean_text(value)
    if text is None:
        if default is not None:
            return default
        raise ValidationError(f"{field} is required.", field=field)
    try:
        # Accept full ISO timestamps as sent by browser date pickers.
        return datetime.fromisoformat(text[:10]).date()
    except ValueError:
        raise ValidationError(f"Enter {field} in YYYY-MM-DD format.", field=field)


def parse_string_list(value, *, field: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{field} must be a list.", field=field)
    result: list[str] = []
    for entry in value:
        text = clean_text(entry)
        if text and text not in result:
            result.append(text)
    return result


def parse_positive_int(value, *, default: int, maximum: int | None = None) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    if number <= 0:
        return default
    if maximum is not None:
        number = min(number, maximum)
    return number
