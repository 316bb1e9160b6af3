# utils.py
from datetime import datetime, date, timedelta
from decimal import Decimal, InvalidOperation

from errors import ValidationError

# ---------- Date parsing (flexible) ----------
_DATE_FORMATS = [
    "%Y-%m-%d",  # 2024-08-15
    "%m/%d/%Y",  # 8/15/2024
    "%m-%d-%Y",
    "%m/%d/%y",
    "%Y/%m/%d",
    "%m-%d-%y",
]


def _try_excel_serial(s: str):
    try:
        n = int(s)
    except ValueError:
        return None
    # spreadsheet exports send day serials; base 1899-12-30
    if 1 <= n <= 100000:
        return date(1899, 12, 30) + timedelta(days=n)
    return None


def parse_date_any(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value or "").strip()
    try:
        return date.fromisoformat(s)
    except ValueError:
        pass
    d = _try_excel_serial(s)
    if d:
        return d
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unsupported date format: {value!r}")


def require_date(value, field: str) -> date:
    if value is None or value == "":
        raise ValidationError(f"{field} is required")
    try:
        return parse_date_any(value)
    except ValueError:
        raise ValidationError(f"{field} is not a valid date: {value!r}")


# ---------- Payload coercion ----------
def require_fields(data: dict, *names):
    missing = [n for n in names if data.get(n) in (None, "")]
    if missing:
        raise ValidationError("Missing required fields", {"fields": missing})


def parse_id(value, field: str) -> int:
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValidationError(f"{field} must be an integer id")
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer id")
    if n <= 0:
        raise ValidationError(f"{field} must be a positive id")
    return n


def parse_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def parse_choice(enum_cls, value, field: str):
    """Map a raw string onto a member of a closed value set."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"{field} must be one of: {allowed}")


def to_decimal(value, digits: int = 10) -> Decimal | None:
    """Decimal for numeric input; None for blanks and anything unparseable.

    Values that do not fit a NUMERIC(digits, 2) column also count as unparseable.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        d = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not d.is_finite():
        return None
    try:
        d = d.quantize(Decimal("0.01"))
    except InvalidOperation:
        return None
    if abs(d) >= Decimal(10) ** (digits - 2):
        return None
    return d


def non_empty(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True
