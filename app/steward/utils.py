from __future__ import annotations

import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from flask import request

from app.steward.constants import MAX_PAGE_SIZE
from app.steward.errors import ApiError

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
CENTS = Decimal("0.01")


def normalize_text(value: Any) -> str | None:
    """Strip, drop control characters, and collapse empty strings to None."""
    if value is None:
        return None
    s = _CONTROL_CHARS_RE.sub("", str(value)).strip()
    return s or None


def normalize_email(value: Any) -> str | None:
    s = normalize_text(value)
    return s.lower() if s else None


def is_valid_email(value: str | None) -> bool:
    return bool(value and _EMAIL_RE.match(value))


def parse_iso_date(value: Any) -> date | None:
    """
    Parse YYYY-MM-DD (or a full ISO timestamp). Returns None for empty or invalid input.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(s).date()
    except ValueError:
        return None


def require_iso_date(value: Any, field: str) -> date:
    d = parse_iso_date(value)
    if d is None:
        raise ApiError(f"Invalid {field}. Use YYYY-MM-DD.")
    return d


def parse_amount(value: Any) -> Decimal | None:
    """Parse a currency amount ("$1,234.50" ok). Returns None for empty/invalid."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        if not value.is_finite():
            return None
        return value.quantize(CENTS, rounding=ROUND_HALF_UP)
    s = str(value).strip().replace("$", "").replace(",", "")
    if not s:
        return None
    try:
        d = Decimal(s)
    except InvalidOperation:
        return None
    if not d.is_finite():
        return None
    return d.quantize(CENTS, rounding=ROUND_HALF_UP)


def money(value: Decimal | None) -> str:
    return f"{(value or Decimal('0')).quantize(CENTS, rounding=ROUND_HALF_UP):.2f}"


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "yes", "y", "on")


def parse_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def get_json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ApiError("Request body must be a JSON object.")
    return data


def pagination_args(default_page_size: int = 50) -> tuple[int, int]:
    page = parse_int(request.args.get("page")) or 1
    page_size = parse_int(request.args.get("pageSize")) or default_page_size
    page = max(page, 1)
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
    return page, page_size


def pagination_meta(*, page: int, page_size: int, total: int) -> dict[str, Any]:
    total_pages = (total + page_size - 1) // page_size if total else 0
    return {
        "page": page,
        "pageSize": page_size,
        "total": total,
        "totalPages": total_pages,
        "hasPrev": page > 1,
        "hasNext": page < total_pages,
    }


def iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def to_base36(n: int) -> str:
    chars = "0123456789abcdefghijklmnopqrstuvwxyz"
    if n <= 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(chars[r])
    return "".join(reversed(out))
