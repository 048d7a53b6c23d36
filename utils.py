# utils.py
import re
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

import pytz

from errors import ValidationError

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_MONTH = re.compile(r"^\d{4}-\d{2}$")


def gen_id(prefix: str) -> str:
    # e.g. RD-3f9a1c0b2d4e
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def now_iso() -> str:
    # UTC, seconds precision
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def today_local(tz_name: str) -> str:
    return datetime.now(pytz.timezone(tz_name)).date().isoformat()


def parse_business_date(value: Any, tz_name: str, field: str = "date") -> str:
    """
    Normalize a date-ish value to a 'YYYY-MM-DD' calendar date.

    Rules:
      - 'YYYY-MM-DD' strings and date objects are taken as-is.
      - Naive timestamps keep their own date part ('2026-01-26T00:00:00' -> 2026-01-26).
      - Timestamps WITH an offset are converted to the station zone first, then dated.
    Anything else raises ValidationError.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required", kind="invalid_date")

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        return value.isoformat()
    else:
        s = str(value).strip()
        if _DATE_ONLY.match(s):
            try:
                return date.fromisoformat(s).isoformat()
            except ValueError:
                raise ValidationError(f"{field} '{s}' is not a valid calendar date", kind="invalid_date")
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            raise ValidationError(f"{field} must be YYYY-MM-DD or an ISO timestamp, got '{value}'",
                                  kind="invalid_date")

    if dt.tzinfo is not None:
        dt = dt.astimezone(pytz.timezone(tz_name))
    return dt.date().isoformat()


def parse_date_range(start: Any, end: Any, tz_name: str):
    """Both ends required and ordered; returns (start, end) as 'YYYY-MM-DD'."""
    s = parse_business_date(start, tz_name, field="startDate")
    e = parse_business_date(end, tz_name, field="endDate")
    if s > e:
        raise ValidationError(f"startDate ({s}) must not be after endDate ({e})", kind="invalid_range")
    return s, e


def month_range(month: Any):
    """'YYYY-MM' -> (first day, last day) as 'YYYY-MM-DD'."""
    s = str(month or "").strip()
    if not _MONTH.match(s):
        raise ValidationError(f"month must be YYYY-MM, got '{month}'", kind="invalid_date")
    year, mon = int(s[:4]), int(s[5:])
    if not 1 <= mon <= 12:
        raise ValidationError(f"month '{s}' is not a valid calendar month", kind="invalid_date")
    first = date(year, mon, 1)
    last = date(year + (mon == 12), mon % 12 + 1, 1) - timedelta(days=1)
    return first.isoformat(), last.isoformat()


def parse_amount(value: Any, field: str, allow_negative: bool = False) -> float:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required", kind="invalid_amount")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", kind="invalid_amount")
    try:
        v = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", kind="invalid_amount")
    if v != v or v in (float("inf"), float("-inf")):
        raise ValidationError(f"{field} must be a finite number", kind="invalid_amount")
    if v < 0 and not allow_negative:
        raise ValidationError(f"{field} cannot be negative", kind="invalid_amount")
    return v


_TRUE = ("true", "1", "t", "yes")
_FALSE = ("false", "0", "f", "no", "")


def parse_flag(value: Any, field: str) -> bool:
    """JSON bools, 0/1, or the same true/false strings the env settings accept."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        s = value.strip().lower()
        if s in _TRUE:
            return True
        if s in _FALSE:
            return False
    raise ValidationError(f"{field} must be true or false", kind="invalid_flag")


def optional_amount(value: Any, field: str) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_amount(value, field)


def round_money(v: float) -> float:
    # + 0.0 folds -0.0 into 0.0
    return round(float(v), 2) + 0.0


def round_litres(v: float) -> float:
    return round(float(v), 3) + 0.0


def safe_div(n: float, d: float) -> float:
    return float(n) / float(d) if d else 0.0
