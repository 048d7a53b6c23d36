# settlements.py
"""
Daily cash settlement.

Expected cash is the cash part of the day's billable readings. The manager counts
the drawer, variance = actual - expected, and a shortfall (negative variance) is
split across the employees who entered readings that day in proportion to how many
readings each of them entered.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from errors import NotFoundError, ValidationError
from models import EmployeeShortfall, Settlement
from readings import is_billable
from utils import (gen_id, now_iso, optional_amount, parse_amount, parse_business_date, parse_date_range,
                   round_money, safe_div)

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    settlement: Settlement
    already_settled: bool
    warnings: List[str] = field(default_factory=list)


def _require_station(repo, station_id: str) -> Dict:
    station = repo.get_station(station_id)
    if not station:
        raise NotFoundError(f"Station '{station_id}' not found")
    return station


def compute_expected(repo, station_id: str, on_date: Any, tz_name: str = "UTC") -> Dict[str, Any]:
    _require_station(repo, station_id)
    day = parse_business_date(on_date, tz_name)

    rows = [r for r in repo.readings_on(station_id, day) if is_billable(r)]

    cash = online = credit = 0.0
    by_employee: Dict[str, Dict[str, Any]] = {}
    for r in rows:
        cash += float(r["cash_amount"] or 0)
        online += float(r["online_amount"] or 0)
        credit += float(r["credit_amount"] or 0)

        emp = by_employee.setdefault(r["employee_id"], {
            "employeeId": r["employee_id"],
            "employeeName": r.get("employee_name") or "",
            "readingCount": 0,
            "cash": 0.0,
        })
        emp["readingCount"] += 1
        emp["cash"] += float(r["cash_amount"] or 0)

    breakdown = sorted(by_employee.values(), key=lambda e: e["employeeId"])
    for e in breakdown:
        e["cash"] = round_money(e["cash"])

    return {
        "date": day,
        "stationId": station_id,
        "expectedCash": round_money(cash),
        "employeeCash": round_money(cash),
        "employeeOnline": round_money(online),
        "employeeCredit": round_money(credit),
        "readingsCount": len(rows),
        "breakdownByEmployee": breakdown,
    }


def apportion_shortfall(variance: float, breakdown: List[Dict[str, Any]]) -> List[EmployeeShortfall]:
    """
    Split |variance| across employees by reading count (one reading = one share).

    Only a negative variance is apportioned. Shares are worked in whole paise:
    each employee gets the floor of their exact share, then the leftover paise go
    one at a time to the largest fractional remainders (ties by employee id).
    Every share is >= 0 and the shares add up to |variance| exactly. Employees
    whose share comes to zero paise get no row.
    """
    if variance >= 0 or not breakdown:
        return []

    total_paise = int(round(abs(variance) * 100))
    counted = [e for e in breakdown if int(e["readingCount"]) > 0]
    total_count = sum(int(e["readingCount"]) for e in counted)
    if total_count == 0 or total_paise == 0:
        return []

    paise: Dict[str, int] = {}
    remainders = []
    for e in counted:
        share = total_paise * int(e["readingCount"])
        paise[e["employeeId"]] = share // total_count
        remainders.append((-(share % total_count), e["employeeId"]))

    leftover = total_paise - sum(paise.values())
    for _, employee_id in sorted(remainders)[:leftover]:
        paise[employee_id] += 1

    return [
        EmployeeShortfall(
            employee_id=e["employeeId"],
            employee_name=e.get("employeeName") or "",
            shortfall_amount=round_money(paise[e["employeeId"]] / 100),
            reading_count=int(e["readingCount"]),
        )
        for e in sorted(counted, key=lambda e: e["employeeId"])
        if paise[e["employeeId"]] > 0
    ]


def _tolerance_warning(label: str, reported: float, confirmed: float, tolerance_pct: float) -> Optional[str]:
    if reported <= 0:
        return None
    pct = abs(confirmed - reported) / reported * 100
    if pct > tolerance_pct:
        return (f"{label} variance {pct:.2f}% exceeds {tolerance_pct:g}% tolerance. "
                f"Reported: {reported:.2f}, Confirmed: {confirmed:.2f}")
    return None


def record_settlement(repo, station_id: str, on_date: Any, actual_cash: Any,
                      notes: str = "",
                      online: Any = None,
                      credit: Any = None,
                      recorded_by: Optional[str] = None,
                      tz_name: str = "UTC",
                      tolerance_pct: float = 5.0) -> SettlementResult:
    """
    Reconcile one station-day and upsert its settlement.

    Re-recording the same (station, date) replaces the previous figures and shortfall
    rows; the result says whether the day had already been settled.
    """
    _require_station(repo, station_id)
    day = parse_business_date(on_date, tz_name)
    actual = round_money(parse_amount(actual_cash, "actualCash"))
    confirmed_online = optional_amount(online, "online")
    confirmed_credit = optional_amount(credit, "credit")

    with repo.transaction():
        expected = compute_expected(repo, station_id, day, tz_name)

        variance = round_money(actual - expected["expectedCash"])
        shortfalls = apportion_shortfall(variance, expected["breakdownByEmployee"])

        confirmed_online = expected["employeeOnline"] if confirmed_online is None else round_money(confirmed_online)
        confirmed_credit = expected["employeeCredit"] if confirmed_credit is None else round_money(confirmed_credit)

        now = now_iso()
        row = {
            "id": gen_id("ST"),
            "station_id": station_id,
            "date": day,
            "expected_cash": expected["expectedCash"],
            "actual_cash": actual,
            "variance": variance,
            "employee_cash": expected["employeeCash"],
            "employee_online": expected["employeeOnline"],
            "employee_credit": expected["employeeCredit"],
            "online": confirmed_online,
            "credit": confirmed_credit,
            "variance_online": round_money(confirmed_online - expected["employeeOnline"]),
            "variance_credit": round_money(confirmed_credit - expected["employeeCredit"]),
            "readings_count": expected["readingsCount"],
            "notes": (notes or "").strip(),
            "recorded_by": recorded_by,
            "recorded_at": now,
            "created_at": now,
            "updated_at": now,
        }
        already = repo.upsert_settlement(row, [
            {
                "employee_id": s.employee_id,
                "employee_name": s.employee_name,
                "shortfall_amount": s.shortfall_amount,
                "reading_count": s.reading_count,
            }
            for s in shortfalls
        ])
        settlement = get_settlement(repo, station_id, day, tz_name)

    warnings = [w for w in (
        _tolerance_warning("Online", expected["employeeOnline"], confirmed_online, tolerance_pct),
        _tolerance_warning("Credit", expected["employeeCredit"], confirmed_credit, tolerance_pct),
    ) if w]

    if variance < 0:
        logger.warning("Settlement %s %s: shortfall %.2f across %d employee(s)",
                       station_id, day, abs(variance), len(shortfalls))
    logger.info("Settlement %s for %s %s: expected=%.2f actual=%.2f variance=%.2f",
                "updated" if already else "recorded", station_id, day, expected["expectedCash"], actual, variance)
    return SettlementResult(settlement=settlement, already_settled=already, warnings=warnings)


def get_settlement(repo, station_id: str, on_date: Any, tz_name: str = "UTC") -> Settlement:
    day = parse_business_date(on_date, tz_name)
    row = repo.get_settlement(station_id, day)
    if not row:
        raise NotFoundError(f"No settlement recorded for station '{station_id}' on {day}")
    return Settlement.from_row(row, repo.get_shortfalls(row["id"]))


def list_settlements(repo, station_id: str, start_date: Any = None, end_date: Any = None,
                     limit: Any = None, tz_name: str = "UTC") -> List[Settlement]:
    _require_station(repo, station_id)
    start = parse_business_date(start_date, tz_name, field="startDate") if start_date else None
    end = parse_business_date(end_date, tz_name, field="endDate") if end_date else None
    if start and end and start > end:
        raise ValidationError(f"startDate ({start}) must not be after endDate ({end})", kind="invalid_range")
    if limit not in (None, ""):
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            raise ValidationError("limit must be an integer", kind="invalid_pagination")
        if limit < 1:
            raise ValidationError("limit must be >= 1", kind="invalid_pagination")
    else:
        limit = None

    rows = repo.list_settlements(station_id, start, end, limit)
    return [Settlement.from_row(r, repo.get_shortfalls(r["id"])) for r in rows]


def _interpret(variance: float) -> str:
    if variance < 0:
        return "Shortfall"
    if variance > 0:
        return "Overage"
    return "Perfect match"


def variance_summary(repo, station_id: str, start_date: Any, end_date: Any,
                     tz_name: str = "UTC",
                     review_pct: float = 1.0,
                     investigate_pct: float = 3.0) -> Dict[str, Any]:
    _require_station(repo, station_id)
    start, end = parse_date_range(start_date, end_date, tz_name)
    rows = sorted(repo.list_settlements(station_id, start, end), key=lambda r: r["date"])

    if not rows:
        return {
            "periodStart": start,
            "periodEnd": end,
            "settlementCount": 0,
            "totalVariance": 0.0,
            "avgDailyVariance": 0.0,
            "totalExpectedCash": 0.0,
            "variancePercentage": 0.0,
            "byDay": [],
            "summary": {"status": "NO_DATA", "message": "No settlements recorded"},
        }

    by_day = []
    total_variance = total_expected = 0.0
    for r in rows:
        variance = float(r["variance"])
        expected = float(r["expected_cash"])
        total_variance += variance
        total_expected += expected
        by_day.append({
            "date": r["date"],
            "expectedCash": expected,
            "actualCash": float(r["actual_cash"]),
            "variance": variance,
            "variancePercentage": round(safe_div(variance, expected) * 100, 2),
        })

    pct = round(safe_div(total_variance, total_expected) * 100, 2)
    if abs(pct) > investigate_pct:
        status = "INVESTIGATE"
    elif abs(pct) > review_pct:
        status = "REVIEW"
    else:
        status = "HEALTHY"

    return {
        "periodStart": start,
        "periodEnd": end,
        "settlementCount": len(rows),
        "totalVariance": round_money(total_variance),
        "avgDailyVariance": round_money(total_variance / len(rows)),
        "totalExpectedCash": round_money(total_expected),
        "variancePercentage": pct,
        "byDay": by_day,
        "summary": {
            "status": status,
            "interpretation": _interpret(round_money(total_variance)),
            "message": (f"Variance is {abs(pct):.2f}% (acceptable)" if status == "HEALTHY"
                        else f"{status} variance - {abs(pct):.2f}%"),
        },
    }
