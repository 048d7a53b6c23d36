# readings.py
"""
Nozzle reading recorder.

A reading turns a meter value into a sale: litres = meter - previous meter,
valued at the price in effect on the reading date. The price is captured on the
row at write time; reports read it back and never look the price up again.
"""
import logging
import sqlite3
from typing import Any, Dict, List, Optional, Tuple

import price_store
from errors import ConflictError, NotFoundError, ValidationError
from models import PAYMENT_METHODS, NozzleReading, PaymentAllocation
from utils import (gen_id, now_iso, parse_amount, parse_business_date, parse_flag, round_litres,
                   round_money, today_local)

logger = logging.getLogger(__name__)

AMOUNT_EPSILON = 0.01


def parse_payment_allocation(raw: Any, total_amount: float, epsilon: float = AMOUNT_EPSILON) -> PaymentAllocation:
    """
    Validate the cash/online/credit split of a sale.

    None means the whole sale was paid in cash. Otherwise missing methods count as
    zero and the parts must add up to the sale amount; nothing is adjusted to fit.
    """
    if raw is None:
        return PaymentAllocation(cash=total_amount)
    if not isinstance(raw, dict):
        raise ValidationError("paymentAllocation must be an object of {cash, online, credit}",
                              kind="invalid_payment")

    unknown = sorted(set(raw) - set(PAYMENT_METHODS))
    if unknown:
        raise ValidationError(f"Unknown payment method(s): {', '.join(unknown)}", kind="invalid_payment")

    parts = {}
    for method in PAYMENT_METHODS:
        value = raw.get(method)
        parts[method] = round_money(parse_amount(value, f"paymentAllocation.{method}")) if value is not None else 0.0

    alloc = PaymentAllocation(**parts)
    # 1e-9 absorbs float noise so a split exactly epsilon off still passes
    if abs(alloc.total - total_amount) > epsilon + 1e-9:
        raise ValidationError(
            f"Cash ({alloc.cash:.2f}) + Online ({alloc.online:.2f}) + Credit ({alloc.credit:.2f}) "
            f"must equal Total ({total_amount:.2f})",
            kind="payment_mismatch",
            details={"expected": total_amount, "received": round_money(alloc.total)},
        )
    return alloc


def is_billable(row: Dict) -> bool:
    """Sample rows never count; an initial reading counts only if it carries litres."""
    if row["is_sample"]:
        return False
    return not row["is_initial_reading"] or float(row["litres_sold"] or 0) > 0


def _load_nozzle(repo, nozzle_id: str) -> Dict:
    nozzle = repo.get_nozzle(nozzle_id) if nozzle_id else None
    if not nozzle:
        raise NotFoundError(f"Nozzle '{nozzle_id}' not found")
    return nozzle


def record_reading(repo, *, nozzle_id: str, meter_value: Any, reading_date: Any,
                   employee_id: str,
                   payment_allocation: Any = None,
                   is_sample: Any = False,
                   notes: str = "",
                   tz_name: str = "UTC",
                   epsilon: float = AMOUNT_EPSILON) -> NozzleReading:
    for field, value in (("nozzleId", nozzle_id), ("employeeId", employee_id)):
        if not str(value or "").strip():
            raise ValidationError(f"{field} is required", kind="missing_field")
    sample = parse_flag(is_sample, "isSample")

    nozzle = _load_nozzle(repo, nozzle_id)
    if nozzle["status"] != "active":
        raise ValidationError(f"Nozzle is {nozzle['status']}. Cannot enter reading.", kind="nozzle_inactive")

    employee = repo.get_employee(employee_id) if employee_id else None
    if not employee:
        raise NotFoundError(f"Employee '{employee_id}' not found")
    if employee["station_id"] != nozzle["station_id"]:
        raise ValidationError("Employee does not belong to this nozzle's station", kind="employee_station_mismatch")

    current = parse_amount(meter_value, "meterValue")
    on_date = parse_business_date(reading_date, tz_name, field="readingDate")

    # Previous meter lookup, price resolution and insert happen in one transaction
    with repo.transaction():
        latest = repo.latest_reading(nozzle["id"])
        if latest and latest["reading_date"] == on_date:
            raise ConflictError(
                f"A reading for this nozzle on {on_date} already exists",
                kind="duplicate_reading",
                details={"readingId": latest["id"]},
            )
        if latest and latest["reading_date"] > on_date:
            raise ValidationError(
                f"Latest reading for this nozzle is dated {latest['reading_date']}; "
                f"cannot enter an earlier reading for {on_date}",
                kind="out_of_order",
            )

        is_initial = latest is None
        previous = float(latest["meter_value"]) if latest else float(nozzle["initial_reading"] or 0)

        litres = round_litres(current - previous)
        if litres < 0:
            raise ValidationError(
                f"Reading must be >= previous reading ({previous:g}). Meter readings only go forward.",
                kind="negative_litres",
                details={"previousMeterValue": previous},
            )

        price = price_store.resolve_price(repo, nozzle["station_id"], nozzle["fuel_type"], on_date)
        total = round_money(litres * price)
        allocation = parse_payment_allocation(payment_allocation, total, epsilon)

        reading = NozzleReading(
            id=gen_id("RD"),
            nozzle_id=nozzle["id"],
            station_id=nozzle["station_id"],
            fuel_type=nozzle["fuel_type"],
            employee_id=employee["id"],
            reading_date=on_date,
            meter_value=current,
            previous_meter_value=previous,
            litres_sold=litres,
            price_per_litre=price,
            total_amount=total,
            payment=allocation,
            is_sample=sample,
            is_initial_reading=is_initial,
            notes=(notes or "").strip(),
            created_at=now_iso(),
        )
        try:
            repo.insert_reading(reading.to_row())
        except sqlite3.IntegrityError:
            raise ConflictError(f"A reading for this nozzle on {on_date} already exists", kind="duplicate_reading")

    logger.info("Reading %s: nozzle=%s date=%s litres=%.3f price=%.2f total=%.2f",
                reading.id, reading.nozzle_id, on_date, litres, price, total)
    return reading


def get_reading(repo, reading_id: str) -> NozzleReading:
    row = repo.get_reading(reading_id)
    if not row:
        raise NotFoundError(f"Reading '{reading_id}' not found")
    return NozzleReading.from_row(row)


def previous_reading(repo, nozzle_id: str, before_date: Any = None, tz_name: str = "UTC") -> Dict[str, Any]:
    """What the operator sees before entering a meter value: last meter and today's price."""
    nozzle = _load_nozzle(repo, nozzle_id)
    if before_date not in (None, ""):
        on_date = parse_business_date(before_date, tz_name)
        prev = repo.reading_before(nozzle["id"], on_date)
    else:
        on_date = today_local(tz_name)
        prev = repo.latest_reading(nozzle["id"])

    price = price_store.find_price(repo, nozzle["station_id"], nozzle["fuel_type"], on_date)
    return {
        "nozzle": {
            "id": nozzle["id"],
            "number": nozzle["nozzle_number"],
            "fuelType": nozzle["fuel_type"],
            "status": nozzle["status"],
            "initialReading": float(nozzle["initial_reading"] or 0),
        },
        "previousReading": float(prev["meter_value"]) if prev else float(nozzle["initial_reading"] or 0),
        "previousDate": prev["reading_date"] if prev else None,
        "currentPrice": price.price if price else None,
        "priceDate": on_date,
        "hasReadings": prev is not None,
    }


def list_readings(repo, *, station_id: Optional[str] = None, nozzle_id: Optional[str] = None,
                  start_date: Any = None, end_date: Any = None,
                  page: Any = 1, limit: Any = 50, max_limit: int = 500,
                  tz_name: str = "UTC") -> Tuple[List[NozzleReading], Dict[str, int]]:
    try:
        page = int(page or 1)
        limit = int(limit or 50)
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers", kind="invalid_pagination")
    if page < 1 or limit < 1 or limit > max_limit:
        raise ValidationError(f"page must be >= 1 and 1 <= limit <= {max_limit}", kind="invalid_pagination")

    station_ids = None
    if station_id:
        if not repo.get_station(station_id):
            raise NotFoundError(f"Station '{station_id}' not found")
        station_ids = [station_id]

    start = parse_business_date(start_date, tz_name, field="startDate") if start_date else None
    end = parse_business_date(end_date, tz_name, field="endDate") if end_date else None
    if start and end and start > end:
        raise ValidationError(f"startDate ({start}) must not be after endDate ({end})", kind="invalid_range")

    rows, total = repo.list_readings(station_ids, nozzle_id, start, end, limit=limit, offset=(page - 1) * limit)
    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": (total + limit - 1) // limit,
    }
    return [NozzleReading.from_row(r) for r in rows], pagination
