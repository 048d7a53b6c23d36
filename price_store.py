# price_store.py
import logging
import sqlite3
from typing import Any, Dict, List, Optional

from errors import ConflictError, NotFoundError, ValidationError
from models import FUEL_TYPES, FuelPrice
from utils import now_iso, parse_amount, parse_business_date, today_local

logger = logging.getLogger(__name__)

DEFAULT_MAX_PRICE = 500.0


def _require_station(repo, station_id: str) -> Dict[str, Any]:
    station = repo.get_station(station_id)
    if not station:
        raise NotFoundError(f"Station '{station_id}' not found")
    return station


def _require_fuel_type(fuel_type: str) -> str:
    ft = (fuel_type or "").strip().lower()
    if ft not in FUEL_TYPES:
        raise ValidationError(
            f"fuelType must be one of: {', '.join(FUEL_TYPES)}",
            kind="invalid_fuel_type",
        )
    return ft


def set_price(repo, station_id: str, fuel_type: str, price: Any,
              effective_from: Any = None,
              cost_price: Any = None,
              updated_by: Optional[str] = None,
              tz_name: str = "UTC",
              max_price: float = DEFAULT_MAX_PRICE) -> FuelPrice:
    """
    Append a new price row effective from the given date (defaults to today).
    Earlier rows are never modified, so readings keep resolving to the price of their own day.
    """
    _require_station(repo, station_id)
    ft = _require_fuel_type(fuel_type)

    new_price = parse_amount(price, "price")
    if new_price <= 0 or new_price > max_price:
        raise ValidationError(f"Unreasonable price. Must be 0 < price ≤ {max_price:g}.", kind="invalid_amount")

    cost = None
    if cost_price not in (None, ""):
        cost = parse_amount(cost_price, "costPrice")
        if cost <= 0:
            raise ValidationError("costPrice must be positive", kind="invalid_amount")

    eff = (parse_business_date(effective_from, tz_name, field="effectiveFrom")
           if effective_from not in (None, "") else today_local(tz_name))

    try:
        row = repo.insert_price({
            "station_id": station_id,
            "fuel_type": ft,
            "price": round(new_price, 2),
            "cost_price": round(cost, 2) if cost is not None else None,
            "effective_from": eff,
            "updated_by": updated_by,
            "created_at": now_iso(),
        })
    except sqlite3.IntegrityError:
        raise ConflictError(
            f"Price already set for {ft} on {eff}",
            kind="duplicate_price",
        )

    logger.info("Price set: station=%s fuel=%s price=%.2f effective_from=%s", station_id, ft, new_price, eff)
    return FuelPrice.from_row(row)


def find_price(repo, station_id: str, fuel_type: str, on_date: str) -> Optional[FuelPrice]:
    """Price row with the greatest effective_from <= on_date, or None."""
    row = repo.price_on(station_id, fuel_type, on_date)
    return FuelPrice.from_row(row) if row else None


def resolve_price(repo, station_id: str, fuel_type: str, on_date: str) -> float:
    """Price in effect on on_date. No configured price is an error, never zero."""
    found = find_price(repo, station_id, fuel_type, on_date)
    if found is None:
        raise ValidationError(
            f"No fuel price set for {fuel_type} on {on_date}. Please set fuel price first.",
            kind="price_not_configured",
        )
    return found.price


def price_history(repo, station_id: str, fuel_type: Optional[str] = None) -> List[FuelPrice]:
    _require_station(repo, station_id)
    ft = _require_fuel_type(fuel_type) if fuel_type else None
    return [FuelPrice.from_row(r) for r in repo.price_rows(station_id, ft)]


def current_prices(repo, station_id: str, on_date: Optional[str] = None, tz_name: str = "UTC") -> List[FuelPrice]:
    """Latest row per fuel type as of on_date, default today (future-dated rows are skipped)."""
    _require_station(repo, station_id)
    on_date = on_date or today_local(tz_name)
    out = []
    for ft in FUEL_TYPES:
        p = find_price(repo, station_id, ft, on_date)
        if p is not None:
            out.append(p)
    return out


def check_price(repo, station_id: str, fuel_type: str, on_date: str) -> Dict[str, Any]:
    _require_station(repo, station_id)
    ft = _require_fuel_type(fuel_type)
    found = find_price(repo, station_id, ft, on_date)
    return {
        "fuelType": ft,
        "date": on_date,
        "priceSet": found is not None,
        "price": found.price if found else None,
        "effectiveFrom": found.effective_from if found else None,
        "message": (f"Price for {ft} on {on_date}: ₹{found.price:.2f}" if found
                    else f"No price set for {ft} on or before {on_date}"),
    }
