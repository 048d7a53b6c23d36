# registry.py
import logging
import sqlite3
from typing import Any, Dict, List, Optional

from errors import ConflictError, NotFoundError, ValidationError
from models import FUEL_TYPES, NOZZLE_STATUSES
from utils import gen_id, now_iso, parse_amount

logger = logging.getLogger(__name__)


def _sanitize(v: Any) -> str:
    return str(v).strip() if v is not None else ""


def station_to_dict(row: Dict) -> Dict:
    return {"id": row["id"], "name": row["name"], "code": row["code"], "createdAt": row["created_at"]}


def nozzle_to_dict(row: Dict) -> Dict:
    return {
        "id": row["id"],
        "stationId": row["station_id"],
        "nozzleNumber": int(row["nozzle_number"]),
        "fuelType": row["fuel_type"],
        "initialReading": float(row["initial_reading"] or 0),
        "status": row["status"],
    }


def employee_to_dict(row: Dict) -> Dict:
    return {"id": row["id"], "stationId": row["station_id"], "name": row["name"], "role": row["role"]}


def require_station(repo, station_id: str) -> Dict:
    station = repo.get_station(station_id)
    if not station:
        raise NotFoundError(f"Station '{station_id}' not found")
    return station


def create_station(repo, name: Any, code: Any = None, station_id: Optional[str] = None) -> Dict:
    name = _sanitize(name)
    if not name:
        raise ValidationError("name is required", kind="missing_field")
    row = {
        "id": _sanitize(station_id) or gen_id("STN"),
        "name": name,
        "code": _sanitize(code) or None,
        "created_at": now_iso(),
    }
    try:
        created = repo.create_station(row)
    except sqlite3.IntegrityError:
        raise ConflictError(f"Station '{row['id']}' already exists", kind="duplicate_station")
    logger.info("Station created: %s (%s)", created["id"], name)
    return created


def create_nozzle(repo, station_id: str, nozzle_number: Any, fuel_type: Any,
                  initial_reading: Any = None, status: Any = None) -> Dict:
    require_station(repo, station_id)
    try:
        number = int(nozzle_number)
    except (TypeError, ValueError):
        raise ValidationError("nozzleNumber must be an integer", kind="missing_field")
    if number < 1:
        raise ValidationError("nozzleNumber must be >= 1", kind="invalid_amount")

    ft = _sanitize(fuel_type).lower()
    if ft not in FUEL_TYPES:
        raise ValidationError(f"fuelType must be one of: {', '.join(FUEL_TYPES)}", kind="invalid_fuel_type")

    st = _sanitize(status).lower() or "active"
    if st not in NOZZLE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(NOZZLE_STATUSES)}", kind="invalid_status")

    initial = parse_amount(initial_reading, "initialReading") if initial_reading not in (None, "") else 0.0

    row = {
        "id": gen_id("NZ"),
        "station_id": station_id,
        "nozzle_number": number,
        "fuel_type": ft,
        "initial_reading": initial,
        "status": st,
        "created_at": now_iso(),
    }
    try:
        created = repo.create_nozzle(row)
    except sqlite3.IntegrityError:
        raise ConflictError(f"Nozzle #{number} already exists at this station", kind="duplicate_nozzle")
    logger.info("Nozzle created: %s station=%s #%d %s", created["id"], station_id, number, ft)
    return created


def create_employee(repo, station_id: str, name: Any, role: Any = None) -> Dict:
    require_station(repo, station_id)
    name = _sanitize(name)
    if not name:
        raise ValidationError("name is required", kind="missing_field")
    row = {
        "id": gen_id("EMP"),
        "station_id": station_id,
        "name": name,
        "role": _sanitize(role) or "employee",
        "created_at": now_iso(),
    }
    created = repo.create_employee(row)
    logger.info("Employee created: %s station=%s", created["id"], station_id)
    return created


def list_nozzles(repo, station_id: str) -> List[Dict]:
    require_station(repo, station_id)
    return repo.list_nozzles(station_id)


def list_employees(repo, station_id: str) -> List[Dict]:
    require_station(repo, station_id)
    return repo.list_employees(station_id)
