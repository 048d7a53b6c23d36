# models.py
from dataclasses import dataclass, field
from typing import Dict, List, Optional

FUEL_TYPES = [
    "petrol",
    "diesel",
    "premium_petrol",
    "premium_diesel",
    "cng",
    "lpg",
    "ev_charging",
]

FUEL_TYPE_LABELS = {
    "petrol": "Petrol",
    "diesel": "Diesel",
    "premium_petrol": "Premium Petrol",
    "premium_diesel": "Premium Diesel",
    "cng": "CNG",
    "lpg": "LPG",
    "ev_charging": "EV Charging",
}

PAYMENT_METHODS = ["cash", "online", "credit"]

NOZZLE_STATUSES = ["active", "inactive", "maintenance"]

READING_COLUMNS = [
    # identifiers
    "id",
    "nozzle_id",
    "station_id",
    "fuel_type",
    "employee_id",

    # meter data
    "reading_date",
    "meter_value",
    "previous_meter_value",

    # valuation captured at write time (never recomputed)
    "litres_sold",
    "price_per_litre",
    "total_amount",

    # payment allocation
    "cash_amount",
    "online_amount",
    "credit_amount",

    # flags
    "is_sample",
    "is_initial_reading",
    "notes",

    # audit timestamp (UTC)
    "created_at",
]

SETTLEMENT_COLUMNS = [
    "id",
    "station_id",
    "date",
    "expected_cash",
    "actual_cash",
    "variance",

    # employee-reported tenders (aggregated from readings)
    "employee_cash",
    "employee_online",
    "employee_credit",

    # owner-confirmed non-cash tenders
    "online",
    "credit",
    "variance_online",
    "variance_credit",

    "readings_count",
    "notes",
    "recorded_by",
    "recorded_at",
    "created_at",
    "updated_at",
]

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS stations (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  code TEXT,
  created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS employees (
  id TEXT PRIMARY KEY,
  station_id TEXT NOT NULL REFERENCES stations(id),
  name TEXT NOT NULL,
  role TEXT NOT NULL DEFAULT 'employee',
  created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS nozzles (
  id TEXT PRIMARY KEY,
  station_id TEXT NOT NULL REFERENCES stations(id),
  nozzle_number INTEGER NOT NULL,
  fuel_type TEXT NOT NULL,
  initial_reading REAL NOT NULL DEFAULT 0,
  status TEXT NOT NULL DEFAULT 'active',
  created_at TEXT NOT NULL,
  UNIQUE (station_id, nozzle_number)
);

-- Append-only: a new price is a new row, old rows stay for historical lookups
CREATE TABLE IF NOT EXISTS fuel_prices (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  station_id TEXT NOT NULL REFERENCES stations(id),
  fuel_type TEXT NOT NULL,
  price REAL NOT NULL,
  cost_price REAL,
  effective_from TEXT NOT NULL,          -- ISO date
  updated_by TEXT,
  created_at TEXT NOT NULL,
  UNIQUE (station_id, fuel_type, effective_from)
);

CREATE TABLE IF NOT EXISTS nozzle_readings (
  id TEXT PRIMARY KEY,
  nozzle_id TEXT NOT NULL REFERENCES nozzles(id),
  station_id TEXT NOT NULL REFERENCES stations(id),
  fuel_type TEXT NOT NULL,
  employee_id TEXT NOT NULL REFERENCES employees(id),
  reading_date TEXT NOT NULL,            -- ISO date, compared by equality
  meter_value REAL NOT NULL,
  previous_meter_value REAL NOT NULL,
  litres_sold REAL NOT NULL,
  price_per_litre REAL NOT NULL,
  total_amount REAL NOT NULL,
  cash_amount REAL NOT NULL DEFAULT 0,
  online_amount REAL NOT NULL DEFAULT 0,
  credit_amount REAL NOT NULL DEFAULT 0,
  is_sample INTEGER NOT NULL DEFAULT 0,
  is_initial_reading INTEGER NOT NULL DEFAULT 0,
  notes TEXT,
  created_at TEXT NOT NULL,
  UNIQUE (nozzle_id, reading_date)
);
CREATE INDEX IF NOT EXISTS idx_readings_station_date ON nozzle_readings (station_id, reading_date);

CREATE TABLE IF NOT EXISTS settlements (
  id TEXT PRIMARY KEY,
  station_id TEXT NOT NULL REFERENCES stations(id),
  date TEXT NOT NULL,
  expected_cash REAL NOT NULL,
  actual_cash REAL NOT NULL,
  variance REAL NOT NULL,
  employee_cash REAL NOT NULL DEFAULT 0,
  employee_online REAL NOT NULL DEFAULT 0,
  employee_credit REAL NOT NULL DEFAULT 0,
  online REAL NOT NULL DEFAULT 0,
  credit REAL NOT NULL DEFAULT 0,
  variance_online REAL NOT NULL DEFAULT 0,
  variance_credit REAL NOT NULL DEFAULT 0,
  readings_count INTEGER NOT NULL DEFAULT 0,
  notes TEXT,
  recorded_by TEXT,
  recorded_at TEXT NOT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  UNIQUE (station_id, date)
);

CREATE TABLE IF NOT EXISTS settlement_shortfalls (
  settlement_id TEXT NOT NULL REFERENCES settlements(id) ON DELETE CASCADE,
  employee_id TEXT NOT NULL,
  employee_name TEXT,
  shortfall_amount REAL NOT NULL,
  reading_count INTEGER NOT NULL,
  PRIMARY KEY (settlement_id, employee_id)
);
"""


@dataclass
class PaymentAllocation:
    cash: float = 0.0
    online: float = 0.0
    credit: float = 0.0

    @property
    def total(self) -> float:
        return self.cash + self.online + self.credit

    def to_dict(self) -> Dict[str, float]:
        return {"cash": self.cash, "online": self.online, "credit": self.credit}


@dataclass
class FuelPrice:
    id: int
    station_id: str
    fuel_type: str
    price: float
    effective_from: str
    cost_price: Optional[float] = None
    updated_by: Optional[str] = None
    created_at: str = ""

    @classmethod
    def from_row(cls, row: Dict) -> "FuelPrice":
        return cls(
            id=int(row["id"]),
            station_id=row["station_id"],
            fuel_type=row["fuel_type"],
            price=float(row["price"]),
            effective_from=row["effective_from"],
            cost_price=float(row["cost_price"]) if row.get("cost_price") is not None else None,
            updated_by=row.get("updated_by"),
            created_at=row.get("created_at") or "",
        )

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "stationId": self.station_id,
            "fuelType": self.fuel_type,
            "price": self.price,
            "costPrice": self.cost_price,
            "effectiveFrom": self.effective_from,
            "updatedBy": self.updated_by,
            "createdAt": self.created_at,
        }


@dataclass
class NozzleReading:
    id: str
    nozzle_id: str
    station_id: str
    fuel_type: str
    employee_id: str
    reading_date: str
    meter_value: float
    previous_meter_value: float
    litres_sold: float
    price_per_litre: float
    total_amount: float
    payment: PaymentAllocation
    is_sample: bool = False
    is_initial_reading: bool = False
    notes: str = ""
    created_at: str = ""

    @property
    def sale_value(self) -> float:
        # Revenue always comes from the captured price, never from payments
        return self.litres_sold * self.price_per_litre

    @classmethod
    def from_row(cls, row: Dict) -> "NozzleReading":
        return cls(
            id=row["id"],
            nozzle_id=row["nozzle_id"],
            station_id=row["station_id"],
            fuel_type=row["fuel_type"],
            employee_id=row["employee_id"],
            reading_date=row["reading_date"],
            meter_value=float(row["meter_value"]),
            previous_meter_value=float(row["previous_meter_value"]),
            litres_sold=float(row["litres_sold"]),
            price_per_litre=float(row["price_per_litre"]),
            total_amount=float(row["total_amount"]),
            payment=PaymentAllocation(
                cash=float(row["cash_amount"] or 0),
                online=float(row["online_amount"] or 0),
                credit=float(row["credit_amount"] or 0),
            ),
            is_sample=bool(row["is_sample"]),
            is_initial_reading=bool(row["is_initial_reading"]),
            notes=row.get("notes") or "",
            created_at=row.get("created_at") or "",
        )

    def to_row(self) -> Dict:
        return {
            "id": self.id,
            "nozzle_id": self.nozzle_id,
            "station_id": self.station_id,
            "fuel_type": self.fuel_type,
            "employee_id": self.employee_id,
            "reading_date": self.reading_date,
            "meter_value": self.meter_value,
            "previous_meter_value": self.previous_meter_value,
            "litres_sold": self.litres_sold,
            "price_per_litre": self.price_per_litre,
            "total_amount": self.total_amount,
            "cash_amount": self.payment.cash,
            "online_amount": self.payment.online,
            "credit_amount": self.payment.credit,
            "is_sample": int(self.is_sample),
            "is_initial_reading": int(self.is_initial_reading),
            "notes": self.notes,
            "created_at": self.created_at,
        }

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "nozzleId": self.nozzle_id,
            "stationId": self.station_id,
            "fuelType": self.fuel_type,
            "employeeId": self.employee_id,
            "readingDate": self.reading_date,
            "meterValue": self.meter_value,
            "previousMeterValue": self.previous_meter_value,
            "litresSold": self.litres_sold,
            "pricePerLitre": self.price_per_litre,
            "totalAmount": self.total_amount,
            "paymentAllocation": self.payment.to_dict(),
            "isSample": self.is_sample,
            "isInitialReading": self.is_initial_reading,
            "notes": self.notes,
            "createdAt": self.created_at,
        }


@dataclass
class EmployeeShortfall:
    employee_id: str
    employee_name: str
    shortfall_amount: float
    reading_count: int

    def to_dict(self) -> Dict:
        return {
            "employeeId": self.employee_id,
            "employeeName": self.employee_name,
            "shortfallAmount": self.shortfall_amount,
            "readingCount": self.reading_count,
        }


@dataclass
class Settlement:
    id: str
    station_id: str
    date: str
    expected_cash: float
    actual_cash: float
    variance: float
    employee_cash: float = 0.0
    employee_online: float = 0.0
    employee_credit: float = 0.0
    online: float = 0.0
    credit: float = 0.0
    variance_online: float = 0.0
    variance_credit: float = 0.0
    readings_count: int = 0
    notes: str = ""
    recorded_by: Optional[str] = None
    recorded_at: str = ""
    employee_shortfalls: List[EmployeeShortfall] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Dict, shortfalls: Optional[List[Dict]] = None) -> "Settlement":
        return cls(
            id=row["id"],
            station_id=row["station_id"],
            date=row["date"],
            expected_cash=float(row["expected_cash"]),
            actual_cash=float(row["actual_cash"]),
            variance=float(row["variance"]),
            employee_cash=float(row["employee_cash"] or 0),
            employee_online=float(row["employee_online"] or 0),
            employee_credit=float(row["employee_credit"] or 0),
            online=float(row["online"] or 0),
            credit=float(row["credit"] or 0),
            variance_online=float(row["variance_online"] or 0),
            variance_credit=float(row["variance_credit"] or 0),
            readings_count=int(row["readings_count"] or 0),
            notes=row.get("notes") or "",
            recorded_by=row.get("recorded_by"),
            recorded_at=row.get("recorded_at") or "",
            employee_shortfalls=[
                EmployeeShortfall(
                    employee_id=s["employee_id"],
                    employee_name=s.get("employee_name") or "",
                    shortfall_amount=float(s["shortfall_amount"]),
                    reading_count=int(s["reading_count"]),
                )
                for s in (shortfalls or [])
            ],
        )

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "stationId": self.station_id,
            "date": self.date,
            "expectedCash": self.expected_cash,
            "actualCash": self.actual_cash,
            "variance": self.variance,
            "employeeCash": self.employee_cash,
            "employeeOnline": self.employee_online,
            "employeeCredit": self.employee_credit,
            "online": self.online,
            "credit": self.credit,
            "varianceOnline": self.variance_online,
            "varianceCredit": self.variance_credit,
            "readingsCount": self.readings_count,
            "notes": self.notes,
            "recordedBy": self.recorded_by,
            "recordedAt": self.recorded_at,
            "employeeShortfalls": [s.to_dict() for s in self.employee_shortfalls],
        }
