# persistence.py
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from models import READING_COLUMNS, SCHEMA_SQL, SETTLEMENT_COLUMNS

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"


def _ensure_dirs(db_path: str):
    folder = os.path.dirname(db_path)
    if db_path != MEMORY_DB and folder:
        os.makedirs(folder, exist_ok=True)


def get_repo(db_path: str) -> "DBRepo":
    return DBRepo(db_path)


class DBRepo:
    """
    SQLite-backed store for stations, nozzles, employees, prices, readings and settlements.

    One connection per repo, shared across threads and serialized with a re-entrant lock.
    Writes go through transaction(), which opens BEGIN IMMEDIATE so the
    "look at the latest row, then insert" sequences can't interleave.
    """

    def __init__(self, db_path: str):
        _ensure_dirs(db_path)
        self.db_path = db_path
        # isolation_level=None: we issue BEGIN/COMMIT ourselves
        self.conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON;")
        self._lock = threading.RLock()
        self._depth = 0
        with self._lock:
            self.conn.executescript(SCHEMA_SQL)

    def close(self):
        with self._lock:
            self.conn.close()

    def _row_to_dict(self, row: sqlite3.Row) -> Dict:
        return {k: row[k] for k in row.keys()}

    def _all(self, sql: str, params: Iterable = ()) -> List[Dict]:
        with self._lock:
            rows = self.conn.execute(sql, tuple(params)).fetchall()
        return [self._row_to_dict(r) for r in rows]

    def _one(self, sql: str, params: Iterable = ()) -> Optional[Dict]:
        with self._lock:
            row = self.conn.execute(sql, tuple(params)).fetchone()
        return self._row_to_dict(row) if row else None

    def _insert(self, table: str, row: Dict) -> int:
        cols = list(row.keys())
        placeholders = ",".join(["?"] * len(cols))
        sql = f"INSERT INTO {table} ({','.join(cols)}) VALUES ({placeholders})"
        with self._lock:
            cur = self.conn.execute(sql, tuple(row[c] for c in cols))
        return int(cur.lastrowid)

    @contextmanager
    def transaction(self):
        """Write transaction; nested calls join the outer one."""
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self.conn
                finally:
                    self._depth -= 1
                return

            self.conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            else:
                self.conn.execute("COMMIT")
            finally:
                self._depth = 0

    # ===== Stations / employees / nozzles =====

    def create_station(self, row: Dict) -> Dict:
        with self.transaction():
            self._insert("stations", row)
        return self.get_station(row["id"])

    def get_station(self, station_id: str) -> Optional[Dict]:
        return self._one("SELECT * FROM stations WHERE id = ?", (station_id,))

    def list_stations(self) -> List[Dict]:
        return self._all("SELECT * FROM stations ORDER BY name, id")

    def create_employee(self, row: Dict) -> Dict:
        with self.transaction():
            self._insert("employees", row)
        return self.get_employee(row["id"])

    def get_employee(self, employee_id: str) -> Optional[Dict]:
        return self._one("SELECT * FROM employees WHERE id = ?", (employee_id,))

    def list_employees(self, station_id: str) -> List[Dict]:
        return self._all("SELECT * FROM employees WHERE station_id = ? ORDER BY name, id", (station_id,))

    def create_nozzle(self, row: Dict) -> Dict:
        with self.transaction():
            self._insert("nozzles", row)
        return self.get_nozzle(row["id"])

    def get_nozzle(self, nozzle_id: str) -> Optional[Dict]:
        return self._one("SELECT * FROM nozzles WHERE id = ?", (nozzle_id,))

    def list_nozzles(self, station_id: str) -> List[Dict]:
        return self._all("SELECT * FROM nozzles WHERE station_id = ? ORDER BY nozzle_number", (station_id,))

    # ===== Fuel prices =====

    def insert_price(self, row: Dict) -> Dict:
        with self.transaction():
            new_id = self._insert("fuel_prices", row)
        return self._one("SELECT * FROM fuel_prices WHERE id = ?", (new_id,))

    def price_on(self, station_id: str, fuel_type: str, on_date: str) -> Optional[Dict]:
        return self._one(
            """
            SELECT * FROM fuel_prices
            WHERE station_id = ? AND fuel_type = ? AND effective_from <= ?
            ORDER BY effective_from DESC
            LIMIT 1
            """,
            (station_id, fuel_type, on_date),
        )

    def price_rows(self, station_id: str, fuel_type: Optional[str] = None) -> List[Dict]:
        if fuel_type:
            return self._all(
                "SELECT * FROM fuel_prices WHERE station_id = ? AND fuel_type = ? "
                "ORDER BY effective_from DESC",
                (station_id, fuel_type),
            )
        return self._all(
            "SELECT * FROM fuel_prices WHERE station_id = ? ORDER BY fuel_type ASC, effective_from DESC",
            (station_id,),
        )

    # ===== Readings =====

    def latest_reading(self, nozzle_id: str) -> Optional[Dict]:
        return self._one(
            """
            SELECT * FROM nozzle_readings
            WHERE nozzle_id = ?
            ORDER BY reading_date DESC, meter_value DESC, created_at DESC
            LIMIT 1
            """,
            (nozzle_id,),
        )

    def reading_before(self, nozzle_id: str, before_date: str) -> Optional[Dict]:
        return self._one(
            """
            SELECT * FROM nozzle_readings
            WHERE nozzle_id = ? AND reading_date < ?
            ORDER BY reading_date DESC, meter_value DESC, created_at DESC
            LIMIT 1
            """,
            (nozzle_id, before_date),
        )

    def insert_reading(self, row: Dict) -> Dict:
        ordered = {c: row.get(c) for c in READING_COLUMNS}
        with self.transaction():
            self._insert("nozzle_readings", ordered)
        return self.get_reading(row["id"])

    def get_reading(self, reading_id: str) -> Optional[Dict]:
        return self._one("SELECT * FROM nozzle_readings WHERE id = ?", (reading_id,))

    def _reading_filters(self, station_ids: Optional[Sequence[str]] = None,
                         nozzle_id: Optional[str] = None,
                         start: Optional[str] = None,
                         end: Optional[str] = None) -> Tuple[str, list]:
        where, params = [], []
        if station_ids is not None:
            where.append(f"r.station_id IN ({','.join(['?'] * len(station_ids))})")
            params.extend(station_ids)
        if nozzle_id:
            where.append("r.nozzle_id = ?")
            params.append(nozzle_id)
        # Dates are stored as 'YYYY-MM-DD' text so string comparison is calendar-exact
        if start:
            where.append("r.reading_date >= ?")
            params.append(start)
        if end:
            where.append("r.reading_date <= ?")
            params.append(end)
        clause = ("WHERE " + " AND ".join(where)) if where else ""
        return clause, params

    def list_readings(self, station_ids: Optional[Sequence[str]] = None,
                      nozzle_id: Optional[str] = None,
                      start: Optional[str] = None,
                      end: Optional[str] = None,
                      limit: int = 50, offset: int = 0) -> Tuple[List[Dict], int]:
        if station_ids is not None and not station_ids:
            return [], 0
        clause, params = self._reading_filters(station_ids, nozzle_id, start, end)
        total = self._one(f"SELECT COUNT(*) AS n FROM nozzle_readings r {clause}", params)["n"]
        rows = self._all(
            f"""
            SELECT r.* FROM nozzle_readings r {clause}
            ORDER BY r.reading_date DESC, r.created_at DESC
            LIMIT ? OFFSET ?
            """,
            [*params, int(limit), int(offset)],
        )
        return rows, int(total)

    def readings_on(self, station_id: str, on_date: str) -> List[Dict]:
        """All readings of one station for one calendar date (exact match), with names joined."""
        return self._all(
            """
            SELECT r.*, n.nozzle_number, e.name AS employee_name
            FROM nozzle_readings r
            JOIN nozzles n ON n.id = r.nozzle_id
            LEFT JOIN employees e ON e.id = r.employee_id
            WHERE r.station_id = ? AND r.reading_date = ?
            ORDER BY n.nozzle_number, r.created_at
            """,
            (station_id, on_date),
        )

    def readings_between(self, station_ids: Sequence[str], start: str, end: str) -> List[Dict]:
        if not station_ids:
            return []
        clause, params = self._reading_filters(station_ids, None, start, end)
        return self._all(
            f"""
            SELECT r.*, n.nozzle_number, e.name AS employee_name
            FROM nozzle_readings r
            JOIN nozzles n ON n.id = r.nozzle_id
            LEFT JOIN employees e ON e.id = r.employee_id
            {clause}
            ORDER BY r.reading_date, r.station_id, n.nozzle_number
            """,
            params,
        )

    # ===== Settlements =====

    def get_settlement(self, station_id: str, on_date: str) -> Optional[Dict]:
        return self._one("SELECT * FROM settlements WHERE station_id = ? AND date = ?", (station_id, on_date))

    def get_shortfalls(self, settlement_id: str) -> List[Dict]:
        return self._all(
            "SELECT * FROM settlement_shortfalls WHERE settlement_id = ? ORDER BY employee_id",
            (settlement_id,),
        )

    def upsert_settlement(self, row: Dict, shortfalls: List[Dict]) -> bool:
        """
        Insert or replace the settlement for (station_id, date) and its shortfall rows.
        Returns True when a settlement already existed for that day.
        """
        with self.transaction():
            existing = self.get_settlement(row["station_id"], row["date"])
            if existing:
                row = dict(row, id=existing["id"], created_at=existing["created_at"])
                cols = [c for c in SETTLEMENT_COLUMNS if c not in ("id", "station_id", "date", "created_at")]
                assignments = ", ".join(f"{c} = ?" for c in cols)
                self.conn.execute(
                    f"UPDATE settlements SET {assignments} WHERE id = ?",
                    (*[row.get(c) for c in cols], existing["id"]),
                )
                self.conn.execute("DELETE FROM settlement_shortfalls WHERE settlement_id = ?", (existing["id"],))
            else:
                self._insert("settlements", {c: row.get(c) for c in SETTLEMENT_COLUMNS})

            for s in shortfalls:
                self._insert("settlement_shortfalls", dict(s, settlement_id=row["id"]))
        return existing is not None

    def list_settlements(self, station_id: str, start: Optional[str] = None,
                         end: Optional[str] = None, limit: Optional[int] = None) -> List[Dict]:
        where, params = ["station_id = ?"], [station_id]
        if start:
            where.append("date >= ?")
            params.append(start)
        if end:
            where.append("date <= ?")
            params.append(end)
        sql = f"SELECT * FROM settlements WHERE {' AND '.join(where)} ORDER BY date DESC"
        if limit:
            sql += " LIMIT ?"
            params.append(int(limit))
        return self._all(sql, params)

    def shortfalls_between(self, station_ids: Sequence[str], start: str, end: str) -> List[Dict]:
        if not station_ids:
            return []
        placeholders = ",".join(["?"] * len(station_ids))
        return self._all(
            f"""
            SELECT sf.*, s.station_id, s.date
            FROM settlement_shortfalls sf
            JOIN settlements s ON s.id = sf.settlement_id
            WHERE s.station_id IN ({placeholders}) AND s.date >= ? AND s.date <= ?
            ORDER BY s.date, sf.employee_id
            """,
            [*station_ids, start, end],
        )
