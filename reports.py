# reports.py
"""
Read-only sales and shortfall reports.

Sale value is always litres_sold * price_per_litre from the stored reading, i.e.
the price captured on the reading's own date. total_amount and payment totals are
never used as revenue.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd

from errors import NotFoundError, ValidationError
from utils import parse_business_date, parse_date_range, round_litres, round_money, safe_div

logger = logging.getLogger(__name__)

GROUP_KEYS = {
    "date": "reading_date",
    "fuel_type": "fuel_type",
    "nozzle": "nozzle_id",
    "employee": "employee_id",
    "station": "station_id",
}

_FRAME_COLUMNS = [
    "id", "station_id", "nozzle_id", "nozzle_number", "fuel_type", "employee_id", "employee_name",
    "reading_date", "previous_meter_value", "meter_value", "litres_sold", "price_per_litre",
    "total_amount", "cash_amount", "online_amount", "credit_amount", "is_sample", "is_initial_reading",
]

_NUMERIC = ["previous_meter_value", "meter_value", "litres_sold", "price_per_litre",
            "total_amount", "cash_amount", "online_amount", "credit_amount"]


def resolve_station_ids(repo, station_id: Union[None, str, Sequence[str]]) -> List[str]:
    """'all' (or nothing) means every station; explicit ids must exist."""
    if station_id in (None, "", "all"):
        return [s["id"] for s in repo.list_stations()]
    ids = [station_id] if isinstance(station_id, str) else list(station_id)
    for sid in ids:
        if not repo.get_station(sid):
            raise NotFoundError(f"Station '{sid}' not found")
    return ids


def billable_frame(rows: List[Dict]) -> pd.DataFrame:
    """DataFrame of billable readings with a sale_value column."""
    if not rows:
        return pd.DataFrame({
            c: pd.Series(dtype=float if c in _NUMERIC or c == "sale_value" else object)
            for c in _FRAME_COLUMNS + ["sale_value"]
        })
    df = pd.DataFrame(rows, columns=_FRAME_COLUMNS)

    for c in _NUMERIC:
        df[c] = pd.to_numeric(df[c], errors="coerce").fillna(0.0)
    df["is_sample"] = df["is_sample"].astype(int)
    df["is_initial_reading"] = df["is_initial_reading"].astype(int)

    mask = (df["is_sample"] == 0) & ((df["is_initial_reading"] == 0) | (df["litres_sold"] > 0))
    df = df[mask].copy()
    df["sale_value"] = df["litres_sold"] * df["price_per_litre"]
    return df


def _payment_split(df: pd.DataFrame) -> Dict[str, float]:
    return {
        "cash": round_money(df["cash_amount"].sum()) if not df.empty else 0.0,
        "online": round_money(df["online_amount"].sum()) if not df.empty else 0.0,
        "credit": round_money(df["credit_amount"].sum()) if not df.empty else 0.0,
    }


def daily_sales(repo, station_id: str, on_date: Any, tz_name: str = "UTC") -> Dict[str, Any]:
    """Sales for exactly one calendar date; neighbouring days never leak in."""
    station = repo.get_station(station_id)
    if not station:
        raise NotFoundError(f"Station '{station_id}' not found")
    day = parse_business_date(on_date, tz_name)

    df = billable_frame(repo.readings_on(station_id, day))
    split = _payment_split(df)

    by_fuel: Dict[str, Dict[str, Any]] = {}
    readings: List[Dict[str, Any]] = []
    if not df.empty:
        grouped = df.groupby("fuel_type").agg(
            litres=("litres_sold", "sum"),
            value=("sale_value", "sum"),
            readings=("id", "count"),
        )
        for fuel_type, g in grouped.iterrows():
            by_fuel[str(fuel_type)] = {
                "litres": round_litres(g["litres"]),
                "value": round_money(g["value"]),
                "readings": int(g["readings"]),
            }
        for r in df.to_dict(orient="records"):
            readings.append({
                "id": r["id"],
                "nozzleId": r["nozzle_id"],
                "nozzleNumber": int(r["nozzle_number"]) if r["nozzle_number"] is not None else None,
                "fuelType": r["fuel_type"],
                "employeeId": r["employee_id"],
                "employeeName": r["employee_name"] or "",
                "litres": round_litres(r["litres_sold"]),
                "pricePerLitre": float(r["price_per_litre"]),
                "saleValue": round_money(r["sale_value"]),
            })

    return {
        "date": day,
        "stationId": station_id,
        "stationName": station["name"],
        "totalSaleValue": round_money(df["sale_value"].sum()) if not df.empty else 0.0,
        "totalLitres": round_litres(df["litres_sold"].sum()) if not df.empty else 0.0,
        "readingsCount": int(len(df)),
        "byFuelType": by_fuel,
        "expectedCash": split["cash"],
        "paymentSplit": split,
        "readings": readings,
    }


def sales_report(repo, station_id: Union[None, str, Sequence[str]], start_date: Any, end_date: Any,
                 group_by: str = "date", tz_name: str = "UTC") -> Dict[str, Any]:
    key = GROUP_KEYS.get((group_by or "date").strip().lower())
    if key is None:
        raise ValidationError(f"groupBy must be one of: {', '.join(GROUP_KEYS)}", kind="invalid_group_by")
    start, end = parse_date_range(start_date, end_date, tz_name)
    ids = resolve_station_ids(repo, station_id)

    df = billable_frame(repo.readings_between(ids, start, end))
    out_rows: List[Dict[str, Any]] = []
    if not df.empty:
        grouped = df.groupby(key).agg(
            totalLitres=("litres_sold", "sum"),
            totalSales=("sale_value", "sum"),
            readingsCount=("id", "count"),
            cash=("cash_amount", "sum"),
            online=("online_amount", "sum"),
            credit=("credit_amount", "sum"),
            employeeName=("employee_name", "last"),
            nozzleNumber=("nozzle_number", "first"),
        )
        fuel_split: Optional[pd.DataFrame] = None
        if key == "reading_date":
            fuel_split = df.groupby([key, "fuel_type"]).agg(
                sales=("sale_value", "sum"),
                quantity=("litres_sold", "sum"),
                readings=("id", "count"),
            )

        for group_value, g in grouped.iterrows():
            row = {
                "group": str(group_value),
                "totalLitres": round_litres(g["totalLitres"]),
                "totalSales": round_money(g["totalSales"]),
                "readingsCount": int(g["readingsCount"]),
                "paymentSplit": {
                    "cash": round_money(g["cash"]),
                    "online": round_money(g["online"]),
                    "credit": round_money(g["credit"]),
                },
            }
            if key == "employee_id":
                row["employeeName"] = g["employeeName"] or ""
            if key == "nozzle_id":
                row["nozzleNumber"] = int(g["nozzleNumber"])
            if fuel_split is not None:
                day_split = fuel_split.xs(group_value, level=0)
                row["fuelTypeSales"] = [
                    {
                        "fuelType": str(ft),
                        "sales": round_money(f["sales"]),
                        "quantity": round_litres(f["quantity"]),
                        "readings": int(f["readings"]),
                    }
                    for ft, f in day_split.iterrows()
                ]
            out_rows.append(row)

    return {
        "periodStart": start,
        "periodEnd": end,
        "groupBy": group_by,
        "stationIds": ids,
        "rows": out_rows,
        "totals": {
            "totalSales": round_money(df["sale_value"].sum()) if not df.empty else 0.0,
            "totalLitres": round_litres(df["litres_sold"].sum()) if not df.empty else 0.0,
            "readingsCount": int(len(df)),
            "paymentSplit": _payment_split(df),
        },
    }


def employee_shortfalls(repo, station_id: Union[None, str, Sequence[str]], start_date: Any, end_date: Any,
                        tz_name: str = "UTC") -> List[Dict[str, Any]]:
    """Per-employee shortfall totals across the settlements in range, largest first."""
    start, end = parse_date_range(start_date, end_date, tz_name)
    ids = resolve_station_ids(repo, station_id)
    rows = repo.shortfalls_between(ids, start, end)
    if not rows:
        return []

    df = pd.DataFrame(rows)
    df["shortfall_amount"] = pd.to_numeric(df["shortfall_amount"], errors="coerce").fillna(0.0)
    grouped = df.groupby("employee_id").agg(
        employeeName=("employee_name", "last"),
        totalShortfall=("shortfall_amount", "sum"),
        daysWithShortfall=("date", "nunique"),
        settlementsCount=("settlement_id", "nunique"),
        readingCount=("reading_count", "sum"),
    ).sort_values(["totalShortfall"], ascending=False)

    out = []
    for employee_id, g in grouped.iterrows():
        days = int(g["daysWithShortfall"])
        out.append({
            "employeeId": str(employee_id),
            "employeeName": g["employeeName"] or "",
            "totalShortfall": round_money(g["totalShortfall"]),
            "daysWithShortfall": days,
            "averagePerDay": round_money(safe_div(g["totalShortfall"], days)),
            "settlementsCount": int(g["settlementsCount"]),
            "readingCount": int(g["readingCount"]),
        })
    return out


def sales_export_frame(repo, station_id: Union[None, str, Sequence[str]], start_date: Any, end_date: Any,
                       tz_name: str = "UTC") -> pd.DataFrame:
    """One row per billable reading, human headers, ready for to_csv()."""
    start, end = parse_date_range(start_date, end_date, tz_name)
    ids = resolve_station_ids(repo, station_id)
    df = billable_frame(repo.readings_between(ids, start, end))

    export = pd.DataFrame({
        "Date": df["reading_date"],
        "Station": df["station_id"],
        "Nozzle": df["nozzle_number"],
        "Fuel Type": df["fuel_type"],
        "Employee": df["employee_name"],
        "Previous Meter": df["previous_meter_value"],
        "Meter": df["meter_value"],
        "Litres": df["litres_sold"].round(3),
        "Price (₹/L)": df["price_per_litre"].round(2),
        "Sale Value (₹)": df["sale_value"].round(2),
        "Cash (₹)": df["cash_amount"].round(2),
        "Online (₹)": df["online_amount"].round(2),
        "Credit (₹)": df["credit_amount"].round(2),
    })
    logger.info("Sales export: %d row(s) for %s..%s", len(export), start, end)
    return export.reset_index(drop=True)


def _cost_price_lookup(repo, station_id: str):
    cache: Dict[tuple, Optional[float]] = {}

    def lookup(fuel_type: str, on_date: str) -> Optional[float]:
        key = (fuel_type, on_date)
        if key not in cache:
            row = repo.price_on(station_id, fuel_type, on_date)
            cost = row.get("cost_price") if row else None
            cache[key] = float(cost) if cost else None
        return cache[key]

    return lookup


def profit_summary(repo, station_id: str, start_date: Any, end_date: Any,
                   tz_name: str = "UTC") -> Dict[str, Any]:
    """
    Revenue, cost of goods and profit for one station over a date range.

    Each reading is costed at the cost price in effect on its own reading date.
    Readings whose price row carries no cost price are left out of every figure
    and only show up in dataCompleteness.
    """
    station = repo.get_station(station_id)
    if not station:
        raise NotFoundError(f"Station '{station_id}' not found")
    start, end = parse_date_range(start_date, end_date, tz_name)

    df = billable_frame(repo.readings_between([station_id], start, end))
    lookup = _cost_price_lookup(repo, station_id)
    df["cost_price"] = [lookup(f, d) for f, d in zip(df["fuel_type"], df["reading_date"])]
    costed = df[df["cost_price"].notna()].copy()
    costed["cost_of_goods"] = costed["litres_sold"] * costed["cost_price"].astype(float)

    by_fuel: Dict[str, Dict[str, Any]] = {}
    for fuel_type, g in df.groupby("fuel_type"):
        c = costed[costed["fuel_type"] == fuel_type]
        revenue = float(c["sale_value"].sum())
        cogs = float(c["cost_of_goods"].sum())
        litres = float(c["litres_sold"].sum())
        has_cost = not c.empty
        by_fuel[str(fuel_type)] = {
            "revenue": round_money(revenue),
            "costOfGoods": round_money(cogs),
            "profit": round_money(revenue - cogs),
            "litres": round_litres(litres),
            "profitPerLitre": round_money(safe_div(revenue - cogs, litres)) if has_cost and litres else None,
            "profitMargin": round_money(safe_div(revenue - cogs, revenue) * 100) if has_cost and revenue else None,
            "readings": int(len(g)),
            "readingsWithCost": int(len(c)),
        }

    revenue = float(costed["sale_value"].sum())
    cogs = float(costed["cost_of_goods"].sum())
    litres = float(costed["litres_sold"].sum())
    total, used = int(len(df)), int(len(costed))
    if used < total:
        logger.info("Profit summary %s %s..%s: %d of %d reading(s) have no cost price",
                    station_id, start, end, total - used, total)

    return {
        "stationId": station_id,
        "stationName": station["name"],
        "periodStart": start,
        "periodEnd": end,
        "summary": {
            "totalRevenue": round_money(revenue),
            "totalCostOfGoods": round_money(cogs),
            "grossProfit": round_money(revenue - cogs),
            "profitMargin": round_money(safe_div(revenue - cogs, revenue) * 100),
            "totalLitres": round_litres(litres),
            "profitPerLitre": round_money(safe_div(revenue - cogs, litres)),
        },
        "byFuelType": by_fuel,
        "dataCompleteness": {
            "totalReadings": total,
            "readingsUsedForCalculation": used,
            "readingsExcluded": total - used,
            "completenessPercentage": round_money(safe_div(used, total) * 100),
        },
    }
