#!/usr/bin/env python3
"""
Bulk-load fuel price history from a CSV.

Expected columns (header names are case-insensitive):
  station_id, fuel_type, price, effective_from[, cost_price, updated_by]

Rows are appended oldest first. A row whose (station, fuel type, date) is
already priced is reported and skipped; existing prices are never changed.

Run from the repo root against an installed checkout (pip install -e .):
  python -m tools.import_prices_from_csv prices.csv
"""
import argparse
import logging
import os
import sys

import pandas as pd

import price_store
from config import Config
from errors import ConflictError, FuelSyncError
from persistence import get_repo

logger = logging.getLogger("import_prices")

REQUIRED = ["station_id", "fuel_type", "price", "effective_from"]


def load_rows(csv_path: str) -> pd.DataFrame:
    df = pd.read_csv(csv_path, encoding="utf-8-sig", dtype=str)
    df.columns = [c.strip().lower() for c in df.columns]
    missing = [c for c in REQUIRED if c not in df.columns]
    if missing:
        raise SystemExit(f"CSV is missing column(s): {', '.join(missing)}")
    for c in ("cost_price", "updated_by"):
        if c not in df.columns:
            df[c] = None
    df = df.dropna(subset=REQUIRED)
    return df.sort_values(["station_id", "fuel_type", "effective_from"]).reset_index(drop=True)


def import_prices(repo, df: pd.DataFrame, tz_name: str, max_price: float):
    """Returns (imported, skipped, failed) counts."""
    imported = skipped = failed = 0
    for row in df.to_dict(orient="records"):
        try:
            price_store.set_price(
                repo,
                row["station_id"].strip(),
                row["fuel_type"],
                row["price"],
                effective_from=row["effective_from"],
                cost_price=row["cost_price"] if pd.notna(row["cost_price"]) else None,
                updated_by=row["updated_by"] if pd.notna(row["updated_by"]) else "csv-import",
                tz_name=tz_name,
                max_price=max_price,
            )
            imported += 1
        except ConflictError as e:
            logger.info("Skipped: %s", e.message)
            skipped += 1
        except FuelSyncError as e:
            logger.warning("Rejected %s/%s on %s: %s",
                           row["station_id"], row["fuel_type"], row["effective_from"], e.message)
            failed += 1
    return imported, skipped, failed


def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("csv_path")
    parser.add_argument("--db", default=Config.DB_PATH, help="SQLite file (default: %(default)s)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=Config.LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")
    if not os.path.isfile(args.csv_path):
        raise SystemExit(f"Cannot find {args.csv_path}")

    repo = get_repo(args.db)
    try:
        imported, skipped, failed = import_prices(
            repo, load_rows(args.csv_path), Config.STATION_TIMEZONE, Config.MAX_PRICE_PER_LITRE,
        )
    finally:
        repo.close()
    print(f"Imported {imported} price row(s) into {args.db} ({skipped} already set, {failed} rejected).")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
