import argparse
import logging
import os
import sys
from typing import List

import pandas as pd
from sqlalchemy.orm import Session

# Ensure imports work both when executed as a module and as a script
try:
    from stockinfo.database import SessionLocal
    from stockinfo import crud
    from import_job.frames import ensure_db_schema, none_if_missing, normalize_columns, parse_dates
except ModuleNotFoundError:
    project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)
    from stockinfo.database import SessionLocal
    from stockinfo import crud
    from import_job.frames import ensure_db_schema, none_if_missing, normalize_columns, parse_dates


logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("symbol", "date")
PRICE_COLUMNS = ("open", "low", "high", "close", "band_down", "band_up")
FLOAT_COLUMNS = ("trend_q", "fq")
INT_COLUMNS = ("qv1",)


def import_q_index_frame(db: Session, df: pd.DataFrame) -> dict:
    """Insert the Q-index rows of ``df``, keyed by stock symbol.

    Rows whose (stock, date) already exists are skipped; rows with an unknown
    symbol or an unreadable date are reported in ``errors``.
    """
    summary = {"success": False, "imported": 0, "skipped": 0, "failed": 0, "errors": []}

    df = normalize_columns(df)

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        summary["errors"].append(f"Missing required columns: {', '.join(missing)}")
        summary["failed"] = len(df)
        return summary

    for col in PRICE_COLUMNS + FLOAT_COLUMNS + INT_COLUMNS:
        if col not in df.columns:
            df[col] = None
        df[col] = pd.to_numeric(df[col], errors="coerce")
    df["qv1"] = df["qv1"].round().astype("Int64")

    df["symbol"] = df["symbol"].astype(str).str.strip().str.upper()
    df["date"] = parse_dates(df["date"])

    stock_ids = crud.get_stock_ids_by_symbol(db, sorted(df["symbol"].unique().tolist()))

    rows: List[dict] = []
    errors: List[str] = []
    for position, (_, row) in enumerate(df.iterrows(), start=1):
        if pd.isna(row["date"]):
            errors.append(f"Row {position}: invalid date")
            continue
        stock_id = stock_ids.get(row["symbol"])
        if stock_id is None:
            errors.append(f"Row {position}: unknown symbol '{row['symbol']}'")
            continue

        record = {"stock_id": stock_id, "date": row["date"].date()}
        for col in PRICE_COLUMNS + FLOAT_COLUMNS:
            value = none_if_missing(row[col])
            record[col] = float(value) if value is not None else None
        qv1 = none_if_missing(row["qv1"])
        record["qv1"] = int(qv1) if qv1 is not None else None
        rows.append(record)

    # One row per (stock, date) within the file; first occurrence wins
    unique_rows = list({(row["stock_id"], row["date"]): row for row in reversed(rows)}.values())
    duplicates_in_file = len(rows) - len(unique_rows)

    inserted = crud.bulk_insert_q_indices(db, unique_rows)

    summary["imported"] = inserted
    summary["skipped"] = len(unique_rows) - inserted + duplicates_in_file
    summary["failed"] = len(errors)
    summary["errors"] = errors
    summary["success"] = not errors
    logger.info(
        "Q-index import: %s imported, %s skipped, %s failed",
        inserted, summary["skipped"], len(errors),
    )
    return summary


def import_csv_file(db: Session, path: str) -> dict:
    logger.info("Importing %s", path)
    df = pd.read_csv(path)
    if df.empty:
        logger.warning("No rows in %s", path)
    return import_q_index_frame(db, df)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Import daily Q-index rows from CSV files.")
    parser.add_argument("files", nargs="+", help="CSV files with symbol,date,... columns")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    logger.info("Starting Q-index import job")
    ensure_db_schema()

    total_inserted = 0
    with SessionLocal() as db:
        for path in args.files:
            try:
                summary = import_csv_file(db, path)
                total_inserted += summary["imported"]
                for error in summary["errors"]:
                    logger.warning("%s: %s", path, error)
            except Exception as exc:
                logger.exception("Failed processing %s: %s", path, exc)

    logger.info("Job finished. Total new rows: %s", total_inserted)
    return total_inserted


if __name__ == "__main__":
    main()
