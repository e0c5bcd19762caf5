import argparse
import logging
import os
import sys
from typing import Dict, List, Tuple

import pandas as pd
from sqlalchemy.orm import Session

# Ensure imports work both when executed as a module and as a script
try:
    from stockinfo.database import SessionLocal
    from stockinfo import crud
    from stockinfo.enums import RecordFamily
    from import_job.frames import (
        ensure_db_schema,
        none_if_missing,
        normalize_columns,
        parse_dates,
        text_or_empty,
    )
except ModuleNotFoundError:
    project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)
    from stockinfo.database import SessionLocal
    from stockinfo import crud
    from stockinfo.enums import RecordFamily
    from import_job.frames import (
        ensure_db_schema,
        none_if_missing,
        normalize_columns,
        parse_dates,
        text_or_empty,
    )


logger = logging.getLogger(__name__)

STOCKS = "stocks"

# Column widths of the stocks table
STOCK_FIELD_LIMITS = {"symbol": 20, "name": 255, "exchange": 50, "industry": 255}


def _empty_summary() -> dict:
    return {"success": False, "imported": 0, "updated": 0, "skipped": 0, "failed": 0, "errors": []}


def _missing_columns(df: pd.DataFrame, required) -> List[str]:
    return [col for col in required if col not in df.columns]


def import_stock_frame(db: Session, df: pd.DataFrame) -> dict:
    """Create or refresh stocks from ``symbol,name[,exchange,industry]`` rows.

    Existing symbols get their name, exchange and industry overwritten. When a
    symbol repeats within the file, its last row wins.
    """
    summary = _empty_summary()
    df = normalize_columns(df)

    missing = _missing_columns(df, ("symbol", "name"))
    if missing:
        summary["errors"].append(f"Missing required columns: {', '.join(missing)}")
        summary["failed"] = len(df)
        return summary

    rows: Dict[str, dict] = {}
    errors: List[str] = []
    valid = 0
    for position, (_, row) in enumerate(df.iterrows(), start=1):
        values = {
            field: text_or_empty(row[field]) if field in df.columns else ""
            for field in STOCK_FIELD_LIMITS
        }
        if not values["symbol"] or not values["name"]:
            errors.append(f"Row {position}: missing symbol or name")
            continue

        values["symbol"] = values["symbol"].upper()
        stock = {field: values[field][:limit] or None for field, limit in STOCK_FIELD_LIMITS.items()}
        rows[stock["symbol"]] = stock
        valid += 1

    created, updated = crud.upsert_stocks(db, list(rows.values()))

    summary["imported"] = created
    summary["updated"] = updated
    summary["skipped"] = valid - len(rows)
    summary["failed"] = len(errors)
    summary["errors"] = errors
    summary["success"] = not errors
    logger.info(
        "Stock import: %s created, %s updated, %s skipped, %s failed",
        created, updated, summary["skipped"], len(errors),
    )
    return summary


def import_record_frame(db: Session, family: RecordFamily, df: pd.DataFrame) -> dict:
    """Create or overwrite fundamental-ratio records keyed on ``(symbol, report_date)``.

    Headers may be camelCase (``reportDate``, ``epsNganh``) or snake_case;
    report dates may be DD/MM/YYYY or ISO. Rows for symbols with no stock are
    reported in ``errors``.
    """
    summary = _empty_summary()
    df = normalize_columns(df)

    missing = _missing_columns(df, ("symbol", "report_date"))
    if missing:
        summary["errors"].append(f"Missing required columns: {', '.join(missing)}")
        summary["failed"] = len(df)
        return summary

    metrics = crud.RECORD_METRIC_COLUMNS[family]
    for col in metrics:
        if col not in df.columns:
            df[col] = None
        df[col] = pd.to_numeric(df[col], errors="coerce")

    df["symbol"] = df["symbol"].map(text_or_empty).str.upper()
    df["report_date"] = parse_dates(df["report_date"])

    known_symbols = set(crud.get_stock_ids_by_symbol(db, sorted(df["symbol"].unique().tolist())))

    rows: Dict[Tuple[str, object], dict] = {}
    errors: List[str] = []
    valid = 0
    for position, (_, row) in enumerate(df.iterrows(), start=1):
        symbol = row["symbol"]
        if not symbol:
            errors.append(f"Row {position}: missing symbol")
            continue
        if pd.isna(row["report_date"]):
            errors.append(f"Row {position}: invalid report date")
            continue
        if symbol not in known_symbols:
            errors.append(f"Row {position}: unknown symbol '{symbol}'")
            continue

        record = {"symbol": symbol, "report_date": row["report_date"].date()}
        for col in metrics:
            value = none_if_missing(row[col])
            record[col] = float(value) if value is not None else None
        # Later rows for the same report overwrite earlier ones
        rows[(symbol, record["report_date"])] = record
        valid += 1

    created, updated = crud.upsert_records(db, family, list(rows.values()))

    summary["imported"] = created
    summary["updated"] = updated
    summary["skipped"] = valid - len(rows)
    summary["failed"] = len(errors)
    summary["errors"] = errors
    summary["success"] = not errors
    logger.info(
        "%s import: %s created, %s updated, %s skipped, %s failed",
        family.value, created, updated, summary["skipped"], len(errors),
    )
    return summary


def import_csv_file(db: Session, kind: str, path: str) -> dict:
    logger.info("Importing %s from %s", kind, path)
    df = pd.read_csv(path)
    if df.empty:
        logger.warning("No rows in %s", path)
    if kind == STOCKS:
        return import_stock_frame(db, df)
    return import_record_frame(db, RecordFamily(kind), df)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Import stocks or fundamental-ratio records from CSV files.")
    parser.add_argument("kind", choices=[STOCKS] + [family.value for family in RecordFamily])
    parser.add_argument("files", nargs="+", help="CSV files with a header row")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    logger.info("Starting %s import job", args.kind)
    ensure_db_schema()

    total_written = 0
    with SessionLocal() as db:
        for path in args.files:
            try:
                summary = import_csv_file(db, args.kind, path)
                total_written += summary["imported"] + summary["updated"]
                for error in summary["errors"]:
                    logger.warning("%s: %s", path, error)
            except Exception as exc:
                logger.exception("Failed processing %s: %s", path, exc)

    logger.info("Job finished. Total rows written: %s", total_written)
    return total_written


if __name__ == "__main__":
    main()
