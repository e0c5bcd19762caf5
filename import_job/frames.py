"""
Column and value normalization shared by the CSV importers.
"""
import re

import pandas as pd

from stockinfo.database import engine
from stockinfo import models

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_DAY_FIRST = r"\d{1,2}/\d{1,2}/\d{4}"


def ensure_db_schema():
    models.Base.metadata.create_all(bind=engine)


def snake_case(name) -> str:
    """``reportDate``, ``Report Date`` and ``report_date`` all map to ``report_date``."""
    name = _CAMEL_BOUNDARY.sub("_", str(name).strip())
    return re.sub(r"[\s\-]+", "_", name).lower()


def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [snake_case(col) for col in df.columns]
    return df


def text_or_empty(value) -> str:
    return "" if pd.isna(value) else str(value).strip()


def none_if_missing(value):
    return None if pd.isna(value) else value


def parse_dates(values: pd.Series) -> pd.Series:
    """Parse DD/MM/YYYY or ISO dates; anything else becomes NaT."""
    text = values.map(text_or_empty)
    day_first = text.str.fullmatch(_DAY_FIRST)
    parsed_day_first = pd.to_datetime(text.where(day_first), format="%d/%m/%Y", errors="coerce")
    parsed_iso = pd.to_datetime(
        text.where(~day_first), format="ISO8601", errors="coerce", utc=True
    ).dt.tz_convert(None)
    return parsed_day_first.fillna(parsed_iso)
