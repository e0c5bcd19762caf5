"""
Maps a period selector to the concrete date range sent to the fetch layer.
"""
from datetime import date
from typing import NamedTuple, Optional, Union

import pandas as pd

from .enums import FundamentalPeriod, TechnicalPeriod

Period = Union[FundamentalPeriod, TechnicalPeriod]

DATE_FORMAT = "%Y-%m-%d"

# Calendar interval subtracted from today, keyed by period tag (both scales share "1y" and "5y")
_OFFSETS = {
    "3m": pd.DateOffset(months=3),
    "6m": pd.DateOffset(months=6),
    "1y": pd.DateOffset(years=1),
    "3y": pd.DateOffset(years=3),
    "5y": pd.DateOffset(years=5),
}


class DateRange(NamedTuple):
    start_date: Optional[str]
    end_date: str


def format_date(value: date) -> str:
    return value.strftime(DATE_FORMAT)


def cutoff_date(period: Period, today: Optional[date] = None) -> Optional[date]:
    """Lower bound of the window, or None when the period has no lower bound (``all``)."""
    tag = getattr(period, "value", period)
    if tag == FundamentalPeriod.ALL.value:
        return None
    if tag not in _OFFSETS:
        raise ValueError(f"Unknown time period: {period!r}")

    today = today or date.today()
    # Days missing from the target month clamp to its last day
    return (pd.Timestamp(today) - _OFFSETS[tag]).date()


def resolve_date_range(period: Period, today: Optional[date] = None) -> DateRange:
    today = today or date.today()
    start = cutoff_date(period, today)
    return DateRange(
        start_date=format_date(start) if start is not None else None,
        end_date=format_date(today),
    )
