"""
Quarter/year bucketing of fundamental-ratio records.

Works on any record that carries a report date: ORM rows, pydantic schemas or
plain dicts straight from the API.
"""
import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from .enums import FundamentalPeriod, ViewMode
from .windows import cutoff_date

logger = logging.getLogger(__name__)

T = TypeVar("T")


def to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        # Accept both "2022-02-01" and full ISO timestamps
        if "T" in value:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        return date.fromisoformat(value)
    raise TypeError(f"Cannot interpret {value!r} as a report date")


def report_date_of(record: Any) -> date:
    if isinstance(record, dict):
        value = record.get("report_date", record.get("reportDate"))
    else:
        value = getattr(record, "report_date")
    return to_date(value)


def filter_by_period(
    records: Sequence[T],
    period: FundamentalPeriod,
    today: Optional[date] = None,
    key: Callable[[T], date] = report_date_of,
) -> List[T]:
    """Drop records reported strictly before the period's cutoff; ``all`` keeps everything."""
    cutoff = cutoff_date(period, today)
    if cutoff is None:
        return list(records)
    return [record for record in records if key(record) >= cutoff]


def reduce_by_view_mode(
    records: Sequence[T],
    view_mode: ViewMode,
    key: Callable[[T], date] = report_date_of,
) -> List[T]:
    if view_mode == ViewMode.QUARTER:
        return list(records)

    # year -> latest record seen so far for that year
    latest_by_year: Dict[int, T] = {}
    for record in records:
        year = key(record).year
        current = latest_by_year.get(year)
        if current is None or key(record) > key(current):
            latest_by_year[year] = record

    return sorted(latest_by_year.values(), key=key)


def process_records(
    records: Sequence[T],
    period: FundamentalPeriod,
    view_mode: ViewMode,
    today: Optional[date] = None,
    key: Callable[[T], date] = report_date_of,
) -> List[T]:
    filtered = filter_by_period(records, period, today, key=key)
    processed = reduce_by_view_mode(filtered, view_mode, key=key)
    logger.debug(
        "Aggregated %s records to %s (period=%s, view=%s)",
        len(records), len(processed), period, view_mode,
    )
    return processed


def sort_by_report_date(records: Sequence[T], key: Callable[[T], date] = report_date_of) -> List[T]:
    return sorted(records, key=key)
