"""
Turns aggregated records into the label/dataset structure the charting
frontend consumes.

Every dataset is positionally aligned with the labels: a missing or null
metric is emitted as 0 instead of being dropped.
"""
import calendar
import logging
import math
from datetime import date
from typing import Any, Dict, List, NamedTuple, Sequence

from pydantic.alias_generators import to_camel

from .aggregation import to_date
from .enums import RecordFamily, ViewMode
from .schemas import CandlestickPoint, ChartData, ChartDataset, SeriesPoint

logger = logging.getLogger(__name__)

PERCENT_FORMAT = "{:.2f}%"

POSITIVE_COLOR = "rgba(0, 150, 136, 0.8)"
NEGATIVE_COLOR = "rgba(255, 82, 82, 0.8)"


class SeriesSpec(NamedTuple):
    type: str
    label: str
    field: str


CHART_SPECS: Dict[RecordFamily, List[SeriesSpec]] = {
    RecordFamily.EPS: [
        SeriesSpec("bar", "EPS", "eps"),
        SeriesSpec("bar", "EPS Ngành", "eps_nganh"),
        SeriesSpec("line", "EPS Rate", "eps_rate"),
    ],
    RecordFamily.PE: [
        SeriesSpec("bar", "PE", "pe"),
        SeriesSpec("bar", "PE Ngành", "pe_nganh"),
        SeriesSpec("line", "PE Rate", "pe_rate"),
    ],
    RecordFamily.ROA_ROE: [
        SeriesSpec("bar", "ROA", "roa"),
        SeriesSpec("bar", "ROE", "roe"),
        SeriesSpec("line", "ROE Ngành", "roe_nganh"),
        SeriesSpec("line", "ROA Ngành", "roa_nganh"),
    ],
    RecordFamily.FINANCIAL_RATIO: [
        SeriesSpec("bar", "Debt/Equity", "debt_equity"),
        SeriesSpec("bar", "Assets/Equity", "assets_equity"),
        SeriesSpec("line", "Debt/Equity %", "debt_equity_pct"),
    ],
}


def field_value(record: Any, field: str) -> Any:
    if isinstance(record, dict):
        if field in record:
            return record[field]
        return record.get(to_camel(field))
    return getattr(record, field, None)


def numeric_or_zero(value: Any) -> float:
    """Display value of a metric: null, empty or NaN render as 0."""
    if value is None or value == "":
        return 0.0
    number = float(value)
    return 0.0 if math.isnan(number) else number


def format_chart_label(report_date: Any, view_mode: ViewMode) -> str:
    try:
        day = to_date(report_date)
    except (TypeError, ValueError):
        logger.warning("Cannot format chart date %r", report_date)
        return str(report_date)

    if view_mode == ViewMode.QUARTER:
        return f"Q{(day.month - 1) // 3 + 1}/{day.year}"
    return str(day.year)


def build_chart_data(records: Sequence[Any], family: RecordFamily, view_mode: ViewMode) -> ChartData:
    labels = [
        format_chart_label(field_value(record, "report_date"), view_mode) for record in records
    ]
    datasets = [
        ChartDataset(
            type=series.type,
            label=series.label,
            data=[numeric_or_zero(field_value(record, series.field)) for record in records],
            value_format=PERCENT_FORMAT if series.type == "line" else None,
        )
        for series in CHART_SPECS[family]
    ]
    return ChartData(labels=labels, datasets=datasets)


# --- Technical (Q-index) series ---

def _row_date(row: Any) -> date:
    return to_date(field_value(row, "date"))


def _timestamp(row: Any) -> int:
    # Row dates are calendar days at UTC midnight
    return calendar.timegm(_row_date(row).timetuple())


def candlestick_series(rows: Sequence[Any]) -> List[CandlestickPoint]:
    points = [
        CandlestickPoint(
            time=_timestamp(row),
            open=numeric_or_zero(field_value(row, "open")),
            high=numeric_or_zero(field_value(row, "high")),
            low=numeric_or_zero(field_value(row, "low")),
            close=numeric_or_zero(field_value(row, "close")),
        )
        for row in rows
    ]
    return sorted(points, key=lambda point: point.time)


def line_series(rows: Sequence[Any], field: str) -> List[SeriesPoint]:
    if field not in ("trend_q", "fq"):
        raise ValueError(f"Unsupported line series field: {field}")
    points = [
        SeriesPoint(time=_timestamp(row), value=numeric_or_zero(field_value(row, field)))
        for row in rows
    ]
    return sorted(points, key=lambda point: point.time)


def histogram_series(rows: Sequence[Any]) -> List[SeriesPoint]:
    points = []
    for row in rows:
        value = numeric_or_zero(field_value(row, "qv1"))
        points.append(SeriesPoint(
            time=_timestamp(row),
            value=value,
            color=POSITIVE_COLOR if value >= 0 else NEGATIVE_COLOR,
        ))
    return sorted(points, key=lambda point: point.time)

