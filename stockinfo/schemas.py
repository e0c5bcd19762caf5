from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional

from .enums import FundamentalPeriod, TechnicalPeriod, ViewMode


class CamelModel(BaseModel):
    # Pydantic v2: enable ORM mode, camelCase on the wire
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)


class Pagination(CamelModel):
    total_items: int
    item_count: int
    items_per_page: int
    total_pages: int
    current_page: int


class Stock(CamelModel):
    id: int
    symbol: str
    name: str
    exchange: Optional[str] = None
    industry: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StockList(BaseModel):
    data: List[Stock]
    pagination: Pagination


class StockQIndex(BaseModel):
    id: int
    stock_id: int
    date: date
    open: Optional[Decimal] = None
    low: Optional[Decimal] = None
    high: Optional[Decimal] = None
    close: Optional[Decimal] = None
    trend_q: Optional[float] = None
    fq: Optional[float] = None
    qv1: Optional[int] = None
    band_down: Optional[Decimal] = None
    band_up: Optional[Decimal] = None

    model_config = ConfigDict(from_attributes=True)


class StockQIndexDetail(StockQIndex):
    stock: Stock


class StockQIndexList(BaseModel):
    data: List[StockQIndex]
    pagination: Optional[Pagination] = None


class QIndexImportSummary(BaseModel):
    success: bool
    imported: int
    skipped: int
    failed: int
    errors: List[str] = Field(default_factory=list)


class UpsertImportSummary(QIndexImportSummary):
    updated: int = 0


class EpsRecord(CamelModel):
    id: int
    symbol: str
    report_date: date
    eps: Optional[float] = None
    eps_nganh: Optional[float] = None
    eps_rate: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PeRecord(CamelModel):
    id: int
    symbol: str
    report_date: date
    pe: Optional[float] = None
    pe_nganh: Optional[float] = None
    pe_rate: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RoaRoeRecord(CamelModel):
    id: int
    symbol: str
    report_date: date
    roa: Optional[float] = None
    roe: Optional[float] = None
    roe_nganh: Optional[float] = None
    roa_nganh: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FinancialRatioRecord(CamelModel):
    id: int
    symbol: str
    report_date: date
    debt_equity: Optional[float] = None
    assets_equity: Optional[float] = None
    debt_equity_pct: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class EpsRecordList(BaseModel):
    data: List[EpsRecord]
    pagination: Pagination


class PeRecordList(BaseModel):
    data: List[PeRecord]
    pagination: Pagination


class RoaRoeRecordList(BaseModel):
    data: List[RoaRoeRecord]
    pagination: Pagination


class FinancialRatioRecordList(BaseModel):
    data: List[FinancialRatioRecord]
    pagination: Pagination


class Setting(CamelModel):
    id: int
    key: str
    value: str
    description: Optional[str] = None
    type: str
    created_at: datetime
    updated_at: datetime


class Category(BaseModel):
    id: int
    title: str
    slug: str
    description: Optional[str] = None
    thumbnail: Optional[str] = None
    parent_id: Optional[int] = None
    created_at: Optional[datetime] = Field(default=None, serialization_alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, serialization_alias="updatedAt")

    model_config = ConfigDict(from_attributes=True)


class CategoryCreate(BaseModel):
    title: str = Field(min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None
    thumbnail: Optional[str] = None
    parent_id: Optional[int] = None


class CategoryUpdate(BaseModel):
    title: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    thumbnail: Optional[str] = None
    parent_id: Optional[int] = None


class ChartDataset(BaseModel):
    type: str
    label: str
    data: List[float]
    value_format: Optional[str] = None


class ChartData(BaseModel):
    labels: List[str]
    datasets: List[ChartDataset]


class FundamentalCharts(BaseModel):
    symbol: str
    period: FundamentalPeriod
    view: ViewMode
    charts: Dict[str, ChartData]


class DateRange(BaseModel):
    start_date: Optional[str] = None
    end_date: str


class SeriesPoint(BaseModel):
    time: int
    value: float
    color: Optional[str] = None


class CandlestickPoint(BaseModel):
    time: int
    open: float
    high: float
    low: float
    close: float


class TechnicalCharts(BaseModel):
    symbol: str
    period: TechnicalPeriod
    range: DateRange
    candlestick: List[CandlestickPoint]
    trend_q: List[SeriesPoint]
    fq: List[SeriesPoint]
    qv1: List[SeriesPoint]
