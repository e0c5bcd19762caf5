"""
Render-scoped state of the stock detail page and the fetches that fill it.

Fundamental-ratio families are fetched concurrently and each one owns its
own slice of state. The Q-index fetch is sequenced behind the stock identity
(rows are keyed by stock id, not symbol) and guarded by a request generation
so a late response never overwrites the result of a newer request.
"""
import asyncio
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Protocol, Tuple

from . import charts
from .aggregation import process_records, sort_by_report_date
from .enums import FundamentalPeriod, RecordFamily, TechnicalPeriod, ViewMode
from .schemas import ChartData
from .windows import resolve_date_range

logger = logging.getLogger(__name__)

FUNDAMENTALS_ERROR = "Có lỗi xảy ra khi tải dữ liệu. Vui lòng thử lại sau."
Q_INDICES_ERROR = "Không thể tải dữ liệu biểu đồ phân tích. Vui lòng thử lại sau."

RECORDS_PAGE_SIZE = 100


class StockDataSource(Protocol):
    async def get_stock_by_symbol(self, symbol: str) -> Any: ...

    async def fetch_q_indices_by_stock_id(
        self,
        stock_id: int,
        sort_field: str = "date",
        sort_dir: str = "asc",
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> Any: ...

    async def fetch_records_by_symbol(
        self, family: RecordFamily, symbol: str, page: int = 1, page_size: int = 100
    ) -> Any: ...


class StockDetailPage:
    def __init__(self, source: StockDataSource, symbol: str, today: Optional[date] = None):
        self.source = source
        self.symbol = symbol.upper()
        self.today = today

        self.stock = None
        self.records: Dict[RecordFamily, list] = {family: [] for family in RecordFamily}
        self.loading = False
        self.error: Optional[str] = None

        self.q_indices: list = []
        self.is_loading_q_indices = False
        self.q_indices_error: Optional[str] = None

        self.view_mode = ViewMode.QUARTER
        self.time_period = FundamentalPeriod.THREE_YEARS
        self.technical_period = TechnicalPeriod.THREE_MONTHS

        self._generation = 0
        self._last_fetch_key: Optional[Tuple[str, TechnicalPeriod, Any]] = None
        # (symbol, task) of the stock lookup in flight, shared by both loaders
        self._stock_lookup: Optional[Tuple[str, asyncio.Future]] = None

    # --- loading ---

    async def load(self) -> None:
        await asyncio.gather(self.load_fundamentals(), self.load_q_indices())

    async def reload(self) -> None:
        self.stock = None
        self._stock_lookup = None
        self._last_fetch_key = None
        await self.load()

    async def _resolve_stock(self):
        """Stock for the current symbol, fetched once and cached in page state.

        Returns None when the symbol changed while the lookup was in flight.
        """
        if self.stock is not None:
            return self.stock
        symbol = self.symbol
        if self._stock_lookup is None or self._stock_lookup[0] != symbol:
            self._stock_lookup = (symbol, asyncio.ensure_future(self.source.get_stock_by_symbol(symbol)))
        lookup = self._stock_lookup[1]
        try:
            stock = await lookup
        finally:
            if self._stock_lookup is not None and self._stock_lookup[1] is lookup:
                self._stock_lookup = None
        if symbol != self.symbol:
            return None
        self.stock = stock
        return stock

    async def _load_stock_info(self) -> None:
        try:
            await self._resolve_stock()
        except Exception:
            logger.exception("Error fetching stock %s", self.symbol)
            self.error = FUNDAMENTALS_ERROR

    async def _load_family(self, family: RecordFamily) -> None:
        symbol = self.symbol
        try:
            response = await self.source.fetch_records_by_symbol(
                family, symbol, 1, RECORDS_PAGE_SIZE
            )
        except Exception:
            logger.exception("Error fetching %s records for %s", family.value, symbol)
            if symbol == self.symbol:
                self.records[family] = []
                self.error = FUNDAMENTALS_ERROR
            return

        if symbol != self.symbol:
            return
        self.records[family] = sort_by_report_date(response.data)

    async def load_fundamentals(self) -> None:
        self.loading = True
        self.error = None
        try:
            await asyncio.gather(
                self._load_stock_info(),
                *(self._load_family(family) for family in RecordFamily),
            )
        finally:
            self.loading = False

    def _fail_q_indices(self) -> None:
        self.q_indices = []
        self.q_indices_error = Q_INDICES_ERROR
        self.is_loading_q_indices = False

    async def load_q_indices(self) -> bool:
        """Fetch Q-index rows for the current (symbol, technical period).

        Returns True when a response was applied to page state.
        """
        symbol = self.symbol
        try:
            stock = await self._resolve_stock()
        except Exception:
            logger.exception("Error fetching stock %s for Q-indices", symbol)
            if symbol == self.symbol:
                # Drop whatever indicator request is still in flight
                self._generation += 1
                self._last_fetch_key = None
                self._fail_q_indices()
            return False
        if stock is None:
            return False

        key = (self.symbol, self.technical_period, stock.id)
        if key == self._last_fetch_key:
            return False
        self._last_fetch_key = key

        self._generation += 1
        generation = self._generation
        self.is_loading_q_indices = True
        self.q_indices_error = None

        date_range = resolve_date_range(self.technical_period, self.today)
        try:
            response = await self.source.fetch_q_indices_by_stock_id(
                stock.id, "date", "asc", date_range.start_date, date_range.end_date
            )
        except Exception:
            logger.exception("Error fetching Q-indices for %s", symbol)
            if generation == self._generation and symbol == self.symbol:
                self._last_fetch_key = None
                self._fail_q_indices()
            return False

        if generation != self._generation or symbol != self.symbol:
            logger.debug("Discarding stale Q-index response for %s (generation %s)", symbol, generation)
            return False
        self.q_indices = list(response.data or [])
        self.is_loading_q_indices = False
        return True

    # --- inputs ---

    async def set_symbol(self, symbol: str) -> None:
        symbol = symbol.upper()
        if symbol == self.symbol:
            return
        self.symbol = symbol
        self.stock = None
        self._stock_lookup = None
        self.records = {family: [] for family in RecordFamily}
        # Rows and requests of the previous symbol no longer apply
        self._generation += 1
        self._last_fetch_key = None
        self.q_indices = []
        self.q_indices_error = None
        await self.load()

    async def set_technical_period(self, period: TechnicalPeriod) -> bool:
        self.technical_period = TechnicalPeriod(period)
        return await self.load_q_indices()

    def set_view_mode(self, view_mode: ViewMode) -> None:
        self.view_mode = ViewMode(view_mode)

    def set_time_period(self, period: FundamentalPeriod) -> None:
        self.time_period = FundamentalPeriod(period)

    # --- derived output ---

    def processed_records(self, family: RecordFamily) -> list:
        return process_records(self.records[family], self.time_period, self.view_mode, self.today)

    def chart_data(self, family: RecordFamily) -> ChartData:
        return charts.build_chart_data(self.processed_records(family), family, self.view_mode)

    def fundamental_charts(self) -> Dict[str, ChartData]:
        return {family.value: self.chart_data(family) for family in RecordFamily}

    def technical_series(self) -> Dict[str, List[Any]]:
        return {
            "candlestick": charts.candlestick_series(self.q_indices),
            "trend_q": charts.line_series(self.q_indices, "trend_q"),
            "fq": charts.line_series(self.q_indices, "fq"),
            "qv1": charts.histogram_series(self.q_indices),
        }
