"""
Async client for the stockinfo REST API, one method per service call the
stock detail page makes.
"""
import logging
import os
from typing import List, Optional

import httpx
from dotenv import load_dotenv

from . import schemas
from .enums import RecordFamily

load_dotenv()

logger = logging.getLogger(__name__)

API_URL = os.getenv("STOCKINFO_API_URL", "http://localhost:8000")
HTTP_TIMEOUT = float(os.getenv("STOCKINFO_HTTP_TIMEOUT", "10"))

# Charts want the whole window in one page
MAX_PAGE_SIZE = 10000

RECORD_PATHS = {
    RecordFamily.EPS: ("eps-records", schemas.EpsRecordList),
    RecordFamily.PE: ("pe-records", schemas.PeRecordList),
    RecordFamily.ROA_ROE: ("roa-roe-records", schemas.RoaRoeRecordList),
    RecordFamily.FINANCIAL_RATIO: ("financial-ratio-records", schemas.FinancialRatioRecordList),
}


class StockApiClient:
    def __init__(
        self,
        base_url: str = API_URL,
        timeout: float = HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "StockApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: Optional[dict] = None) -> dict:
        response = await self._client.get(path, params=params)
        response.raise_for_status()
        return response.json()

    async def get_stock_by_symbol(self, symbol: str) -> schemas.Stock:
        data = await self._get(f"/stocks/symbol/{symbol}")
        return schemas.Stock.model_validate(data)

    async def fetch_q_indices_by_stock_id(
        self,
        stock_id: int,
        sort_field: str = "date",
        sort_dir: str = "asc",
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> schemas.StockQIndexList:
        params = {"sortBy": sort_field, "sortOrder": sort_dir, "page": 1, "limit": MAX_PAGE_SIZE}
        if start_date:
            params["date_from"] = start_date
        if end_date:
            params["date_to"] = end_date
        logger.debug("Fetching Q-indices for stock %s (%s..%s)", stock_id, start_date, end_date)
        data = await self._get(f"/stocks/{stock_id}/qindices", params=params)
        return schemas.StockQIndexList.model_validate(data)

    async def fetch_records_by_symbol(
        self, family: RecordFamily, symbol: str, page: int = 1, page_size: int = 100
    ):
        path, response_model = RECORD_PATHS[family]
        data = await self._get(f"/{path}/symbol/{symbol}", params={"page": page, "limit": page_size})
        return response_model.model_validate(data)

    async def fetch_eps_records_by_symbol(self, symbol: str, page: int = 1, page_size: int = 100):
        return await self.fetch_records_by_symbol(RecordFamily.EPS, symbol, page, page_size)

    async def fetch_pe_records_by_symbol(self, symbol: str, page: int = 1, page_size: int = 100):
        return await self.fetch_records_by_symbol(RecordFamily.PE, symbol, page, page_size)

    async def fetch_roa_roe_records_by_symbol(self, symbol: str, page: int = 1, page_size: int = 100):
        return await self.fetch_records_by_symbol(RecordFamily.ROA_ROE, symbol, page, page_size)

    async def fetch_financial_ratio_records_by_symbol(
        self, symbol: str, page: int = 1, page_size: int = 100
    ):
        return await self.fetch_records_by_symbol(
            RecordFamily.FINANCIAL_RATIO, symbol, page, page_size
        )

    async def get_setting(self, key: str) -> schemas.Setting:
        data = await self._get(f"/settings/{key}")
        return schemas.Setting.model_validate(data)

    async def search_stocks(self, query: str) -> List[schemas.Stock]:
        data = await self._get("/stocks/search", params={"q": query})
        return [schemas.Stock.model_validate(item) for item in data]
