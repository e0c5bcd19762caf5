"""Tests for the stock detail page orchestration."""

import asyncio
from datetime import date
from types import SimpleNamespace

import pytest

from stockinfo.detail_page import FUNDAMENTALS_ERROR, Q_INDICES_ERROR, StockDetailPage
from stockinfo.enums import FundamentalPeriod, RecordFamily, TechnicalPeriod, ViewMode

TODAY = date(2023, 7, 15)


class FakeSource:
    """In-memory stand-in for the REST client that records every call."""

    def __init__(self, stocks=None, records=None, q_indices=None):
        self.stocks = stocks if stocks is not None else {"VNM": SimpleNamespace(id=7, symbol="VNM")}
        self.records = records or {}
        self.q_indices = q_indices or []
        self.stock_calls = []
        self.q_index_calls = []
        self.record_calls = []
        self.failing_families = set()
        self.stock_error = None
        self.q_index_error = None

    async def get_stock_by_symbol(self, symbol):
        self.stock_calls.append(symbol)
        if self.stock_error is not None:
            raise self.stock_error
        return self.stocks[symbol]

    async def fetch_q_indices_by_stock_id(self, stock_id, sort_field="date", sort_dir="asc",
                                          start_date=None, end_date=None):
        self.q_index_calls.append((stock_id, sort_field, sort_dir, start_date, end_date))
        if self.q_index_error is not None:
            raise self.q_index_error
        return SimpleNamespace(data=list(self.q_indices))

    async def fetch_records_by_symbol(self, family, symbol, page=1, page_size=100):
        self.record_calls.append((family, symbol))
        if family in self.failing_families:
            raise RuntimeError(f"{family.value} backend down")
        return SimpleNamespace(data=list(self.records.get(family, [])))


def eps(day, value):
    return SimpleNamespace(report_date=day, eps=value, eps_nganh=None, eps_rate=None)


async def wait_for_calls(calls, count, rounds=50):
    """Yield to the event loop until ``count`` calls were recorded."""
    for _ in range(rounds):
        if len(calls) >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"expected {count} calls, saw {len(calls)}")


class TestIndicatorFetchSequencing:
    """Q-index fetches wait for the stock id and fire once per input combination."""

    @pytest.mark.asyncio
    async def test_no_fetch_until_stock_id_known(self):
        source = FakeSource()
        source.stock_error = RuntimeError("stock lookup failed")
        page = StockDetailPage(source, "vnm", today=TODAY)

        applied = await page.load_q_indices()

        assert applied is False
        assert source.q_index_calls == []
        assert page.q_indices_error == Q_INDICES_ERROR
        assert page.q_indices == []

    @pytest.mark.asyncio
    async def test_fetch_uses_stock_id_and_resolved_range(self):
        source = FakeSource(q_indices=[SimpleNamespace(date=date(2023, 7, 14))])
        page = StockDetailPage(source, "VNM", today=TODAY)

        assert await page.load_q_indices() is True
        assert source.q_index_calls == [(7, "date", "asc", "2023-04-15", "2023-07-15")]
        assert len(page.q_indices) == 1
        assert page.is_loading_q_indices is False

    @pytest.mark.asyncio
    async def test_one_fetch_per_distinct_combination(self):
        source = FakeSource()
        page = StockDetailPage(source, "VNM", today=TODAY)

        await page.load_q_indices()
        await page.load_q_indices()
        await page.set_technical_period(TechnicalPeriod.SIX_MONTHS)
        await page.set_technical_period(TechnicalPeriod.SIX_MONTHS)

        assert [call[3] for call in source.q_index_calls] == ["2023-04-15", "2023-01-15"]
        # Stock identity is cached across period changes
        assert source.stock_calls == ["VNM"]

    @pytest.mark.asyncio
    async def test_symbol_change_resolves_new_stock(self):
        source = FakeSource(stocks={
            "VNM": SimpleNamespace(id=7, symbol="VNM"),
            "FPT": SimpleNamespace(id=9, symbol="FPT"),
        })
        page = StockDetailPage(source, "VNM", today=TODAY)
        await page.load()

        await page.set_symbol("fpt")

        assert source.stock_calls[-1] == "FPT"
        assert [call[0] for call in source.q_index_calls] == [7, 9]

    @pytest.mark.asyncio
    async def test_identity_failure_clears_previous_rows(self):
        source = FakeSource(
            stocks={"VNM": SimpleNamespace(id=7, symbol="VNM")},
            q_indices=[SimpleNamespace(date=date(2023, 7, 14))],
        )
        page = StockDetailPage(source, "VNM", today=TODAY)
        await page.load_q_indices()
        assert page.q_indices

        source.stock_error = RuntimeError("gone")
        page.symbol = "HPG"
        page.stock = None
        await page.load_q_indices()

        assert page.q_indices == []
        assert page.q_indices_error == Q_INDICES_ERROR

    @pytest.mark.asyncio
    async def test_fetch_failure_allows_retry(self):
        source = FakeSource()
        source.q_index_error = RuntimeError("timeout")
        page = StockDetailPage(source, "VNM", today=TODAY)

        assert await page.load_q_indices() is False
        assert page.q_indices_error == Q_INDICES_ERROR

        source.q_index_error = None
        assert await page.load_q_indices() is True
        assert page.q_indices_error is None
        assert len(source.q_index_calls) == 2

    @pytest.mark.asyncio
    async def test_indicators_do_not_wait_for_fundamentals(self):
        release_eps = asyncio.Event()

        class SlowEpsSource(FakeSource):
            async def fetch_records_by_symbol(self, family, symbol, page=1, page_size=100):
                if family == RecordFamily.EPS:
                    await release_eps.wait()
                return await super().fetch_records_by_symbol(family, symbol, page, page_size)

        source = SlowEpsSource(q_indices=[SimpleNamespace(date=date(2023, 7, 14))])
        page = StockDetailPage(source, "VNM", today=TODAY)

        loading = asyncio.ensure_future(page.load())
        await wait_for_calls(source.q_index_calls, 1)
        await asyncio.sleep(0)

        assert page.loading is True
        assert len(page.q_indices) == 1

        release_eps.set()
        await loading
        assert page.loading is False
        # One shared lookup serves both loaders
        assert source.stock_calls == ["VNM"]


class TestStaleResponses:
    """A slow response for an older request never overwrites a newer one."""

    @pytest.mark.asyncio
    async def test_late_response_is_discarded(self):
        release_first = asyncio.Event()
        old_rows = [SimpleNamespace(date=date(2023, 5, 1), tag="3m")]
        new_rows = [SimpleNamespace(date=date(2023, 1, 1), tag="6m")]

        class SlowSource(FakeSource):
            async def fetch_q_indices_by_stock_id(self, stock_id, sort_field="date", sort_dir="asc",
                                                  start_date=None, end_date=None):
                self.q_index_calls.append(start_date)
                if start_date == "2023-04-15":
                    await release_first.wait()
                    return SimpleNamespace(data=old_rows)
                return SimpleNamespace(data=new_rows)

        source = SlowSource()
        page = StockDetailPage(source, "VNM", today=TODAY)

        first = asyncio.ensure_future(page.load_q_indices())
        await wait_for_calls(source.q_index_calls, 1)
        assert await page.set_technical_period(TechnicalPeriod.SIX_MONTHS) is True

        release_first.set()
        assert await first is False
        assert page.q_indices == new_rows

    @pytest.mark.asyncio
    async def test_symbol_switch_discards_previous_symbol_rows(self):
        release_vnm_rows = asyncio.Event()
        release_fpt_stock = asyncio.Event()

        class SwitchingSource(FakeSource):
            async def get_stock_by_symbol(self, symbol):
                self.stock_calls.append(symbol)
                if symbol == "FPT":
                    await release_fpt_stock.wait()
                return self.stocks[symbol]

            async def fetch_q_indices_by_stock_id(self, stock_id, sort_field="date", sort_dir="asc",
                                                  start_date=None, end_date=None):
                self.q_index_calls.append(stock_id)
                if stock_id == 7:
                    await release_vnm_rows.wait()
                return SimpleNamespace(data=[SimpleNamespace(date=date(2023, 7, 14), stock_id=stock_id)])

        source = SwitchingSource(stocks={
            "VNM": SimpleNamespace(id=7, symbol="VNM"),
            "FPT": SimpleNamespace(id=9, symbol="FPT"),
        })
        page = StockDetailPage(source, "VNM", today=TODAY)

        first = asyncio.ensure_future(page.load_q_indices())
        await wait_for_calls(source.q_index_calls, 1)
        switch = asyncio.ensure_future(page.set_symbol("FPT"))
        await wait_for_calls(source.stock_calls, 2)

        # VNM rows land while the FPT lookup is still pending
        release_vnm_rows.set()
        assert await first is False
        assert page.symbol == "FPT"
        assert page.q_indices == []

        release_fpt_stock.set()
        await switch
        assert [row.stock_id for row in page.q_indices] == [9]
        assert source.stock_calls == ["VNM", "FPT"]


class TestFundamentals:
    """Fundamental families load independently."""

    @pytest.mark.asyncio
    async def test_families_are_sorted_ascending(self):
        source = FakeSource(records={
            RecordFamily.EPS: [eps(date(2022, 6, 30), 2), eps(date(2021, 12, 31), 1)],
        })
        page = StockDetailPage(source, "VNM", today=TODAY)

        await page.load_fundamentals()

        assert [r.report_date for r in page.records[RecordFamily.EPS]] == [
            date(2021, 12, 31), date(2022, 6, 30),
        ]
        assert page.error is None
        assert page.loading is False
        assert {call[0] for call in source.record_calls} == set(RecordFamily)

    @pytest.mark.asyncio
    async def test_one_failing_family_does_not_block_others(self):
        source = FakeSource(records={
            RecordFamily.EPS: [eps(date(2022, 6, 30), 2)],
            RecordFamily.ROA_ROE: [SimpleNamespace(report_date=date(2022, 6, 30))],
        })
        source.failing_families.add(RecordFamily.ROA_ROE)
        page = StockDetailPage(source, "VNM", today=TODAY)
        page.records[RecordFamily.ROA_ROE] = [SimpleNamespace(report_date=date(2020, 1, 1))]

        await page.load_fundamentals()

        assert page.error == FUNDAMENTALS_ERROR
        assert page.records[RecordFamily.ROA_ROE] == []
        assert len(page.records[RecordFamily.EPS]) == 1

    @pytest.mark.asyncio
    async def test_chart_data_follows_view_and_period(self):
        source = FakeSource(records={
            RecordFamily.EPS: [
                eps(date(2021, 6, 1), 1),
                eps(date(2021, 11, 1), 2),
                eps(date(2022, 2, 1), 3),
            ],
        })
        page = StockDetailPage(source, "VNM", today=date(2022, 7, 1))
        await page.load_fundamentals()

        page.set_view_mode(ViewMode.YEAR)
        page.set_time_period(FundamentalPeriod.ALL)
        chart = page.chart_data(RecordFamily.EPS)
        assert chart.labels == ["2021", "2022"]
        assert chart.datasets[0].data == [2.0, 3.0]

        page.set_view_mode("quarter")
        page.set_time_period("1y")
        chart = page.chart_data(RecordFamily.EPS)
        assert chart.labels == ["Q4/2021", "Q1/2022"]

    @pytest.mark.asyncio
    async def test_load_reuses_stock_for_indicators(self):
        source = FakeSource()
        page = StockDetailPage(source, "VNM", today=TODAY)

        await page.load()

        assert source.stock_calls == ["VNM"]
        assert len(source.q_index_calls) == 1
        assert set(page.fundamental_charts()) == {family.value for family in RecordFamily}

    @pytest.mark.asyncio
    async def test_reload_fetches_again(self):
        source = FakeSource()
        page = StockDetailPage(source, "VNM", today=TODAY)
        await page.load()

        await page.reload()

        assert source.stock_calls == ["VNM", "VNM"]
        assert len(source.q_index_calls) == 2

    @pytest.mark.asyncio
    async def test_technical_series_from_loaded_rows(self):
        source = FakeSource(q_indices=[
            SimpleNamespace(date=date(2023, 7, 14), open=1, high=2, low=0.5, close=1.5,
                            trend_q=0.1, fq=0.2, qv1=5),
        ])
        page = StockDetailPage(source, "VNM", today=TODAY)
        await page.load_q_indices()

        series = page.technical_series()

        assert set(series) == {"candlestick", "trend_q", "fq", "qv1"}
        assert series["candlestick"][0].close == 1.5
        assert series["qv1"][0].value == 5.0
