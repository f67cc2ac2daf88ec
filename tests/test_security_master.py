"""Tests for app.instruments.security_master: CSV loading and ranked search."""

import asyncio

import httpx
import pytest

from app.broker.errors import IndexLoadFailure
from app.broker.models import Instrument
from app.instruments.security_master import (
    SecurityMaster,
    exchange_segment,
    parse_security_master,
)

HEADER = "SEM_EXM_EXCH_ID,SEM_SEGMENT,SEM_SMST_SECURITY_ID,SEM_INSTRUMENT_NAME,SEM_CUSTOM_NAME,SEM_TRADING_SYMBOL,SEM_TICK_SIZE,SEM_LOT_UNITS\n"

SAMPLE_CSV = HEADER + (
    "NSE,E,11536,EQUITY,Tata Consultancy Services,TCS,0.10,1\n"
    "NSE,E,20293,EQUITY,TCS Ltd Subsidiary,TCSL,0.05,1\n"
    "NSE,D,35001,FUTIDX,TCS Futures,TCS-FUT,0.05,175\n"
    "BSE,E,532540,EQUITY,Tata Consultancy Services,TCS,0.05,1\n"
    "NSE,E,1333,EQUITY,HDFC Bank Ltd,HDFCBANK,0.05,1\n"
)


def _inst(symbol, itype="EQUITY", segment="NSE_EQ", sid=None, name=""):
    return Instrument(
        security_id=sid or symbol,
        trading_symbol=symbol,
        name=name or symbol,
        exchange_segment=segment,
        instrument_type=itype,
    )


# ── Parsing ──────────────────────────────────────────────────────────────


class TestParse:
    def test_parses_rows_and_skips_header(self):
        instruments = parse_security_master(SAMPLE_CSV)
        assert len(instruments) == 5
        tcs = instruments[0]
        assert tcs.security_id == "11536"
        assert tcs.trading_symbol == "TCS"
        assert tcs.name == "Tata Consultancy Services"
        assert tcs.instrument_type == "EQUITY"
        assert tcs.exchange_segment == "NSE_EQ"
        assert tcs.tick_size == 0.10
        assert tcs.lot_size == 1
        assert instruments[2].lot_size == 175
        assert instruments[2].exchange_segment == "NSE_FNO"

    def test_malformed_numeric_columns_use_defaults(self):
        text = HEADER + "NSE,E,1,EQUITY,Foo Ltd,FOO,abc,xyz\n"
        [inst] = parse_security_master(text)
        assert inst.trading_symbol == "FOO"
        assert inst.tick_size == 0.05
        assert inst.lot_size == 1

    def test_missing_numeric_columns_use_defaults(self):
        text = HEADER + "NSE,E,1,EQUITY,Foo Ltd,FOO\n"
        [inst] = parse_security_master(text)
        assert inst.tick_size == 0.05
        assert inst.lot_size == 1

    def test_short_rows_dropped(self):
        text = HEADER + "NSE,E,1,EQUITY\n" + "NSE,E,2,EQUITY,Bar Ltd,BAR\n"
        instruments = parse_security_master(text)
        assert [i.trading_symbol for i in instruments] == ["BAR"]

    def test_quoted_names_with_commas(self):
        text = HEADER + 'NSE,E,7,EQUITY,"Larsen, Toubro",LT,0.05,1\n'
        [inst] = parse_security_master(text)
        assert inst.name == "Larsen, Toubro"
        assert inst.trading_symbol == "LT"

    def test_bom_is_ignored(self):
        text = "\ufeff" + HEADER + "NSE,E,1,EQUITY,Foo Ltd,FOO\n"
        assert len(parse_security_master(text)) == 1

    def test_exchange_segment_names(self):
        assert exchange_segment("nse", "e") == "NSE_EQ"
        assert exchange_segment("MCX", "M") == "MCX_COMM"
        assert exchange_segment("NSE", "I") == "NSE"


# ── Search ───────────────────────────────────────────────────────────────


class TestSearch:
    def test_ranking_exact_then_equity_then_length(self):
        index = SecurityMaster()
        index.load([
            _inst("TCS-FUT", itype="FUTIDX", segment="NSE_FNO"),
            _inst("TCSL"),
            _inst("TCS"),
        ])
        results = index.search("TCS")
        assert [i.trading_symbol for i in results] == ["TCS", "TCSL", "TCS-FUT"]

    def test_query_is_case_insensitive(self):
        index = SecurityMaster()
        index.load([_inst("TCS"), _inst("TCSL")])
        assert [i.trading_symbol for i in index.search("tcs")] == ["TCS", "TCSL"]

    def test_matches_on_name(self):
        index = SecurityMaster()
        index.load_from_text(SAMPLE_CSV)
        results = index.search("hdfc bank")
        assert [i.trading_symbol for i in results] == ["HDFCBANK"]

    def test_lexical_tiebreak(self):
        index = SecurityMaster()
        index.load([_inst("ABCZ"), _inst("ABCA"), _inst("ABCM")])
        assert [i.trading_symbol for i in index.search("ABC")] == ["ABCA", "ABCM", "ABCZ"]

    def test_exchange_filter_is_prefix(self):
        index = SecurityMaster()
        index.load_from_text(SAMPLE_CSV)
        nse = index.search("TCS", exchange="NSE")
        assert {i.exchange_segment for i in nse} == {"NSE_EQ", "NSE_FNO"}
        bse = index.search("TCS", exchange="BSE")
        assert [i.security_id for i in bse] == ["532540"]
        fno = index.search("TCS", exchange="NSE_FNO")
        assert [i.trading_symbol for i in fno] == ["TCS-FUT"]

    def test_blank_exchange_means_no_filter(self):
        index = SecurityMaster()
        index.load_from_text(SAMPLE_CSV)
        assert len(index.search("TCS", exchange="")) == 4

    def test_limit_truncates(self):
        index = SecurityMaster()
        index.load_from_text(SAMPLE_CSV)
        results = index.search("TCS", limit=2)
        assert len(results) == 2
        assert results[0].trading_symbol == "TCS"

    def test_blank_query_or_zero_limit(self):
        index = SecurityMaster()
        index.load_from_text(SAMPLE_CSV)
        assert index.search("   ") == []
        assert index.search("TCS", limit=0) == []

    def test_empty_index_returns_empty(self):
        assert SecurityMaster().search("TCS") == []

    def test_get_by_id(self):
        index = SecurityMaster()
        index.load_from_text(SAMPLE_CSV)
        assert index.get_by_id("1333").trading_symbol == "HDFCBANK"
        assert index.get_by_id("999999") is None


# ── Loading lifecycle ────────────────────────────────────────────────────


class TestLoading:
    def test_failed_load_keeps_previous_snapshot(self):
        index = SecurityMaster()
        index.load_from_text(SAMPLE_CSV)
        with pytest.raises(IndexLoadFailure):
            index.load_from_text(HEADER)
        assert index.size == 5
        assert index.search("HDFCBANK")[0].security_id == "1333"

    def test_reload_replaces_wholesale(self):
        index = SecurityMaster()
        index.load_from_text(SAMPLE_CSV)
        index.load_from_text(HEADER + "NSE,E,9,EQUITY,New Co,NEWCO\n")
        assert index.size == 1
        assert index.get_by_id("1333") is None

    def test_load_from_missing_file(self, tmp_path):
        index = SecurityMaster()
        with pytest.raises(IndexLoadFailure, match="Cannot read"):
            index.load_from_file(str(tmp_path / "missing.csv"))

    @pytest.mark.asyncio
    async def test_start_loads_file_and_signals_ready(self, tmp_path):
        path = tmp_path / "master.csv"
        path.write_text(SAMPLE_CSV, encoding="utf-8")
        index = SecurityMaster(path=str(path))

        index.start()
        assert await index.wait_ready(timeout=5)
        assert index.ready.is_set()
        assert index.size == 5

    @pytest.mark.asyncio
    async def test_start_signals_ready_on_failure(self, tmp_path):
        index = SecurityMaster(path=str(tmp_path / "missing.csv"))
        index.start()
        assert await index.wait_ready(timeout=5)
        assert index.size == 0
        assert index.search("TCS") == []

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, tmp_path):
        path = tmp_path / "master.csv"
        path.write_text(SAMPLE_CSV, encoding="utf-8")
        index = SecurityMaster(path=str(path))
        assert index.start() is index.start()
        await index.wait_ready(timeout=5)

    @pytest.mark.asyncio
    async def test_wait_ready_times_out_before_start(self):
        index = SecurityMaster()
        assert await index.wait_ready(timeout=0.01) is False

    @pytest.mark.asyncio
    async def test_refresh_from_url(self, monkeypatch):
        async def _mock_get(self, url, *, timeout=None):
            return httpx.Response(200, text=SAMPLE_CSV, request=httpx.Request("GET", url))

        monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

        index = SecurityMaster(url="https://example.invalid/master.csv")
        assert await index.refresh() is True
        assert index.size == 5

    @pytest.mark.asyncio
    async def test_refresh_http_error_keeps_snapshot(self, monkeypatch):
        async def _mock_get(self, url, *, timeout=None):
            return httpx.Response(404, text="not found", request=httpx.Request("GET", url))

        monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

        index = SecurityMaster(url="https://example.invalid/master.csv")
        index.load_from_text(SAMPLE_CSV)
        assert await index.refresh() is False
        assert index.size == 5

    @pytest.mark.asyncio
    async def test_refresh_transport_error(self, monkeypatch):
        async def _mock_get(self, url, *, timeout=None):
            raise httpx.ConnectTimeout("timed out", request=httpx.Request("GET", url))

        monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

        index = SecurityMaster(url="https://example.invalid/master.csv")
        assert await index.refresh() is False

    @pytest.mark.asyncio
    async def test_search_during_reload_sees_full_snapshot(self, tmp_path):
        path = tmp_path / "master.csv"
        path.write_text(SAMPLE_CSV, encoding="utf-8")
        index = SecurityMaster(path=str(path))
        index.load_from_text(SAMPLE_CSV)

        async def _searcher():
            sizes = set()
            for _ in range(50):
                sizes.add(len(index.search("TCS", limit=100)))
                await asyncio.sleep(0)
            return sizes

        sizes, ok = await asyncio.gather(_searcher(), index.refresh())
        assert ok is True
        assert sizes == {4}

    @pytest.mark.asyncio
    async def test_no_source_configured(self):
        assert await SecurityMaster().refresh() is False
