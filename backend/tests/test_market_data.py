from __future__ import annotations

import asyncio

import pytest

from conftest import build_fetcher
from sharealert.errors import NotFoundError
from sharealert.services.market_cache import DIVIDEND_YIELDS_KEY, live_key


def _is_live(symbol: str):
    return lambda url: url.endswith(f"/live/{symbol}")


def test_cache_hit_serves_quote_without_network(upstream, cache) -> None:
    upstream.live["MTN"] = {"name": "MTN", "price": 1.5, "change": 0.1, "volume": 900}
    fetcher, client = build_fetcher(upstream, cache)

    async def _run():
        first = await fetcher.get_quote("mtn")
        second = await fetcher.get_quote("MTN")
        await client.aclose()
        return first, second

    first, second = asyncio.run(_run())
    assert first.current_price == 1.5
    assert first.source == "primary"
    assert second.current_price == 1.5
    assert len(upstream.calls) == 1


def test_quote_change_fields_are_derived_from_price(upstream, cache) -> None:
    upstream.live["GCB"] = {"name": "GCB", "price": 5.5, "change": 0.5, "volume": 10}
    fetcher, client = build_fetcher(upstream, cache)

    async def _run():
        try:
            return await fetcher.get_quote("GCB")
        finally:
            await client.aclose()

    quote = asyncio.run(_run())
    assert quote.previous_close == pytest.approx(5.0)
    assert quote.change_percent == pytest.approx(10.0)
    assert quote.volume == 10


def test_primary_failure_falls_back_to_proxy(upstream, cache) -> None:
    upstream.live["MTN"] = {"name": "MTN", "price": 2.0, "change": 0, "volume": 1}
    upstream.primary_down = True
    fetcher, client = build_fetcher(upstream, cache)

    async def _run():
        try:
            first = await fetcher.get_quote("MTN")
            remaining = await cache.ttl(live_key("MTN"))
            second = await fetcher.get_quote("MTN")
            return first, remaining, second
        finally:
            await client.aclose()

    quote, remaining, again = asyncio.run(_run())
    assert quote.source == "proxy"
    assert quote.current_price == 2.0
    # The proxy payload is cached like a primary one.
    assert remaining == pytest.approx(300, abs=1)
    assert again.current_price == 2.0
    assert len(upstream.calls) == 2
    assert upstream.count(lambda url: url.startswith("https://proxy.test/")) == 1


def test_primary_timeout_falls_back_to_proxy(upstream, cache) -> None:
    upstream.live["MTN"] = {"name": "MTN", "price": 2.4, "change": 0, "volume": 1}
    upstream.primary_times_out = True
    fetcher, client = build_fetcher(upstream, cache)

    async def _run():
        try:
            return await fetcher.get_quote("MTN")
        finally:
            await client.aclose()

    quote = asyncio.run(_run())
    assert quote.source == "proxy"
    assert quote.current_price == 2.4


def test_hanging_primary_is_cut_off_by_call_timeout(upstream, cache) -> None:
    upstream.live["MTN"] = {"name": "MTN", "price": 2.6, "change": 0, "volume": 1}

    async def slow_primary(request):
        if not str(request.url).startswith("https://proxy.test/"):
            await asyncio.sleep(5)
        return upstream.handler(request)

    fetcher, client = build_fetcher(upstream, cache, timeout=0.05, handler=slow_primary)

    async def _run():
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            quote = await fetcher.get_quote("MTN")
        finally:
            await client.aclose()
        return quote, loop.time() - started

    quote, elapsed = asyncio.run(_run())
    assert quote.source == "proxy"
    assert quote.current_price == 2.6
    assert elapsed < 2


def test_both_paths_down_serves_mock_with_short_ttl(upstream, cache, clock) -> None:
    upstream.primary_down = True
    upstream.proxy_down = True
    fetcher, client = build_fetcher(upstream, cache)

    async def _run():
        quote = await fetcher.get_quote("MTN")
        remaining = await cache.ttl(live_key("MTN"))
        await client.aclose()
        return quote, remaining

    quote, remaining = asyncio.run(_run())
    assert quote.source == "mock"
    assert quote.current_price == 0.82
    assert remaining is not None and remaining <= 60


def test_mock_entry_expires_and_real_data_is_fetched_again(upstream, cache, clock) -> None:
    upstream.primary_down = True
    upstream.proxy_down = True
    fetcher, client = build_fetcher(upstream, cache)

    async def _run():
        first = await fetcher.get_quote("MTN")
        upstream.primary_down = False
        upstream.proxy_down = False
        upstream.live["MTN"] = {"name": "MTN", "price": 0.9, "change": 0, "volume": 1}
        clock.advance(61)
        second = await fetcher.get_quote("MTN")
        await client.aclose()
        return first, second

    first, second = asyncio.run(_run())
    assert first.source == "mock"
    assert second.source == "primary"
    assert second.current_price == 0.9


def test_unknown_symbol_without_mock_raises_not_found(upstream, cache) -> None:
    upstream.primary_down = True
    upstream.proxy_down = True
    fetcher, client = build_fetcher(upstream, cache)

    async def _run():
        try:
            await fetcher.get_quote("NOPE")
        finally:
            await client.aclose()

    with pytest.raises(NotFoundError):
        asyncio.run(_run())


def test_malformed_primary_payload_counts_as_failure(upstream, cache) -> None:
    upstream.live["MTN"] = {"name": "MTN", "price": "not-a-number"}
    fetcher, client = build_fetcher(upstream, cache)

    async def _run():
        try:
            return await fetcher.get_quote("MTN")
        finally:
            await client.aclose()

    quote = asyncio.run(_run())
    # Primary and proxy both return the malformed payload.
    assert upstream.count(_is_live("MTN")) == 2
    assert quote.source == "mock"


def test_dividend_yields_parse_and_filter(upstream, cache) -> None:
    upstream.dividends = [
        {"symbol": "GCB", "name": "GCB Bank", "dividend_yield": "10.4", "price": "GH₵4.20", "sector": "Banking"},
        {"symbol": "MTN", "name": "MTN Ghana", "dividend_yield": 6.8, "price": "0.82", "sector": "Telecom"},
        {"symbol": "", "dividend_yield": 3.0},
    ]
    fetcher, client = build_fetcher(upstream, cache)

    async def _run():
        rows = await fetcher.get_dividend_yields()
        high = await fetcher.get_high_yield_stocks(8.0)
        single = await fetcher.get_dividend_yield("mtn")
        await client.aclose()
        return rows, high, single

    rows, high, single = asyncio.run(_run())
    assert [row.symbol for row in rows] == ["GCB", "MTN"]
    assert [row.symbol for row in high] == ["GCB"]
    assert single.dividend_yield == 6.8
    # Yields are cached after the first call.
    assert len(upstream.calls) == 1


def test_dividend_yield_missing_symbol_raises(upstream, cache) -> None:
    upstream.dividends = [{"symbol": "GCB", "dividend_yield": 10.4}]
    fetcher, client = build_fetcher(upstream, cache)

    async def _run():
        try:
            await fetcher.get_dividend_yield("ZZZ")
        finally:
            await client.aclose()

    with pytest.raises(NotFoundError):
        asyncio.run(_run())


def test_all_quotes_fall_back_to_mock_listing(upstream, cache) -> None:
    upstream.primary_down = True
    upstream.proxy_down = True
    fetcher, client = build_fetcher(upstream, cache)

    async def _run():
        try:
            return await fetcher.get_all_quotes()
        finally:
            await client.aclose()

    quotes = asyncio.run(_run())
    assert {quote.symbol for quote in quotes} == {"ACCESS", "GCB", "MTN"}
    assert all(quote.source == "mock" for quote in quotes)


def test_details_merge_equity_and_live_data(upstream, cache) -> None:
    upstream.equities["MTN"] = {
        "name": "MTN",
        "price": 1.0,
        "capital": 1000000,
        "shares": 500,
        "dps": 0.05,
        "eps": 0.1,
        "company": {"name": "MTN Ghana", "sector": "Telecom", "industry": "Mobile", "directors": ["A. Director"]},
    }
    upstream.live["MTN"] = {"name": "MTN", "price": 1.2, "change": 0.2, "volume": 77}
    fetcher, client = build_fetcher(upstream, cache)

    async def _run():
        try:
            return await fetcher.get_details("MTN")
        finally:
            await client.aclose()

    details = asyncio.run(_run())
    assert details.name == "MTN Ghana"
    assert details.current_price == 1.2
    assert details.volume == 77
    assert details.market_cap == 1000000
    assert details.company.directors == ["A. Director"]


def test_concurrent_misses_for_one_symbol_share_one_request(upstream, cache) -> None:
    upstream.live["MTN"] = {"name": "MTN", "price": 1.7, "change": 0, "volume": 3}

    async def slow_handler(request):
        await asyncio.sleep(0.01)
        return upstream.handler(request)

    fetcher, client = build_fetcher(upstream, cache, handler=slow_handler)

    async def _run():
        try:
            return await asyncio.gather(*(fetcher.get_quote("MTN") for _ in range(5)))
        finally:
            await client.aclose()

    quotes = asyncio.run(_run())
    assert [quote.current_price for quote in quotes] == [1.7] * 5
    assert upstream.count(_is_live("MTN")) == 1


def test_corrupt_cached_listing_is_discarded(upstream, cache) -> None:
    upstream.dividends = [{"symbol": "GCB", "name": "GCB Bank", "dividend_yield": "7.5%"}]
    fetcher, client = build_fetcher(upstream, cache)

    async def _run():
        await cache.set(DIVIDEND_YIELDS_KEY, {"not": "a list"})
        try:
            return await fetcher.get_dividend_yields()
        finally:
            await client.aclose()

    rows = asyncio.run(_run())
    assert [row.symbol for row in rows] == ["GCB"]
    assert len(upstream.calls) == 1
