from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Tuple, TypeVar

import httpx
from pydantic import ValidationError

from sharealert.config import Settings
from sharealert.errors import NotFoundError, UpstreamError
from sharealert.schemas import Company, DividendYield, Quote, StockDetails, utc_now
from sharealert.services.market_cache import (
    ALL_STOCKS_KEY,
    DIVIDEND_YIELDS_KEY,
    MarketDataCache,
    details_key,
    live_key,
)
from sharealert.services.mock_data import MOCK_DIVIDEND_YIELDS, MOCK_STOCKS, mock_details, mock_stock

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _safe_float(value: Any) -> float | None:
    try:
        if value is None:
            return None
        if isinstance(value, str):
            clean = value.strip()
            if not clean:
                return None
            clean = clean.replace(",", "").replace("GH₵", "").replace("$", "").replace("%", "")
            value = clean
        return float(value)
    except (TypeError, ValueError):
        return None


def _safe_int(value: Any) -> int:
    try:
        if value is None:
            return 0
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _change_percent(price: float, change: float) -> float:
    previous_close = price - change
    if price > 0 and previous_close > 0:
        return (change / previous_close) * 100
    return 0.0


def _quote_from_live(row: Any, symbol: str | None = None) -> Quote:
    if not isinstance(row, dict):
        raise UpstreamError("live quote payload is not an object")
    price = _safe_float(row.get("price"))
    if price is None:
        raise UpstreamError("live quote payload has no price")
    change = _safe_float(row.get("change")) or 0.0
    token = str(row.get("name") or symbol or "").upper().strip()
    if not token:
        raise UpstreamError("live quote payload has no symbol")
    return Quote(
        symbol=token,
        name=token,
        current_price=price,
        previous_close=price - change,
        change=change,
        change_percent=_change_percent(price, change),
        volume=_safe_int(row.get("volume")),
        last_updated=utc_now(),
    )


def _quotes_from_live(rows: Any) -> List[Quote]:
    if not isinstance(rows, list):
        raise UpstreamError("live listing payload is not a list")
    quotes: List[Quote] = []
    for row in rows:
        try:
            quotes.append(_quote_from_live(row))
        except UpstreamError:
            continue
    if rows and not quotes:
        raise UpstreamError("live listing payload has no usable rows")
    return quotes


def _cached_list(model: Any) -> Callable[[Any], List[Any]]:
    def parse(rows: Any) -> List[Any]:
        if not isinstance(rows, list):
            raise TypeError("cached value is not a list")
        return [model.model_validate(row) for row in rows]

    return parse


def _yields_from_payload(payload: Any) -> List[DividendYield]:
    if not isinstance(payload, dict) or not payload.get("success"):
        raise UpstreamError("dividend feed returned an unsuccessful response")
    stocks = (payload.get("data") or {}).get("stocks")
    if not isinstance(stocks, list):
        raise UpstreamError("dividend feed payload has no stock list")
    out: List[DividendYield] = []
    for row in stocks:
        if not isinstance(row, dict):
            continue
        symbol = str(row.get("symbol") or "").upper().strip()
        value = _safe_float(row.get("dividend_yield"))
        if not symbol or value is None:
            continue
        out.append(
            DividendYield(
                symbol=symbol,
                name=str(row.get("name") or ""),
                dividend_yield=value,
                price=str(row.get("price") or ""),
                sector=str(row.get("sector") or ""),
            )
        )
    return out


class QuoteFetcher:
    """Resolves symbols to market data through cache → primary → proxy → mock.

    The HTTP client is injected and owned by the caller. Concurrent misses on
    the same cache key are collapsed: one caller goes upstream, the rest wait
    on its lock and then read what it cached.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: MarketDataCache,
        *,
        base_url: str,
        proxy_url: str,
        dividend_url: str,
        timeout: float = 10.0,
    ) -> None:
        self._client = client
        self._cache = cache
        self.base_url = base_url.rstrip("/")
        self.proxy_url = proxy_url
        self.dividend_url = dividend_url
        self.timeout = timeout
        self._flights: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(cls, settings: Settings, client: httpx.AsyncClient, cache: MarketDataCache) -> "QuoteFetcher":
        return cls(
            client,
            cache,
            base_url=settings.gse_base_url,
            proxy_url=settings.proxy_url,
            dividend_url=settings.dividend_api_url,
            timeout=settings.http_timeout_seconds,
        )

    def _flight(self, key: str) -> asyncio.Lock:
        lock = self._flights.get(key)
        if lock is None:
            lock = self._flights[key] = asyncio.Lock()
        return lock

    async def _cached(self, key: str, parse: Callable[[Any], T]) -> T | None:
        cached, hit = await self._cache.get(key)
        if not hit:
            return None
        try:
            return parse(cached)
        except (ValidationError, TypeError):
            await self._cache.invalidate_key(key)
            return None

    async def _get_json(self, url: str) -> Any:
        try:
            resp = await asyncio.wait_for(self._client.get(url, timeout=self.timeout), timeout=self.timeout)
        except (httpx.HTTPError, asyncio.TimeoutError) as exc:
            raise UpstreamError(f"request to {url} failed: {exc!r}") from exc
        if resp.status_code != 200:
            raise UpstreamError(f"request to {url} returned status {resp.status_code}")
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamError(f"request to {url} returned malformed JSON") from exc

    async def _fetch_with_proxy(self, url: str, parse: Callable[[Any], T]) -> Tuple[T, str]:
        try:
            result = parse(await self._get_json(url))
            logger.debug("Direct API success: %s", url)
            return result, "primary"
        except UpstreamError as exc:
            logger.info("Direct API failed (%s), trying proxy...", exc)

        if not self.proxy_url:
            raise UpstreamError(f"direct request to {url} failed and no proxy is configured")

        proxied = f"{self.proxy_url}{url}"
        try:
            result = parse(await self._get_json(proxied))
            logger.info("Proxy API success: %s", proxied)
            return result, "proxy"
        except UpstreamError as exc:
            logger.warning("Proxy API also failed: %s", exc)
            raise

    async def get_quote(self, symbol: str) -> Quote:
        token = symbol.strip().upper()
        if not token:
            raise NotFoundError("empty symbol")
        key = live_key(token)

        quote = await self._cached(key, Quote.model_validate)
        if quote is not None:
            return quote

        async with self._flight(key):
            quote = await self._cached(key, Quote.model_validate)
            if quote is not None:
                return quote

            try:
                quote, source = await self._fetch_with_proxy(
                    f"{self.base_url}/live/{token}",
                    lambda payload: _quote_from_live(payload, token),
                )
            except UpstreamError:
                row = mock_stock(token)
                if row is None:
                    raise NotFoundError(f"stock {token} not found") from None
                logger.warning("External API unavailable, serving mock quote for %s", token)
                quote = Quote(**row, last_updated=utc_now(), source="mock")
                await self._cache.set(key, quote.model_dump(mode="json"), self._cache.fallback_ttl)
                return quote

            quote = quote.model_copy(update={"source": source})
            await self._cache.set(key, quote.model_dump(mode="json"))
            return quote

    async def get_all_quotes(self) -> List[Quote]:
        quotes = await self._cached(ALL_STOCKS_KEY, _cached_list(Quote))
        if quotes is not None:
            return quotes

        async with self._flight(ALL_STOCKS_KEY):
            quotes = await self._cached(ALL_STOCKS_KEY, _cached_list(Quote))
            if quotes is not None:
                return quotes

            try:
                quotes, source = await self._fetch_with_proxy(f"{self.base_url}/live", _quotes_from_live)
            except UpstreamError:
                logger.warning("External API unavailable, serving mock stock list")
                quotes = [Quote(**row, last_updated=utc_now(), source="mock") for row in MOCK_STOCKS]
                await self._cache.set(
                    ALL_STOCKS_KEY, [quote.model_dump(mode="json") for quote in quotes], self._cache.fallback_ttl
                )
                return quotes

            quotes = [quote.model_copy(update={"source": source}) for quote in quotes]
            await self._cache.set(ALL_STOCKS_KEY, [quote.model_dump(mode="json") for quote in quotes])
            return quotes

    async def get_details(self, symbol: str) -> StockDetails:
        token = symbol.strip().upper()
        if not token:
            raise NotFoundError("empty symbol")
        key = details_key(token)

        details = await self._cached(key, StockDetails.model_validate)
        if details is not None:
            return details

        async with self._flight(key):
            details = await self._cached(key, StockDetails.model_validate)
            if details is not None:
                return details
            return await self._load_details(token, key)

    async def _load_details(self, token: str, key: str) -> StockDetails:
        def _parse_equity(payload: Any) -> dict[str, Any]:
            if not isinstance(payload, dict) or _safe_float(payload.get("price")) is None:
                raise UpstreamError("equity payload is malformed")
            return payload

        try:
            equity, source = await self._fetch_with_proxy(f"{self.base_url}/equities/{token}", _parse_equity)
        except UpstreamError:
            row = mock_details(token)
            if row is None:
                raise NotFoundError(f"stock {token} not found") from None
            details = StockDetails(**row, last_updated=utc_now(), source="mock")
            await self._cache.set(key, details.model_dump(mode="json"), self._cache.fallback_ttl)
            return details

        price = _safe_float(equity.get("price")) or 0.0
        change = 0.0
        volume = 0
        try:
            live = await self.get_quote(token)
            if live.source != "mock":
                price, change, volume = live.current_price, live.change, live.volume
        except NotFoundError:
            pass

        company_raw = equity.get("company") if isinstance(equity.get("company"), dict) else {}
        company = Company(
            name=str(company_raw.get("name") or ""),
            address=str(company_raw.get("address") or ""),
            email=str(company_raw.get("email") or ""),
            telephone=str(company_raw.get("telephone") or ""),
            website=str(company_raw.get("website") or ""),
            sector=str(company_raw.get("sector") or ""),
            industry=str(company_raw.get("industry") or ""),
            directors=[str(item) for item in company_raw.get("directors") or []],
        )
        details = StockDetails(
            symbol=str(equity.get("name") or token).upper(),
            name=company.name or token,
            current_price=price,
            previous_close=price - change,
            change=change,
            change_percent=_change_percent(price, change),
            volume=volume,
            market_cap=_safe_float(equity.get("capital")) or 0.0,
            shares=_safe_int(equity.get("shares")),
            sector=company.sector,
            industry=company.industry,
            dps=_safe_float(equity.get("dps")),
            eps=_safe_float(equity.get("eps")),
            company=company,
            source=source,
        )
        await self._cache.set(key, details.model_dump(mode="json"))
        return details

    async def get_dividend_yields(self) -> List[DividendYield]:
        rows = await self._cached(DIVIDEND_YIELDS_KEY, _cached_list(DividendYield))
        if rows is not None:
            return rows

        async with self._flight(DIVIDEND_YIELDS_KEY):
            rows = await self._cached(DIVIDEND_YIELDS_KEY, _cached_list(DividendYield))
            if rows is not None:
                return rows

            try:
                rows, source = await self._fetch_with_proxy(self.dividend_url, _yields_from_payload)
            except UpstreamError:
                logger.warning("Dividend feed unavailable, serving mock dividend yields")
                rows = [DividendYield(**row, source="mock") for row in MOCK_DIVIDEND_YIELDS]
                await self._cache.set(
                    DIVIDEND_YIELDS_KEY, [row.model_dump(mode="json") for row in rows], self._cache.fallback_ttl
                )
                return rows

            rows = [row.model_copy(update={"source": source}) for row in rows]
            await self._cache.set(DIVIDEND_YIELDS_KEY, [row.model_dump(mode="json") for row in rows])
            return rows

    async def get_dividend_yield(self, symbol: str) -> DividendYield:
        token = symbol.strip().upper()
        for row in await self.get_dividend_yields():
            if row.symbol == token:
                return row
        raise NotFoundError(f"stock {token} not found in dividend data")

    async def get_high_yield_stocks(self, min_yield: float) -> List[DividendYield]:
        return [row for row in await self.get_dividend_yields() if row.dividend_yield >= min_yield]
