from __future__ import annotations

import asyncio
import fnmatch
import json
import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Protocol

from redis import asyncio as aioredis

from sharealert.config import Settings

if TYPE_CHECKING:
    from sharealert.services.market_data import QuoteFetcher

logger = logging.getLogger(__name__)

ALL_STOCKS_KEY = "stocks:all"
DIVIDEND_YIELDS_KEY = "dividends:yields"
STOCK_PATTERNS = ("stocks:*", "stock:*")


def live_key(symbol: str) -> str:
    return f"stock:live:{symbol.upper()}"


def details_key(symbol: str) -> str:
    return f"stock:details:{symbol.upper()}"


class CacheStore(Protocol):
    name: str

    async def ping(self) -> bool: ...

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, raw: str, ttl_seconds: float) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_pattern(self, pattern: str) -> int: ...

    async def ttl(self, key: str) -> float | None: ...

    async def close(self) -> None: ...


class MemoryCacheStore:
    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return raw

    async def set(self, key: str, raw: str, ttl_seconds: float) -> None:
        self._entries[key] = (raw, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def delete_pattern(self, pattern: str) -> int:
        matched = [key for key in list(self._entries) if fnmatch.fnmatchcase(key, pattern)]
        for key in matched:
            self._entries.pop(key, None)
        return len(matched)

    async def ttl(self, key: str) -> float | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        remaining = entry[1] - self._clock()
        return remaining if remaining > 0 else None

    async def close(self) -> None:
        self._entries.clear()


class RedisCacheStore:
    name = "redis"

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisCacheStore":
        if settings.redis_url:
            client = aioredis.Redis.from_url(settings.redis_url, decode_responses=True)
        else:
            client = aioredis.Redis(
                host=settings.redis_host,
                port=settings.redis_port,
                password=settings.redis_password or None,
                db=settings.redis_db,
                decode_responses=True,
            )
        return cls(client)

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, raw: str, ttl_seconds: float) -> None:
        await self._client.set(key, raw, px=max(1, int(ttl_seconds * 1000)))

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def delete_pattern(self, pattern: str) -> int:
        keys = [key async for key in self._client.scan_iter(match=pattern)]
        if not keys:
            return 0
        return int(await self._client.delete(*keys))

    async def ttl(self, key: str) -> float | None:
        remaining_ms = await self._client.pttl(key)
        if remaining_ms is None or remaining_ms < 0:
            return None
        return remaining_ms / 1000.0

    async def close(self) -> None:
        await self._client.aclose()


class MarketDataCache:
    """Read-through cache for upstream market data.

    Values are stored as JSON. Any failure of the underlying store degrades
    to a miss (reads) or a no-op (writes); callers never see store errors.
    Once ``connect`` finds the store unreachable, the cache stays disabled
    for the life of the process.
    """

    def __init__(self, store: CacheStore | None, *, default_ttl: float = 300, fallback_ttl: float = 60) -> None:
        self._store = store
        self.default_ttl = default_ttl
        self.fallback_ttl = fallback_ttl

    @property
    def enabled(self) -> bool:
        return self._store is not None

    @property
    def backend(self) -> str:
        return self._store.name if self._store is not None else "disabled"

    async def connect(self) -> bool:
        if self._store is None:
            return False
        try:
            ok = await self._store.ping()
        except Exception as exc:
            ok = False
            logger.warning("Cache store %s unreachable: %s", self._store.name, exc)
        if not ok:
            logger.warning("Continuing without market data cache.")
            await self._close_quietly()
            self._store = None
            return False
        logger.info("Market data cache connected (%s).", self._store.name)
        return True

    async def get(self, key: str) -> tuple[Any, bool]:
        if self._store is None:
            return None, False
        try:
            raw = await self._store.get(key)
        except Exception as exc:
            logger.warning("Cache get failed for %s: %s", key, exc)
            return None, False
        if raw is None:
            return None, False
        try:
            return json.loads(raw), True
        except (TypeError, ValueError):
            logger.warning("Discarding undecodable cache entry %s", key)
            await self.invalidate_key(key)
            return None, False

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        if self._store is None:
            return
        try:
            raw = json.dumps(value, default=str)
        except (TypeError, ValueError) as exc:
            logger.warning("Refusing to cache unserialisable value for %s: %s", key, exc)
            return
        try:
            await self._store.set(key, raw, self.default_ttl if ttl is None else ttl)
        except Exception as exc:
            logger.warning("Cache set failed for %s: %s", key, exc)

    async def invalidate(self, pattern: str) -> int:
        if self._store is None:
            return 0
        try:
            return await self._store.delete_pattern(pattern)
        except Exception as exc:
            logger.warning("Cache invalidation failed for pattern %s: %s", pattern, exc)
            return 0

    async def invalidate_key(self, key: str) -> None:
        if self._store is None:
            return
        try:
            await self._store.delete(key)
        except Exception as exc:
            logger.warning("Cache delete failed for %s: %s", key, exc)

    async def ttl(self, key: str) -> float | None:
        if self._store is None:
            return None
        try:
            return await self._store.ttl(key)
        except Exception:
            return None

    async def invalidate_stock_cache(self) -> int:
        removed = 0
        for pattern in STOCK_PATTERNS:
            removed += await self.invalidate(pattern)
        logger.info("Stock cache invalidated (%d keys).", removed)
        return removed

    async def invalidate_symbol(self, symbol: str) -> None:
        for key in (live_key(symbol), details_key(symbol), ALL_STOCKS_KEY):
            await self.invalidate_key(key)
        logger.info("Cache invalidated for stock symbol %s", symbol.upper())

    async def stats(self, symbols: list[str] | None = None) -> dict[str, Any]:
        keys = [ALL_STOCKS_KEY, DIVIDEND_YIELDS_KEY] + [live_key(symbol) for symbol in (symbols or [])]
        present: dict[str, float] = {}
        for key in keys:
            remaining = await self.ttl(key)
            if remaining is not None:
                present[key] = round(remaining, 1)
        return {
            "backend": self.backend,
            "enabled": self.enabled,
            "cached_keys": len(present),
            "total_checked": len(keys),
            "ttl_seconds": present,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def warmup(self, fetcher: "QuoteFetcher", symbols: list[str]) -> dict[str, Any]:
        logger.info("Starting cache warmup for %d symbols...", len(symbols))
        failures: list[str] = []
        try:
            await fetcher.get_all_quotes()
        except Exception as exc:
            logger.warning("Failed to warm up all-stocks cache: %s", exc)
            failures.append(ALL_STOCKS_KEY)

        async def _warm(symbol: str) -> None:
            try:
                await fetcher.get_quote(symbol)
            except Exception as exc:
                logger.warning("Failed to warm up stock %s: %s", symbol, exc)
                failures.append(live_key(symbol))
            try:
                await fetcher.get_details(symbol)
            except Exception as exc:
                logger.warning("Failed to warm up stock details %s: %s", symbol, exc)
                failures.append(details_key(symbol))

        await asyncio.gather(*(_warm(symbol) for symbol in symbols))
        logger.info("Cache warmup completed with %d failures.", len(failures))
        return {"symbols": [symbol.upper() for symbol in symbols], "failures": failures}

    async def close(self) -> None:
        await self._close_quietly()

    async def _close_quietly(self) -> None:
        if self._store is None:
            return
        try:
            await self._store.close()
        except Exception:
            logger.debug("Ignoring error while closing cache store", exc_info=True)


def build_market_cache(settings: Settings) -> MarketDataCache:
    store: CacheStore = RedisCacheStore.from_settings(settings) if settings.redis_enabled else MemoryCacheStore()
    return MarketDataCache(
        store,
        default_ttl=settings.stock_cache_ttl_seconds,
        fallback_ttl=settings.fallback_cache_ttl_seconds,
    )
