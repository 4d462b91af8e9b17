from __future__ import annotations

from typing import Any, Callable
from urllib.parse import unquote

import httpx
import pytest

from sharealert.config import Settings
from sharealert.schemas import Alert, User, UserPreferences
from sharealert.services import activity_log
from sharealert.services.alert_repository import AlertRepository
from sharealert.services.market_cache import MarketDataCache, MemoryCacheStore
from sharealert.services.market_data import QuoteFetcher
from sharealert.services.user_repository import UserRepository

BASE_URL = "https://gse.test/api"
PROXY_URL = "https://proxy.test/raw?url="
DIVIDEND_URL = "https://dividends.test/stocks"


@pytest.fixture(autouse=True)
def _no_supabase(monkeypatch):
    monkeypatch.setattr("sharealert.services.activity_log.get_supabase", lambda: None)
    activity_log.clear_recent_activity()
    yield
    activity_log.clear_recent_activity()


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Upstream:
    """Routes fake GSE / proxy / dividend-feed requests and counts them."""

    def __init__(self) -> None:
        self.live: dict[str, Any] = {}
        self.listing: list[dict[str, Any]] | None = None
        self.equities: dict[str, Any] = {}
        self.dividends: list[dict[str, Any]] | None = None
        self.primary_down = False
        self.proxy_down = False
        self.primary_times_out = False
        self.calls: list[str] = []

    def count(self, predicate: Callable[[str], bool]) -> int:
        return sum(1 for url in self.calls if predicate(url))

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls.append(url)
        via_proxy = url.startswith("https://proxy.test/")
        if via_proxy:
            if self.proxy_down:
                return httpx.Response(503)
            url = unquote(url.split("url=", 1)[1])
        elif self.primary_times_out:
            raise httpx.ReadTimeout("primary timed out", request=request)
        elif self.primary_down:
            return httpx.Response(502)

        if url == DIVIDEND_URL:
            if self.dividends is None:
                return httpx.Response(404)
            return httpx.Response(200, json={"success": True, "data": {"stocks": self.dividends}})
        if url == f"{BASE_URL}/live":
            if self.listing is None:
                return httpx.Response(404)
            return httpx.Response(200, json=self.listing)
        if url.startswith(f"{BASE_URL}/live/"):
            symbol = url.rsplit("/", 1)[1]
            if symbol not in self.live:
                return httpx.Response(404)
            return httpx.Response(200, json=self.live[symbol])
        if url.startswith(f"{BASE_URL}/equities/"):
            symbol = url.rsplit("/", 1)[1]
            if symbol not in self.equities:
                return httpx.Response(404)
            return httpx.Response(200, json=self.equities[symbol])
        return httpx.Response(404)


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> MarketDataCache:
    return MarketDataCache(MemoryCacheStore(clock=clock), default_ttl=300, fallback_ttl=60)


def build_fetcher(
    upstream: Upstream, cache: MarketDataCache, *, timeout: float = 2.0, handler: Callable | None = None
) -> tuple[QuoteFetcher, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler or upstream.handler))
    fetcher = QuoteFetcher(
        client,
        cache,
        base_url=BASE_URL,
        proxy_url=PROXY_URL,
        dividend_url=DIVIDEND_URL,
        timeout=timeout,
    )
    return fetcher, client


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "gse_base_url": BASE_URL,
        "proxy_url": PROXY_URL,
        "dividend_api_url": DIVIDEND_URL,
        "http_timeout_seconds": 2.0,
        "monitor_enabled_families": [],
        "shutdown_grace_seconds": 1,
    }
    values.update(overrides)
    return Settings(**values)


def make_alert(alert_id: str, kind: str, symbol: str = "MTN", **fields: Any) -> Alert:
    return Alert(id=alert_id, user_id=fields.pop("user_id", "user-1"), stock_symbol=symbol, alert_type=kind, **fields)


def seeded_stores(*alerts: Alert) -> tuple[AlertRepository, UserRepository]:
    alert_repo = AlertRepository()
    for alert in alerts:
        alert_repo.create(alert)
    users = UserRepository()
    users.add_user(User(id="user-1", email="ama@example.com", name="Ama"), UserPreferences(user_id="user-1"))
    return alert_repo, users


class RecordingSender:
    def __init__(self, result: bool = True, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.requests = []

    async def send(self, request) -> bool:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.result


class AlertTableClient:
    """Chainable stand-in for the Supabase alerts table: selects return `rows`, updates are recorded."""

    def __init__(self, rows: list[dict[str, Any]]) -> None:
        self.rows = rows
        self.updates: list[dict[str, Any]] = []

    def table(self, name: str) -> "_AlertTableQuery":
        return _AlertTableQuery(self)


class _AlertTableQuery:
    def __init__(self, client: AlertTableClient) -> None:
        self._client = client
        self._update: dict[str, Any] | None = None
        self._filters: dict[str, Any] = {}

    def select(self, *_args: Any) -> "_AlertTableQuery":
        return self

    def update(self, payload: dict[str, Any]) -> "_AlertTableQuery":
        self._update = payload
        return self

    def eq(self, column: str, value: Any) -> "_AlertTableQuery":
        self._filters[column] = value
        return self

    def in_(self, *_args: Any) -> "_AlertTableQuery":
        return self

    def order(self, *_args: Any, **_kwargs: Any) -> "_AlertTableQuery":
        return self

    def limit(self, *_args: Any) -> "_AlertTableQuery":
        return self

    def execute(self) -> Any:
        if self._update is not None:
            self._client.updates.append({**self._filters, **self._update})
            return _Rows([{"id": self._filters.get("id")}])
        return _Rows([dict(row) for row in self._client.rows])


class _Rows:
    def __init__(self, data: list[dict[str, Any]]) -> None:
        self.data = data
