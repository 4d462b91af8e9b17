from __future__ import annotations

from typing import Any

# Last-known exchange data served when both upstream paths are down.
MOCK_STOCKS: list[dict[str, Any]] = [
    {
        "symbol": "ACCESS",
        "name": "Access Bank Ghana Plc",
        "current_price": 16.37,
        "previous_close": 16.37,
        "change": 0.0,
        "change_percent": 0.0,
        "volume": 0,
        "market_cap": 2_100_000_000.0,
        "sector": "Financial Services",
        "industry": "Banking",
    },
    {
        "symbol": "GCB",
        "name": "GCB Bank Limited",
        "current_price": 4.20,
        "previous_close": 4.15,
        "change": 0.05,
        "change_percent": 1.20,
        "volume": 67_000,
        "market_cap": 1_800_000_000.0,
        "sector": "Financial Services",
        "industry": "Banking",
    },
    {
        "symbol": "MTN",
        "name": "MTN Ghana",
        "current_price": 0.82,
        "previous_close": 0.80,
        "change": 0.02,
        "change_percent": 2.5,
        "volume": 125_000,
        "market_cap": 1_500_000_000.0,
        "sector": "Telecommunications",
        "industry": "Mobile Networks",
    },
]

MOCK_DETAILS: dict[str, dict[str, Any]] = {
    "MTN": {
        "symbol": "MTN",
        "name": "MTN Ghana",
        "current_price": 0.82,
        "previous_close": 0.80,
        "change": 0.02,
        "change_percent": 2.5,
        "volume": 125_000,
        "market_cap": 1_500_000_000.0,
        "shares": 1_829_268_293,
        "sector": "Telecommunications",
        "industry": "Mobile Networks",
        "dps": 0.05,
        "eps": 0.12,
        "company": {
            "name": "MTN Ghana",
            "address": "Accra, Ghana",
            "email": "info@mtn.com.gh",
            "telephone": "+233-244-300-000",
            "website": "https://www.mtn.com.gh",
            "sector": "Telecommunications",
            "industry": "Mobile Networks",
            "directors": ["Selorm Adadevoh", "Ebenezer Asante"],
        },
    },
}

MOCK_DIVIDEND_YIELDS: list[dict[str, Any]] = [
    {"symbol": "GCB", "name": "GCB Bank Limited", "dividend_yield": 10.4, "price": "GH₵4.20", "sector": "Banks"},
    {"symbol": "ACCESS", "name": "Access Bank Ghana", "dividend_yield": 8.5, "price": "GH₵16.37", "sector": "Banks"},
    {"symbol": "CAL", "name": "CAL Bank Limited", "dividend_yield": 7.2, "price": "GH₵0.95", "sector": "Banks"},
    {"symbol": "TOTAL", "name": "Total Petroleum Ghana", "dividend_yield": 10.1, "price": "GH₵3.45", "sector": "Energy"},
    {"symbol": "MTN", "name": "MTN Ghana", "dividend_yield": 6.8, "price": "GH₵0.82", "sector": "Telecom"},
]


def mock_stock(symbol: str) -> dict[str, Any] | None:
    token = symbol.upper()
    for row in MOCK_STOCKS:
        if row["symbol"] == token:
            return dict(row)
    return None


def mock_details(symbol: str) -> dict[str, Any] | None:
    row = MOCK_DETAILS.get(symbol.upper())
    return dict(row) if row else None
