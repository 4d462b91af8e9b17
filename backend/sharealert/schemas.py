from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

AlertKind = Literal[
    "price_threshold",
    "dividend_announcement",
    "ipo_alert",
    "high_dividend_yield",
    "dividend_yield_change",
    "target_dividend_yield",
]
AlertStatus = Literal["active", "triggered", "paused", "deleted"]
DividendStatus = Literal["announced", "paid", "cancelled"]
IPOStatus = Literal["announced", "listed", "cancelled"]
QuoteSource = Literal["primary", "proxy", "mock"]

PRICE_THRESHOLD = "price_threshold"
DIVIDEND_ANNOUNCEMENT = "dividend_announcement"
IPO_ALERT = "ipo_alert"
HIGH_DIVIDEND_YIELD = "high_dividend_yield"
DIVIDEND_YIELD_CHANGE = "dividend_yield_change"
TARGET_DIVIDEND_YIELD = "target_dividend_yield"

YIELD_KINDS = (HIGH_DIVIDEND_YIELD, TARGET_DIVIDEND_YIELD, DIVIDEND_YIELD_CHANGE)
ANNOUNCEMENT_KINDS = (DIVIDEND_ANNOUNCEMENT, IPO_ALERT)

STATUS_ACTIVE = "active"
STATUS_TRIGGERED = "triggered"
STATUS_PAUSED = "paused"
STATUS_DELETED = "deleted"

_REQUIRED_PARAMETER = {
    PRICE_THRESHOLD: "threshold_price",
    HIGH_DIVIDEND_YIELD: "threshold_yield",
    TARGET_DIVIDEND_YIELD: "target_yield",
    DIVIDEND_YIELD_CHANGE: "yield_change_threshold",
}

TRACKED_FIELDS = ("current_price", "current_yield", "last_yield")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Alert(BaseModel):
    id: str
    user_id: str
    stock_symbol: str = ""
    stock_name: str = ""
    alert_type: AlertKind
    status: AlertStatus = "active"

    threshold_price: Optional[float] = None
    threshold_yield: Optional[float] = None
    target_yield: Optional[float] = None
    yield_change_threshold: Optional[float] = None

    current_price: Optional[float] = None
    current_yield: Optional[float] = None
    last_yield: Optional[float] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    triggered_at: Optional[datetime] = None

    def required_parameter(self) -> Optional[str]:
        """Name of the parameter this kind needs, or None for announcement kinds."""
        return _REQUIRED_PARAMETER.get(self.alert_type)

    def tracked_values(self) -> Dict[str, Optional[float]]:
        return {name: getattr(self, name) for name in TRACKED_FIELDS}


class Quote(BaseModel):
    symbol: str
    name: str
    current_price: float
    previous_close: float
    change: float = 0.0
    change_percent: float = 0.0
    volume: int = 0
    last_updated: datetime = Field(default_factory=utc_now)
    market_cap: Optional[float] = None
    sector: Optional[str] = None
    industry: Optional[str] = None
    source: QuoteSource = "primary"


class Company(BaseModel):
    name: str = ""
    address: str = ""
    email: str = ""
    telephone: str = ""
    website: str = ""
    sector: str = ""
    industry: str = ""
    directors: List[str] = Field(default_factory=list)


class StockDetails(BaseModel):
    symbol: str
    name: str
    current_price: float
    previous_close: float
    change: float = 0.0
    change_percent: float = 0.0
    volume: int = 0
    last_updated: datetime = Field(default_factory=utc_now)
    market_cap: float = 0.0
    shares: int = 0
    sector: str = ""
    industry: str = ""
    dps: Optional[float] = None
    eps: Optional[float] = None
    company: Company = Field(default_factory=Company)
    source: QuoteSource = "primary"


class DividendYield(BaseModel):
    symbol: str
    name: str = ""
    dividend_yield: float
    price: str = ""
    sector: str = ""
    source: QuoteSource = "primary"


class DividendAnnouncement(BaseModel):
    id: str
    stock_symbol: str
    stock_name: str = ""
    dividend_type: str = "cash"
    amount: float
    currency: str = "GHS"
    ex_date: datetime
    payment_date: datetime
    status: DividendStatus = "announced"
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class CreateDividendRequest(BaseModel):
    stock_symbol: str = Field(..., min_length=1, max_length=16)
    stock_name: str = ""
    dividend_type: str = "cash"
    amount: float = Field(..., ge=0)
    currency: str = "GHS"
    ex_date: datetime
    payment_date: datetime


class IPOAnnouncement(BaseModel):
    id: str
    company_name: str
    symbol: str
    sector: str = ""
    offer_price: float
    listing_date: datetime
    status: IPOStatus = "announced"
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class CreateIPORequest(BaseModel):
    company_name: str = Field(..., min_length=1)
    symbol: str = Field(..., min_length=1, max_length=16)
    sector: str = ""
    offer_price: float = Field(..., ge=0)
    listing_date: datetime


class User(BaseModel):
    id: str
    email: str = ""
    name: str = ""


class UserPreferences(BaseModel):
    user_id: str
    email_notifications: bool = True
    push_notifications: bool = True
    notification_frequency: Literal["immediate", "daily", "weekly"] = "immediate"


class NotificationRequest(BaseModel):
    user_id: str
    recipient_email: str = ""
    recipient_name: str = ""
    event_type: str
    alert: Dict[str, Any]
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)


class TickSummary(BaseModel):
    family: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    evaluated: int = 0
    fired: int = 0
    skipped: int = 0
    errors: int = 0


class CacheInvalidateRequest(BaseModel):
    symbol: Optional[str] = Field(default=None, max_length=16)
