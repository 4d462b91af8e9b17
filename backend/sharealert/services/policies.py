from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from sharealert.errors import AlertConfigError
from sharealert.schemas import (
    ANNOUNCEMENT_KINDS,
    DIVIDEND_YIELD_CHANGE,
    HIGH_DIVIDEND_YIELD,
    PRICE_THRESHOLD,
    TARGET_DIVIDEND_YIELD,
    Alert,
)

EVENT_PRICE_REACHED = "price_reached"
EVENT_YIELD_THRESHOLD = "yield_threshold"
EVENT_TARGET_YIELD = "target_yield_reached"
EVENT_YIELD_CHANGED = "yield_changed"
EVENT_ANNOUNCED = "announced"
EVENT_PAID = "paid"
EVENT_LISTED = "listed"


@dataclass
class Evaluation:
    """Outcome of running one alert against one observed value.

    ``updates`` holds the tracked fields to persist whether or not the alert
    fires.
    """

    updates: Dict[str, float] = field(default_factory=dict)
    should_fire: bool = False
    event_type: str | None = None
    payload: Dict[str, Any] = field(default_factory=dict)


def is_one_shot(kind: str) -> bool:
    return kind != DIVIDEND_YIELD_CHANGE


def _parameter(alert: Alert) -> float:
    name = alert.required_parameter()
    if name is None:
        raise AlertConfigError(f"alert {alert.id} of kind {alert.alert_type} is not evaluated on a tick")
    value = getattr(alert, name)
    if value is None:
        raise AlertConfigError(f"alert {alert.id} is missing required parameter {name}")
    return float(value)


def _price_threshold(alert: Alert, price: float) -> Evaluation:
    threshold = _parameter(alert)
    result = Evaluation(updates={"current_price": price})
    if price >= threshold:
        result.should_fire = True
        result.event_type = EVENT_PRICE_REACHED
        result.payload = {"current_price": price, "threshold_price": threshold}
    return result


def _yield_at_least(alert: Alert, observed: float, event_type: str) -> Evaluation:
    threshold = _parameter(alert)
    result = Evaluation(updates={"current_yield": observed})
    if observed >= threshold:
        name = alert.required_parameter()
        result.should_fire = True
        result.event_type = event_type
        result.payload = {"current_yield": observed, name: threshold}
    return result


def _yield_change(alert: Alert, observed: float) -> Evaluation:
    threshold = _parameter(alert)
    result = Evaluation(updates={"current_yield": observed})
    if alert.last_yield is None:
        # First observation only establishes the baseline.
        result.updates["last_yield"] = observed
        return result

    change = abs(observed - alert.last_yield)
    if change >= threshold:
        result.should_fire = True
        result.event_type = EVENT_YIELD_CHANGED
        result.payload = {
            "current_yield": observed,
            "previous_yield": alert.last_yield,
            "yield_change": change,
            "yield_change_threshold": threshold,
        }
        result.updates["last_yield"] = observed
    return result


def evaluate(alert: Alert, observed: float) -> Evaluation:
    """Decide whether ``alert`` fires for the observed price or yield."""
    kind = alert.alert_type
    value = float(observed)
    if kind == PRICE_THRESHOLD:
        return _price_threshold(alert, value)
    if kind == HIGH_DIVIDEND_YIELD:
        return _yield_at_least(alert, value, EVENT_YIELD_THRESHOLD)
    if kind == TARGET_DIVIDEND_YIELD:
        return _yield_at_least(alert, value, EVENT_TARGET_YIELD)
    if kind == DIVIDEND_YIELD_CHANGE:
        return _yield_change(alert, value)
    if kind in ANNOUNCEMENT_KINDS:
        raise AlertConfigError(f"alert {alert.id} of kind {kind} is driven by announcements, not ticks")
    raise AlertConfigError(f"unsupported alert kind {kind!r}")
