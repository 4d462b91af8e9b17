from __future__ import annotations

import pytest

from conftest import make_alert
from sharealert.errors import AlertConfigError
from sharealert.services.policies import evaluate, is_one_shot


def test_price_threshold_fires_on_equality() -> None:
    alert = make_alert("a1", "price_threshold", threshold_price=10.0)

    result = evaluate(alert, 10.0)

    assert result.should_fire is True
    assert result.event_type == "price_reached"
    assert result.updates == {"current_price": 10.0}


def test_price_threshold_below_only_tracks_price() -> None:
    alert = make_alert("a1", "price_threshold", threshold_price=10.0)

    result = evaluate(alert, 9.99)

    assert result.should_fire is False
    assert result.updates == {"current_price": 9.99}


@pytest.mark.parametrize(
    ("kind", "field", "event"),
    [
        ("high_dividend_yield", "threshold_yield", "yield_threshold"),
        ("target_dividend_yield", "target_yield", "target_yield_reached"),
    ],
)
def test_yield_kinds_fire_at_or_above_threshold(kind: str, field: str, event: str) -> None:
    alert = make_alert("y1", kind, **{field: 8.0})

    below = evaluate(alert, 7.9)
    at = evaluate(alert, 8.0)

    assert below.should_fire is False
    assert below.updates == {"current_yield": 7.9}
    assert at.should_fire is True
    assert at.event_type == event
    assert at.payload[field] == 8.0


def test_yield_change_first_observation_records_baseline() -> None:
    alert = make_alert("c1", "dividend_yield_change", yield_change_threshold=1.0)

    result = evaluate(alert, 6.0)

    assert result.should_fire is False
    assert result.updates == {"current_yield": 6.0, "last_yield": 6.0}


def test_yield_change_fires_on_absolute_move_and_resets_baseline() -> None:
    alert = make_alert("c1", "dividend_yield_change", yield_change_threshold=1.0, last_yield=6.0)

    small = evaluate(alert, 6.5)
    drop = evaluate(alert, 4.9)

    assert small.should_fire is False
    assert "last_yield" not in small.updates
    assert drop.should_fire is True
    assert drop.event_type == "yield_changed"
    assert drop.payload["previous_yield"] == 6.0
    assert drop.payload["yield_change"] == pytest.approx(1.1)
    assert drop.updates["last_yield"] == 4.9


def test_missing_parameter_is_a_config_error() -> None:
    alert = make_alert("p1", "price_threshold")

    with pytest.raises(AlertConfigError):
        evaluate(alert, 1.0)


def test_announcement_kinds_are_not_tick_evaluated() -> None:
    alert = make_alert("d1", "dividend_announcement")

    with pytest.raises(AlertConfigError):
        evaluate(alert, 1.0)


def test_only_yield_change_is_rearmable() -> None:
    assert is_one_shot("price_threshold")
    assert is_one_shot("high_dividend_yield")
    assert is_one_shot("target_dividend_yield")
    assert is_one_shot("dividend_announcement")
    assert not is_one_shot("dividend_yield_change")
