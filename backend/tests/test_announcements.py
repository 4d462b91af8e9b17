from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from conftest import RecordingSender, make_alert, seeded_stores
from sharealert.errors import StoreError
from sharealert.schemas import CreateDividendRequest, CreateIPORequest
from sharealert.services.announcement_repository import AnnouncementRepository
from sharealert.services.announcements import AnnouncementService
from sharealert.services.notifications import NotificationDispatcher

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _service(alerts, users, sender, store=None, clock=lambda: NOW):
    store = store or AnnouncementRepository()
    return AnnouncementService(store, alerts, NotificationDispatcher(users, sender), clock=clock), store


def _dividend(symbol: str = "GCB", payment_in_days: int = 14) -> CreateDividendRequest:
    return CreateDividendRequest(
        stock_symbol=symbol,
        stock_name="GCB Bank Limited",
        amount=0.35,
        ex_date=NOW + timedelta(days=3),
        payment_date=NOW + timedelta(days=payment_in_days),
    )


def test_dividend_first_wave_notifies_matching_alerts_and_triggers_them() -> None:
    alerts, users = seeded_stores(
        make_alert("gcb", "dividend_announcement", symbol="GCB"),
        make_alert("any", "dividend_announcement", symbol=""),
        make_alert("mtn", "dividend_announcement", symbol="MTN"),
        make_alert("paused", "dividend_announcement", symbol="GCB", status="paused"),
        make_alert("ipo", "ipo_alert", symbol="GCB"),
    )
    sender = RecordingSender()
    service, store = _service(alerts, users, sender)

    dividend = asyncio.run(service.create_dividend(_dividend("gcb")))

    assert dividend.stock_symbol == "GCB"
    assert dividend.status == "announced"
    notified = sorted(request.alert["id"] for request in sender.requests)
    assert notified == ["any", "gcb"]
    assert all(request.event_type == "announced" for request in sender.requests)
    assert alerts.get("gcb").status == "triggered"
    assert alerts.get("any").status == "triggered"
    assert alerts.get("mtn").status == "active"
    assert alerts.get("paused").status == "paused"
    assert [item.id for item in store.list_upcoming_dividends()] == [dividend.id]


def test_dividend_sweep_marks_paid_and_sends_second_wave_to_triggered_alerts() -> None:
    alerts, users = seeded_stores(
        make_alert("gcb", "dividend_announcement", symbol="GCB"),
        make_alert("deleted", "dividend_announcement", symbol="GCB", status="deleted"),
    )
    sender = RecordingSender()
    current = {"now": NOW}
    service, store = _service(alerts, users, sender, clock=lambda: current["now"])

    async def _run():
        dividend = await service.create_dividend(_dividend("GCB", payment_in_days=7))
        early = await service.sweep_dividend_payments()
        current["now"] = NOW + timedelta(days=8)
        due = await service.sweep_dividend_payments()
        again = await service.sweep_dividend_payments()
        return dividend, early, due, again

    dividend, early, due, again = asyncio.run(_run())
    assert (early.evaluated, early.skipped, early.fired) == (0, 1, 0)
    assert (due.evaluated, due.fired) == (1, 1)
    assert again.evaluated == 0
    assert [request.event_type for request in sender.requests] == ["announced", "paid"]
    assert sender.requests[1].payload["status"] == "paid"
    assert store.list_upcoming_dividends() == []
    assert alerts.get("gcb").status == "triggered"


def test_failed_status_update_skips_wave_until_next_sweep(monkeypatch) -> None:
    alerts, users = seeded_stores(make_alert("gcb", "dividend_announcement", symbol="GCB"))
    sender = RecordingSender()
    store = AnnouncementRepository()
    service, _ = _service(alerts, users, sender, store=store, clock=lambda: NOW + timedelta(days=30))
    original = store.update_dividend_status
    attempts = {"count": 0}

    def _flaky(dividend_id, status):
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise StoreError("connection reset")
        return original(dividend_id, status)

    monkeypatch.setattr(store, "update_dividend_status", _flaky)

    async def _run():
        await service.create_dividend(_dividend("GCB", payment_in_days=1))
        first = await service.sweep_dividend_payments()
        second = await service.sweep_dividend_payments()
        return first, second

    first, second = asyncio.run(_run())
    assert first.errors == 1
    assert first.fired == 0
    assert second.fired == 1
    assert [request.event_type for request in sender.requests] == ["announced", "paid"]


def test_ipo_lifecycle_announced_then_listed() -> None:
    alerts, users = seeded_stores(
        make_alert("watch-all", "ipo_alert", symbol=""),
        make_alert("other", "ipo_alert", symbol="ZZZ"),
    )
    sender = RecordingSender()
    current = {"now": NOW}
    service, store = _service(alerts, users, sender, clock=lambda: current["now"])

    async def _run():
        ipo = await service.create_ipo(
            CreateIPORequest(
                company_name="Asante Gold",
                symbol="asg",
                sector="Mining",
                offer_price=6.2,
                listing_date=NOW + timedelta(days=2),
            )
        )
        current["now"] = NOW + timedelta(days=3)
        summary = await service.sweep_ipo_listings()
        return ipo, summary

    ipo, summary = asyncio.run(_run())
    assert ipo.symbol == "ASG"
    assert summary.fired == 1
    assert [(request.alert["id"], request.event_type) for request in sender.requests] == [
        ("watch-all", "announced"),
        ("watch-all", "listed"),
    ]
    assert alerts.get("watch-all").status == "triggered"
    assert alerts.get("other").status == "active"
    assert store.list_upcoming_ipos() == []


def test_naive_payment_dates_are_treated_as_utc() -> None:
    alerts, users = seeded_stores(make_alert("gcb", "dividend_announcement", symbol="GCB"))
    service, _ = _service(alerts, users, RecordingSender(), clock=lambda: NOW)
    request = _dividend("GCB").model_copy(update={"payment_date": datetime(2026, 3, 1, 12, 0)})

    async def _run():
        await service.create_dividend(request)
        return await service.sweep_dividend_payments()

    summary = asyncio.run(_run())
    assert summary.evaluated == 1
