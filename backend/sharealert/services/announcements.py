from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List

from sharealert.schemas import (
    DIVIDEND_ANNOUNCEMENT,
    IPO_ALERT,
    STATUS_ACTIVE,
    STATUS_TRIGGERED,
    Alert,
    CreateDividendRequest,
    CreateIPORequest,
    DividendAnnouncement,
    IPOAnnouncement,
    TickSummary,
    utc_now,
)
from sharealert.services.activity_log import log_engine_activity
from sharealert.services.alert_repository import AlertRepository
from sharealert.services.announcement_repository import AnnouncementRepository
from sharealert.services.notifications import NotificationDispatcher
from sharealert.services.policies import EVENT_ANNOUNCED, EVENT_LISTED, EVENT_PAID

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _matches_symbol(alert: Alert, symbol: str) -> bool:
    wanted = alert.stock_symbol.strip().upper()
    return not wanted or wanted == symbol.strip().upper()


class AnnouncementService:
    """Dividend and IPO announcements and the notification waves they drive.

    Creating an announcement notifies matching active alerts once and marks
    them triggered. The periodic sweeps move announcements past their
    payment or listing date forward and notify again, this time including
    alerts the first wave already triggered.
    """

    def __init__(
        self,
        announcements: AnnouncementRepository,
        alerts: AlertRepository,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.announcements = announcements
        self.alerts = alerts
        self.dispatcher = dispatcher
        self._clock = clock

    async def _wave(
        self,
        kind: str,
        symbol: str,
        event_type: str,
        payload: Dict[str, Any],
        statuses: Iterable[str],
        *,
        mark_triggered: bool,
    ) -> tuple[int, int]:
        wanted = list(statuses)
        try:
            alerts: List[Alert] = await asyncio.to_thread(self.alerts.list_by_kind, kind, wanted)
        except Exception as exc:
            logger.error("Failed to load %s alerts for %s wave: %s", kind, event_type, exc)
            return 0, 1
        notified = 0
        errors = 0
        for alert in alerts:
            if alert.status not in wanted or not _matches_symbol(alert, symbol):
                continue
            try:
                await self.dispatcher.notify(alert, event_type, payload)
                notified += 1
                if mark_triggered:
                    await asyncio.to_thread(self.alerts.mark_triggered, alert.id)
            except Exception as exc:
                errors += 1
                logger.error("Failed %s wave for alert %s: %s", event_type, alert.id, exc)
        return notified, errors

    async def create_dividend(self, request: CreateDividendRequest) -> DividendAnnouncement:
        now = self._clock()
        dividend = DividendAnnouncement(
            id=str(uuid.uuid4()),
            stock_symbol=request.stock_symbol.strip().upper(),
            stock_name=request.stock_name,
            dividend_type=request.dividend_type,
            amount=request.amount,
            currency=request.currency,
            ex_date=request.ex_date,
            payment_date=request.payment_date,
            status="announced",
            created_at=now,
            updated_at=now,
        )
        await asyncio.to_thread(self.announcements.create_dividend, dividend)

        notified, errors = await self._wave(
            DIVIDEND_ANNOUNCEMENT,
            dividend.stock_symbol,
            EVENT_ANNOUNCED,
            dividend.model_dump(mode="json"),
            [STATUS_ACTIVE],
            mark_triggered=True,
        )
        logger.info("Dividend %s for %s announced; %d alerts notified", dividend.id, dividend.stock_symbol, notified)
        await log_engine_activity(
            "announcements",
            "Dividend announced",
            details={"dividend_id": dividend.id, "symbol": dividend.stock_symbol, "notified": notified, "errors": errors},
            status="error" if errors else "success",
        )
        return dividend

    async def create_ipo(self, request: CreateIPORequest) -> IPOAnnouncement:
        now = self._clock()
        ipo = IPOAnnouncement(
            id=str(uuid.uuid4()),
            company_name=request.company_name,
            symbol=request.symbol.strip().upper(),
            sector=request.sector,
            offer_price=request.offer_price,
            listing_date=request.listing_date,
            status="announced",
            created_at=now,
            updated_at=now,
        )
        await asyncio.to_thread(self.announcements.create_ipo, ipo)

        notified, errors = await self._wave(
            IPO_ALERT,
            ipo.symbol,
            EVENT_ANNOUNCED,
            ipo.model_dump(mode="json"),
            [STATUS_ACTIVE],
            mark_triggered=True,
        )
        logger.info("IPO %s (%s) announced; %d alerts notified", ipo.id, ipo.symbol, notified)
        await log_engine_activity(
            "announcements",
            "IPO announced",
            details={"ipo_id": ipo.id, "symbol": ipo.symbol, "notified": notified, "errors": errors},
            status="error" if errors else "success",
        )
        return ipo

    async def sweep_dividend_payments(self) -> TickSummary:
        summary = TickSummary(family="dividend", started_at=self._clock())
        try:
            upcoming = await asyncio.to_thread(self.announcements.list_upcoming_dividends)
        except Exception as exc:
            logger.error("Failed to load upcoming dividends: %s", exc)
            summary.errors += 1
            summary.finished_at = self._clock()
            return summary

        now = _as_utc(self._clock())
        for dividend in upcoming:
            if dividend.status != "announced" or _as_utc(dividend.payment_date) >= now:
                summary.skipped += 1
                continue
            summary.evaluated += 1
            try:
                await asyncio.to_thread(self.announcements.update_dividend_status, dividend.id, "paid")
            except Exception as exc:
                # Left as announced so the next sweep retries it.
                logger.error("Failed to mark dividend %s paid: %s", dividend.id, exc)
                summary.errors += 1
                continue

            paid = dividend.model_copy(update={"status": "paid"})
            notified, errors = await self._wave(
                DIVIDEND_ANNOUNCEMENT,
                paid.stock_symbol,
                EVENT_PAID,
                paid.model_dump(mode="json"),
                [STATUS_ACTIVE, STATUS_TRIGGERED],
                mark_triggered=False,
            )
            summary.fired += notified
            summary.errors += errors
            logger.info("Dividend %s for %s paid; %d alerts notified", paid.id, paid.stock_symbol, notified)
            await log_engine_activity(
                "announcements",
                "Dividend paid",
                details={"dividend_id": paid.id, "symbol": paid.stock_symbol, "notified": notified},
            )

        summary.finished_at = self._clock()
        return summary

    async def sweep_ipo_listings(self) -> TickSummary:
        summary = TickSummary(family="ipo", started_at=self._clock())
        try:
            upcoming = await asyncio.to_thread(self.announcements.list_upcoming_ipos)
        except Exception as exc:
            logger.error("Failed to load upcoming IPOs: %s", exc)
            summary.errors += 1
            summary.finished_at = self._clock()
            return summary

        now = _as_utc(self._clock())
        for ipo in upcoming:
            if ipo.status != "announced" or _as_utc(ipo.listing_date) >= now:
                summary.skipped += 1
                continue
            summary.evaluated += 1
            try:
                await asyncio.to_thread(self.announcements.update_ipo_status, ipo.id, "listed")
            except Exception as exc:
                logger.error("Failed to mark IPO %s listed: %s", ipo.id, exc)
                summary.errors += 1
                continue

            listed = ipo.model_copy(update={"status": "listed"})
            notified, errors = await self._wave(
                IPO_ALERT,
                listed.symbol,
                EVENT_LISTED,
                listed.model_dump(mode="json"),
                [STATUS_ACTIVE, STATUS_TRIGGERED],
                mark_triggered=False,
            )
            summary.fired += notified
            summary.errors += errors
            logger.info("IPO %s (%s) listed; %d alerts notified", listed.id, listed.symbol, notified)
            await log_engine_activity(
                "announcements",
                "IPO listed",
                details={"ipo_id": listed.id, "symbol": listed.symbol, "notified": notified},
            )

        summary.finished_at = self._clock()
        return summary
