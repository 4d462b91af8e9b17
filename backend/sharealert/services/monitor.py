from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Sequence

from sharealert.config import MONITOR_FAMILIES, Settings
from sharealert.errors import AlertConfigError, NotFoundError, StoreError, UpstreamError
from sharealert.schemas import PRICE_THRESHOLD, STATUS_ACTIVE, YIELD_KINDS, Alert, TickSummary, utc_now
from sharealert.services import policies
from sharealert.services.activity_log import log_engine_activity
from sharealert.services.alert_repository import AlertRepository
from sharealert.services.announcements import AnnouncementService
from sharealert.services.market_data import QuoteFetcher
from sharealert.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

Observer = Callable[[str], Awaitable[float]]

FIRED = "fired"
EVALUATED = "evaluated"
SKIPPED = "skipped"
ERROR = "error"


@dataclass
class FamilyState:
    family: str
    interval_seconds: int
    enabled: bool = True
    ticks: int = 0
    last_tick_started_at: datetime | None = None
    last_tick_finished_at: datetime | None = None
    last_summary: TickSummary | None = None
    task: asyncio.Task | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "running": bool(self.task and not self.task.done()),
            "interval_seconds": self.interval_seconds,
            "ticks": self.ticks,
            "last_tick_started_at": self.last_tick_started_at.isoformat() if self.last_tick_started_at else None,
            "last_tick_finished_at": self.last_tick_finished_at.isoformat() if self.last_tick_finished_at else None,
            "last_summary": self.last_summary.model_dump(mode="json") if self.last_summary else None,
        }


class AlertMonitor:
    """Runs one fixed-interval loop per alert family.

    price and yield ticks evaluate active alerts against fresh market data;
    ipo and dividend ticks hand off to the announcement lifecycle sweeps.
    A family's loop awaits its tick before sleeping, so ticks of the same
    family never overlap. Alerts are re-read from the store on every tick.
    """

    def __init__(
        self,
        settings: Settings,
        alerts: AlertRepository,
        fetcher: QuoteFetcher,
        dispatcher: NotificationDispatcher,
        announcements: AnnouncementService,
    ) -> None:
        self.settings = settings
        self.alerts = alerts
        self.fetcher = fetcher
        self.dispatcher = dispatcher
        self.announcements = announcements
        self._semaphore = asyncio.Semaphore(max(1, settings.max_concurrent_evaluations))
        self._stop_event = asyncio.Event()
        self.families: Dict[str, FamilyState] = {
            family: FamilyState(
                family=family,
                interval_seconds=settings.interval_for(family),
                enabled=family in settings.monitor_enabled_families,
            )
            for family in MONITOR_FAMILIES
        }

    @property
    def running(self) -> bool:
        return any(state.task and not state.task.done() for state in self.families.values())

    async def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        for state in self.families.values():
            if not state.enabled:
                logger.info("Monitor family %s is disabled", state.family)
                continue
            state.task = asyncio.create_task(self._run_family(state), name=f"alert-monitor-{state.family}")
        logger.info(
            "Alert monitor started: %s",
            ", ".join(f"{s.family}={s.interval_seconds}s" for s in self.families.values() if s.enabled) or "no families",
        )

    async def stop(self) -> None:
        tasks = [state.task for state in self.families.values() if state.task is not None]
        if not tasks:
            return
        self._stop_event.set()
        _, pending = await asyncio.wait(tasks, timeout=max(0, self.settings.shutdown_grace_seconds))
        for task in pending:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for state in self.families.values():
            state.task = None
        logger.info("Alert monitor stopped (%d loops cancelled after grace period)", len(pending))

    async def _run_family(self, state: FamilyState) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once(state.family)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Monitor tick for %s failed", state.family)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=state.interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def run_once(self, family: str) -> TickSummary:
        """Run a single tick for ``family`` now, waiting for any tick already in flight."""
        state = self.families.get(family)
        if state is None:
            raise AlertConfigError(f"unknown monitor family {family!r}")

        async with state.lock:
            state.last_tick_started_at = utc_now()
            if family == "price":
                summary = await self._evaluate_kinds(family, [PRICE_THRESHOLD], self._observe_price)
            elif family == "yield":
                summary = await self._evaluate_kinds(family, list(YIELD_KINDS), self._observe_yield)
            elif family == "ipo":
                summary = await self.announcements.sweep_ipo_listings()
            else:
                summary = await self.announcements.sweep_dividend_payments()
            state.ticks += 1
            state.last_tick_finished_at = summary.finished_at or utc_now()
            state.last_summary = summary

        logger.info(
            "%s tick: evaluated=%d fired=%d skipped=%d errors=%d",
            family,
            summary.evaluated,
            summary.fired,
            summary.skipped,
            summary.errors,
        )
        if summary.fired or summary.errors:
            await log_engine_activity(
                "monitor",
                f"{family} tick",
                details=summary.model_dump(mode="json"),
                status="error" if summary.errors else "success",
            )
        return summary

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "families": {family: state.snapshot() for family, state in self.families.items()},
        }

    async def _observe_price(self, symbol: str) -> float:
        quote = await self.fetcher.get_quote(symbol)
        return quote.current_price

    async def _observe_yield(self, symbol: str) -> float:
        row = await self.fetcher.get_dividend_yield(symbol)
        return row.dividend_yield

    async def _load_active(self, kinds: Sequence[str]) -> List[Alert]:
        out: List[Alert] = []
        for kind in kinds:
            out.extend(await asyncio.to_thread(self.alerts.list_active_by_kind, kind))
        return [alert for alert in out if alert.status == STATUS_ACTIVE]

    async def _evaluate_kinds(self, family: str, kinds: Sequence[str], observe: Observer) -> TickSummary:
        summary = TickSummary(family=family, started_at=utc_now())
        try:
            alerts = await self._load_active(kinds)
        except StoreError as exc:
            logger.error("Failed to load active %s alerts: %s", family, exc)
            summary.errors += 1
            summary.finished_at = utc_now()
            return summary

        outcomes = await asyncio.gather(*(self._guarded(alert, observe) for alert in alerts))
        for outcome in outcomes:
            if outcome == FIRED:
                summary.evaluated += 1
                summary.fired += 1
            elif outcome == EVALUATED:
                summary.evaluated += 1
            elif outcome == SKIPPED:
                summary.skipped += 1
            else:
                summary.errors += 1
        summary.finished_at = utc_now()
        return summary

    async def _guarded(self, alert: Alert, observe: Observer) -> str:
        async with self._semaphore:
            try:
                return await self._process(alert, observe)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Unexpected failure evaluating alert %s", alert.id)
                return ERROR

    async def _process(self, alert: Alert, observe: Observer) -> str:
        symbol = alert.stock_symbol.strip().upper()
        if not symbol:
            logger.warning("Alert %s has no stock symbol; skipping", alert.id)
            return SKIPPED

        try:
            observed = await observe(symbol)
        except (NotFoundError, UpstreamError) as exc:
            logger.warning("No market data for alert %s (%s): %s", alert.id, symbol, exc)
            return SKIPPED

        try:
            result = policies.evaluate(alert, observed)
        except AlertConfigError as exc:
            logger.warning("Skipping misconfigured alert %s: %s", alert.id, exc)
            return SKIPPED

        updated = alert.model_copy(update=result.updates)
        try:
            await asyncio.to_thread(self.alerts.update_tracked_fields, updated)
        except StoreError as exc:
            logger.error("Failed to persist tracked values for alert %s: %s", alert.id, exc)
            return ERROR

        if not result.should_fire:
            return EVALUATED

        logger.info("Alert %s fired: %s %s", alert.id, result.event_type, result.payload)
        delivered = await self.dispatcher.notify(updated, result.event_type or "", result.payload)
        if policies.is_one_shot(alert.alert_type):
            try:
                await asyncio.to_thread(self.alerts.mark_triggered, alert.id)
            except StoreError as exc:
                logger.error("Failed to mark alert %s triggered: %s", alert.id, exc)
                return ERROR

        await log_engine_activity(
            "monitor",
            "Alert fired",
            alert_id=alert.id,
            user_id=alert.user_id,
            details={"event_type": result.event_type, "symbol": symbol, "delivered": delivered, **result.payload},
        )
        return FIRED
