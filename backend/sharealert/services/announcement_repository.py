from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any

from sharealert.errors import NotFoundError, StoreError
from sharealert.schemas import DividendAnnouncement, IPOAnnouncement

DIVIDENDS_TABLE = "dividend_announcements"
IPOS_TABLE = "ipo_announcements"


class AnnouncementRepository:
    """Dividend and IPO announcement records.

    "Upcoming" means still in the ``announced`` state; the lifecycle sweeps
    move them on once their payment or listing date has passed.
    """

    def __init__(self, client: Any | None = None) -> None:
        self._client = client
        self._dividends: dict[str, DividendAnnouncement] = {}
        self._ipos: dict[str, IPOAnnouncement] = {}
        self._lock = threading.Lock()

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _insert(self, table: str, payload: dict[str, Any]) -> None:
        try:
            self._client.table(table).insert(payload).execute()
        except Exception as exc:
            raise StoreError(f"Failed to insert into {table}: {exc}") from exc

    def _select_announced(self, table: str, date_column: str) -> list[dict[str, Any]]:
        try:
            data = (
                self._client.table(table)
                .select("*")
                .eq("status", "announced")
                .order(date_column, desc=False)
                .execute()
                .data
            )
        except Exception as exc:
            raise StoreError(f"Failed to list upcoming rows from {table}: {exc}") from exc
        return [row for row in data or [] if isinstance(row, dict)]

    def _update_status(self, table: str, record_id: str, status: str) -> None:
        try:
            data = (
                self._client.table(table)
                .update({"status": status, "updated_at": self._now().isoformat()})
                .eq("id", record_id)
                .execute()
                .data
            )
        except Exception as exc:
            raise StoreError(f"Failed to update {table} row {record_id}: {exc}") from exc
        if not data:
            raise NotFoundError(f"{table} row {record_id} not found")

    def create_dividend(self, dividend: DividendAnnouncement) -> DividendAnnouncement:
        if self._client is not None:
            self._insert(DIVIDENDS_TABLE, dividend.model_dump(mode="json"))
            return dividend
        with self._lock:
            self._dividends[dividend.id] = dividend
        return dividend

    def list_upcoming_dividends(self) -> list[DividendAnnouncement]:
        if self._client is not None:
            rows = self._select_announced(DIVIDENDS_TABLE, "payment_date")
            return [DividendAnnouncement.model_validate(row) for row in rows]
        with self._lock:
            items = [item for item in self._dividends.values() if item.status == "announced"]
        return sorted(items, key=lambda item: item.payment_date)

    def update_dividend_status(self, dividend_id: str, status: str) -> None:
        if self._client is not None:
            self._update_status(DIVIDENDS_TABLE, dividend_id, status)
            return
        with self._lock:
            item = self._dividends.get(dividend_id)
            if item is None:
                raise NotFoundError(f"dividend {dividend_id} not found")
            self._dividends[dividend_id] = item.model_copy(update={"status": status, "updated_at": self._now()})

    def create_ipo(self, ipo: IPOAnnouncement) -> IPOAnnouncement:
        if self._client is not None:
            self._insert(IPOS_TABLE, ipo.model_dump(mode="json"))
            return ipo
        with self._lock:
            self._ipos[ipo.id] = ipo
        return ipo

    def list_upcoming_ipos(self) -> list[IPOAnnouncement]:
        if self._client is not None:
            rows = self._select_announced(IPOS_TABLE, "listing_date")
            return [IPOAnnouncement.model_validate(row) for row in rows]
        with self._lock:
            items = [item for item in self._ipos.values() if item.status == "announced"]
        return sorted(items, key=lambda item: item.listing_date)

    def update_ipo_status(self, ipo_id: str, status: str) -> None:
        if self._client is not None:
            self._update_status(IPOS_TABLE, ipo_id, status)
            return
        with self._lock:
            item = self._ipos.get(ipo_id)
            if item is None:
                raise NotFoundError(f"IPO {ipo_id} not found")
            self._ipos[ipo_id] = item.model_copy(update={"status": status, "updated_at": self._now()})
