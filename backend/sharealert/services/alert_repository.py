from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Iterable

from pydantic import ValidationError

from sharealert.errors import StoreError
from sharealert.schemas import STATUS_ACTIVE, STATUS_TRIGGERED, TRACKED_FIELDS, Alert

ALERTS_TABLE = "alerts"

logger = logging.getLogger(__name__)


class AlertRepository:
    """Alert records, backed by Supabase when a client is given, else kept in-process.

    The engine only reads active alerts and writes tracked values and the
    triggered transition; everything else belongs to the alert API.
    """

    def __init__(self, client: Any | None = None) -> None:
        self._client = client
        self._alerts: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def _to_alerts(self, rows: Iterable[Any]) -> list[Alert]:
        out: list[Alert] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            try:
                out.append(Alert.model_validate(row))
            except ValidationError as exc:
                logger.warning("Skipping malformed alert row %r: %s", row.get("id"), exc)
                continue
        return out

    def create(self, alert: Alert) -> Alert:
        payload = alert.model_dump(mode="json")
        if self._client is not None:
            try:
                data = self._client.table(ALERTS_TABLE).insert(payload).execute().data
            except Exception as exc:
                raise StoreError(f"Failed to create alert: {exc}") from exc
            created = self._to_alerts(data or [])
            return created[0] if created else alert

        with self._lock:
            self._alerts[alert.id] = payload
        return alert

    def get(self, alert_id: str) -> Alert | None:
        if self._client is not None:
            try:
                data = self._client.table(ALERTS_TABLE).select("*").eq("id", alert_id).limit(1).execute().data
            except Exception as exc:
                raise StoreError(f"Failed to load alert {alert_id}: {exc}") from exc
            found = self._to_alerts(data or [])
            return found[0] if found else None

        with self._lock:
            row = self._alerts.get(alert_id)
            return Alert.model_validate(row) if row else None

    def list_by_kind(self, kind: str | None, statuses: Iterable[str]) -> list[Alert]:
        wanted = list(statuses)
        if self._client is not None:
            try:
                query = self._client.table(ALERTS_TABLE).select("*").in_("status", wanted)
                if kind:
                    query = query.eq("alert_type", kind)
                data = query.order("created_at", desc=False).execute().data
            except Exception as exc:
                raise StoreError(f"Failed to list alerts: {exc}") from exc
            return self._to_alerts(data or [])

        with self._lock:
            rows = [
                dict(row)
                for row in self._alerts.values()
                if row.get("status") in wanted and (kind is None or row.get("alert_type") == kind)
            ]
        return self._to_alerts(sorted(rows, key=lambda row: str(row.get("created_at", ""))))

    def list_active(self) -> list[Alert]:
        return self.list_by_kind(None, [STATUS_ACTIVE])

    def list_active_by_kind(self, kind: str) -> list[Alert]:
        return self.list_by_kind(kind, [STATUS_ACTIVE])

    def update_tracked_fields(self, alert: Alert) -> None:
        updates = {name: getattr(alert, name) for name in TRACKED_FIELDS}
        updates["updated_at"] = self._now()
        if self._client is not None:
            try:
                self._client.table(ALERTS_TABLE).update(updates).eq("id", alert.id).execute()
            except Exception as exc:
                raise StoreError(f"Failed to update tracked values for alert {alert.id}: {exc}") from exc
            return

        with self._lock:
            row = self._alerts.get(alert.id)
            if row is None:
                raise StoreError(f"Alert {alert.id} does not exist")
            row.update(updates)

    def mark_triggered(self, alert_id: str) -> bool:
        """Move an active alert to triggered. Returns False if it was no longer active."""
        now = self._now()
        updates = {"status": STATUS_TRIGGERED, "triggered_at": now, "updated_at": now}
        if self._client is not None:
            try:
                data = (
                    self._client.table(ALERTS_TABLE)
                    .update(updates)
                    .eq("id", alert_id)
                    .eq("status", STATUS_ACTIVE)
                    .execute()
                    .data
                )
            except Exception as exc:
                raise StoreError(f"Failed to trigger alert {alert_id}: {exc}") from exc
            return bool(data)

        with self._lock:
            row = self._alerts.get(alert_id)
            if row is None or row.get("status") != STATUS_ACTIVE:
                return False
            row.update(updates)
            return True
