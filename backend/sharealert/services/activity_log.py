from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque

from sharealert.services.database import get_supabase

logger = logging.getLogger(__name__)

ACTIVITY_TABLE = "engine_activity"

_recent: Deque[dict[str, Any]] = deque(maxlen=300)


def get_recent_activity_local(limit: int = 50, component: str | None = None) -> list[dict[str, Any]]:
    items = list(_recent)
    if component:
        items = [item for item in items if item.get("component") == component]
    return list(reversed(items[-limit:]))


def clear_recent_activity() -> None:
    _recent.clear()


async def log_engine_activity(
    component: str,
    action: str,
    *,
    alert_id: str | None = None,
    user_id: str | None = None,
    details: dict[str, Any] | None = None,
    status: str = "success",
) -> None:
    payload = {
        "component": component,
        "action": action,
        "alert_id": alert_id,
        "user_id": user_id,
        "details": details or {},
        "status": status,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    _recent.append(payload)

    client = get_supabase()
    if client is None:
        return
    try:
        await asyncio.to_thread(lambda: client.table(ACTIVITY_TABLE).insert(payload).execute())
    except Exception as exc:
        logger.debug("Failed to persist engine activity %s: %s", action, exc)


async def get_recent_activity(limit: int = 50, component: str | None = None) -> list[dict[str, Any]]:
    client = get_supabase()
    if client is None:
        return get_recent_activity_local(limit=limit, component=component)

    def _query() -> Any:
        query = client.table(ACTIVITY_TABLE).select("*").order("created_at", desc=True).limit(limit)
        if component:
            query = query.eq("component", component)
        return query.execute().data

    try:
        data = await asyncio.to_thread(_query)
        return data if isinstance(data, list) else []
    except Exception:
        return get_recent_activity_local(limit=limit, component=component)
