from __future__ import annotations

import httpx

from sharealert.config import Settings


def build_http_client(settings: Settings, **overrides) -> httpx.AsyncClient:
    """Pooled client shared by the fetcher and the notification sender.

    Every request made through it is bounded by ``http_timeout_seconds``.
    """
    timeout = httpx.Timeout(settings.http_timeout_seconds, connect=min(5.0, settings.http_timeout_seconds))
    limits = httpx.Limits(
        max_connections=settings.http_max_connections,
        max_keepalive_connections=settings.http_max_keepalive_connections,
        keepalive_expiry=90.0,
    )
    options = {
        "timeout": timeout,
        "limits": limits,
        "headers": {"Accept": "application/json", "User-Agent": f"{settings.app_name}/1.0"},
        "follow_redirects": True,
    }
    options.update(overrides)
    return httpx.AsyncClient(**options)
