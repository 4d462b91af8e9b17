from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from sharealert.config import MONITOR_FAMILIES
from sharealert.schemas import CacheInvalidateRequest
from sharealert.services.activity_log import get_recent_activity
from sharealert.services.database import get_supabase

router = APIRouter(tags=["system"])


@router.get("/health")
async def health(request: Request):
    settings = request.app.state.settings
    cache = request.app.state.cache
    db_ok = False
    client = get_supabase()
    if client is not None:
        try:
            await run_in_threadpool(lambda: client.table("alerts").select("id").limit(1).execute())
            db_ok = True
        except Exception:
            db_ok = False
    return {
        "ok": True,
        "status": "ok",
        "app": settings.app_name,
        "environment": settings.environment,
        "dependencies": {
            "database": "ok" if db_ok else ("memory" if client is None else "degraded"),
            "cache": cache.backend,
        },
        "monitor": {"running": request.app.state.monitor.running},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/monitor/status")
async def monitor_status(request: Request):
    return request.app.state.monitor.status()


@router.post("/monitor/{family}/run")
async def run_monitor_family(family: str, request: Request):
    token = family.strip().lower()
    if token not in MONITOR_FAMILIES:
        raise HTTPException(status_code=404, detail=f"Unknown monitor family '{family}'")
    summary = await request.app.state.monitor.run_once(token)
    return summary.model_dump(mode="json")


@router.get("/cache/stats")
async def cache_stats(request: Request):
    settings = request.app.state.settings
    return await request.app.state.cache.stats(settings.cache_warmup_symbols)


@router.post("/cache/invalidate")
async def invalidate_cache(request: Request, payload: CacheInvalidateRequest | None = None):
    cache = request.app.state.cache
    symbol = (payload.symbol if payload else None) or ""
    if symbol.strip():
        await cache.invalidate_symbol(symbol.strip().upper())
        return {"invalidated": "symbol", "symbol": symbol.strip().upper()}
    removed = await cache.invalidate_stock_cache()
    return {"invalidated": "all", "removed": removed}


@router.post("/cache/warmup")
async def warmup_cache(request: Request):
    settings = request.app.state.settings
    cache = request.app.state.cache
    try:
        return await asyncio.wait_for(
            cache.warmup(request.app.state.fetcher, settings.cache_warmup_symbols),
            timeout=max(30.0, settings.http_timeout_seconds * 3),
        )
    except asyncio.TimeoutError as exc:
        raise HTTPException(status_code=504, detail="Cache warmup timed out") from exc


@router.get("/activity")
async def activity(limit: int = 50, component: str | None = None):
    limit = max(1, min(limit, 300))
    return {"items": await get_recent_activity(limit=limit, component=component)}
