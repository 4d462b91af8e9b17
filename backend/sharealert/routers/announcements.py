from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from sharealert.errors import StoreError
from sharealert.schemas import CreateDividendRequest, CreateIPORequest

router = APIRouter(prefix="/announcements", tags=["announcements"])


@router.post("/dividends", status_code=201)
async def create_dividend(payload: CreateDividendRequest, request: Request):
    try:
        dividend = await request.app.state.announcements.create_dividend(payload)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return dividend.model_dump(mode="json")


@router.get("/dividends/upcoming")
async def upcoming_dividends(request: Request):
    store = request.app.state.announcement_store
    try:
        items = await run_in_threadpool(store.list_upcoming_dividends)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"items": [item.model_dump(mode="json") for item in items]}


@router.post("/ipos", status_code=201)
async def create_ipo(payload: CreateIPORequest, request: Request):
    try:
        ipo = await request.app.state.announcements.create_ipo(payload)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ipo.model_dump(mode="json")


@router.get("/ipos/upcoming")
async def upcoming_ipos(request: Request):
    store = request.app.state.announcement_store
    try:
        items = await run_in_threadpool(store.list_upcoming_ipos)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"items": [item.model_dump(mode="json") for item in items]}
