"""Sync trigger and observability API."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from workstream.routers.errors import get_data_service, unwrap

sync_router = APIRouter(prefix="/api/sync", tags=["sync"])


class SyncRequest(BaseModel):
    source: Optional[str] = None
    forceFull: bool = False


@sync_router.post("")
async def trigger_sync(request: Request, body: SyncRequest):
    """Sync one source, or every registered source when ``source`` is omitted."""
    records = unwrap(await get_data_service(request).sync(body.source, force_full=body.forceFull))
    return {
        "status": "ok" if all(r.success for r in records) else "partial",
        "results": records,
    }


@sync_router.get("/history")
async def get_sync_history(
    request: Request,
    source: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
):
    records = unwrap(await get_data_service(request).get_sync_history(source, limit))
    return {"count": len(records), "items": records}


@sync_router.get("/operations")
async def list_sync_operations(request: Request, limit: int = Query(20, ge=1, le=200)):
    service = get_data_service(request)
    operations = await service.sync_engine.list_operations(limit=limit)
    return {
        "status": "ok",
        "count": len(operations),
        "items": operations,
        "sources": await service.sync_engine.get_source_states(),
    }


@sync_router.get("/operations/{operation_id}")
async def get_sync_operation(request: Request, operation_id: str):
    operation = await get_data_service(request).sync_engine.get_operation(operation_id)
    if not operation:
        raise HTTPException(status_code=404, detail=f"Operation {operation_id} not found")
    return operation
