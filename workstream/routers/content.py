"""Unified content query API."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import ValidationError

from workstream.models import DataQuery, DataQueryFilters, DataQueryResult, TimeRange, UnifiedContent
from workstream.routers.errors import get_data_service, unwrap

content_router = APIRouter(prefix="/api/content", tags=["content"])


@content_router.get("", response_model=DataQueryResult)
async def list_content(
    request: Request,
    source: list[str] = Query(default=[]),
    contentType: list[str] = Query(default=[]),
    q: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    timeField: str = "createdAt",
    status: list[str] = Query(default=[]),
    assignee: list[str] = Query(default=[]),
    label: list[str] = Query(default=[]),
    project: list[str] = Query(default=[]),
    cycle: list[str] = Query(default=[]),
    sortBy: str = "updatedAt",
    sortOrder: str = "desc",
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Query the unified store; repeated params (``?source=a&source=b``) build lists."""
    try:
        query = DataQuery(
            sources=source,
            contentTypes=contentType,
            textSearch=q,
            timeRange=TimeRange(start=start, end=end, field=timeField) if (start or end) else None,
            filters=DataQueryFilters(status=status, assignees=assignee, labels=label, projects=project, cycles=cycle),
            sortBy=sortBy if sortBy in ("createdAt", "updatedAt", "title") else "updatedAt",
            sortOrder=sortOrder if sortOrder in ("asc", "desc") else "desc",
            limit=limit,
            offset=offset,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False)) from exc
    return unwrap(await get_data_service(request).query(query))


@content_router.post("/query", response_model=DataQueryResult)
async def query_content(request: Request, body: DataQuery):
    return unwrap(await get_data_service(request).query(body))


@content_router.get("/{item_id}", response_model=UnifiedContent)
async def get_content(request: Request, item_id: str):
    return unwrap(await get_data_service(request).get_content(item_id))


@content_router.get("/{item_id}/relationships")
async def get_content_relationships(request: Request, item_id: str):
    return unwrap(await get_data_service(request).get_relationships(item_id))
