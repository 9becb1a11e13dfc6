"""Translate service results into HTTP responses."""
from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request

from workstream.models import ServiceResult

STATUS_BY_CODE = {
    "not_found": 404,
    "configuration_error": 400,
    "validation_error": 422,
    "transport_error": 502,
}


def get_data_service(request: Request):
    service = getattr(request.app.state, "data_service", None)
    if not service:
        raise HTTPException(status_code=503, detail="Data service not initialized")
    return service


def unwrap(result: ServiceResult) -> Any:
    """Return ``result.data`` or raise the HTTPException matching its error code."""
    if result.ok:
        return result.data
    error = result.error
    status = STATUS_BY_CODE.get(error.error, 500) if error else 500
    raise HTTPException(status_code=status, detail=error.model_dump() if error else "Unknown error")
