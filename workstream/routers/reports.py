"""Cycle review, PR correlation, and newsletter API."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from workstream.models import CycleReviewReport, IssueRef, Newsletter, NewsletterOptions
from workstream.routers.errors import get_data_service, unwrap

reports_router = APIRouter(prefix="/api", tags=["reports"])


class LinkedPRsRequest(BaseModel):
    issues: list[IssueRef] = Field(default_factory=list)


@reports_router.get("/cycles/{cycle_id}/review", response_model=CycleReviewReport)
async def get_cycle_review(request: Request, cycle_id: str):
    return unwrap(await get_data_service(request).get_cycle_review(cycle_id))


@reports_router.get("/issues/{issue_id}/linked-prs")
async def get_issue_linked_prs(request: Request, issue_id: str, identifier: Optional[str] = None):
    prs = unwrap(await get_data_service(request).get_linked_prs(issue_id, identifier))
    return {"issueId": issue_id, "count": len(prs), "pullRequests": prs}


@reports_router.post("/issues/linked-prs")
async def get_linked_prs_batch(request: Request, body: LinkedPRsRequest):
    linked = unwrap(await get_data_service(request).get_linked_prs_for_issues(body.issues))
    return {"count": len(linked), "items": linked}


@reports_router.post("/newsletter", response_model=Newsletter)
async def create_newsletter(request: Request, body: NewsletterOptions):
    return unwrap(await get_data_service(request).generate_newsletter(body))
