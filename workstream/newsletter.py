"""Activity newsletter built from the unified store."""
from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from workstream.date_utils import utc_now_iso
from workstream.models import (
    DataQuery,
    Newsletter,
    NewsletterOptions,
    NewsletterSection,
    UnifiedContent,
)

logger = logging.getLogger("workstream.newsletter")

_COMPLETED = {"completed", "done", "merged", "closed"}
_IN_PROGRESS = {"in_progress", "started", "in progress"}


def group_key(item: UnifiedContent, group_by: str) -> str:
    facets = item.structuredData
    if group_by == "source":
        return item.source
    if group_by == "contentType":
        return item.contentType
    if group_by == "assignee":
        return facets.assignees[0].name if facets and facets.assignees and facets.assignees[0].name else "Unassigned"
    if group_by == "project":
        return facets.project.name if facets and facets.project and facets.project.name else "No Project"
    if group_by == "cycle":
        return facets.cycle.name if facets and facets.cycle and facets.cycle.name else "No Cycle"
    return "All Items"


def section_title(key: str, group_by: str) -> str:
    if group_by == "source":
        return f"{key.replace('-', ' ').title()} Updates"
    if group_by == "contentType":
        return key.replace("-", " ").title()
    return key


def _state_of(item: UnifiedContent) -> set[str]:
    facets = item.structuredData
    if facets is None:
        return set()
    return {value.lower() for value in (facets.status, facets.state) if value}


def section_metrics(items: list[UnifiedContent]) -> dict[str, int]:
    return {
        "totalItems": len(items),
        "completedItems": sum(1 for item in items if _state_of(item) & _COMPLETED),
        "inProgressItems": sum(1 for item in items if _state_of(item) & _IN_PROGRESS),
    }


def overall_metrics(items: list[UnifiedContent]) -> dict[str, Any]:
    return {
        "totalItems": len(items),
        "bySource": dict(Counter(item.source for item in items)),
        "byContentType": dict(Counter(item.contentType for item in items)),
    }


async def generate_newsletter(content_repo: Any, options: NewsletterOptions) -> Newsletter:
    """Query the window, group it into sections, and render it."""
    time_range = options.timeRange
    if "field" not in time_range.model_fields_set:
        time_range = time_range.model_copy(update={"field": "updatedAt"})

    result = await content_repo.query(
        DataQuery(sources=options.sources, timeRange=time_range, sortBy="updatedAt", sortOrder="desc")
    )

    grouped: dict[str, list[UnifiedContent]] = {}
    for item in result.items:
        grouped.setdefault(group_key(item, options.groupBy), []).append(item)

    sections = [
        NewsletterSection(
            title=section_title(key, options.groupBy),
            items=items,
            metrics=section_metrics(items) if options.includeMetrics else {},
        )
        for key, items in grouped.items()
    ]
    newsletter = Newsletter(
        title=f"Activity Report: {time_range.start or 'beginning'} to {time_range.end or 'now'}",
        timeRange=time_range,
        sections=sections,
        overallMetrics=overall_metrics(result.items) if options.includeMetrics else {},
        generatedAt=utc_now_iso(),
    )
    newsletter.rendered = render_newsletter(newsletter, options.format)
    logger.info("Generated newsletter with %d sections, %d items", len(sections), len(result.items))
    return newsletter


def render_newsletter(newsletter: Newsletter, fmt: str = "markdown") -> str:
    if fmt == "text":
        return _render_text(newsletter)
    return _render_markdown(newsletter)


def _render_markdown(newsletter: Newsletter) -> str:
    lines = [f"# {newsletter.title}", ""]
    metrics = newsletter.overallMetrics
    if metrics:
        lines.append(f"**Total items:** {metrics.get('totalItems', 0)}")
        for source, count in sorted(metrics.get("bySource", {}).items()):
            lines.append(f"- {source}: {count}")
        lines.append("")
    for section in newsletter.sections:
        lines.append(f"## {section.title}")
        if section.metrics:
            lines.append(
                f"_{section.metrics['totalItems']} items, "
                f"{section.metrics['completedItems']} completed, "
                f"{section.metrics['inProgressItems']} in progress_"
            )
        lines.append("")
        for item in section.items:
            lines.append(f"- [{item.title}]({item.url})" if item.url else f"- {item.title}")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def _render_text(newsletter: Newsletter) -> str:
    lines = [newsletter.title, "=" * len(newsletter.title), ""]
    metrics = newsletter.overallMetrics
    if metrics:
        lines.append(f"Total items: {metrics.get('totalItems', 0)}")
        lines.append("")
    for section in newsletter.sections:
        lines.append(section.title)
        lines.append("-" * len(section.title))
        for item in section.items:
            lines.append(f"* {item.title}")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"
