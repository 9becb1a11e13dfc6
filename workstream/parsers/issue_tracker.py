"""Normalize issue-tracker records (issues, projects, cycles, teams)."""
from __future__ import annotations

from typing import Any

from workstream.date_utils import normalize_timestamp
from workstream.models import (
    CycleInfo,
    Label,
    Person,
    Reference,
    StructuredData,
    TrackerIssue,
    UnifiedContent,
    content_id,
)
from workstream.parsers.common import (
    NormalizationContext,
    keywords,
    nodes,
    require_id,
    searchable,
    text,
    to_optional_float,
)

SOURCE = "issue-tracker"
_BASE_URL = "https://linear.app"


def _person(raw: Any) -> Person | None:
    if not isinstance(raw, dict) or not raw.get("name"):
        return None
    return Person(id=raw.get("id"), name=str(raw["name"]), email=raw.get("email"))


def _reference(raw: Any) -> Reference | None:
    if not isinstance(raw, dict) or not (raw.get("id") or raw.get("name")):
        return None
    return Reference(
        id=raw.get("id"),
        name=text(raw.get("name")),
        key=raw.get("key"),
        color=raw.get("color"),
    )


def normalize_issue(issue: dict[str, Any], context: NormalizationContext) -> UnifiedContent:
    source_id = require_id(issue, kind="issue")
    identifier = text(issue.get("identifier"))
    state = issue.get("state") if isinstance(issue.get("state"), dict) else {}
    assignee = _person(issue.get("assignee"))
    project = _reference(issue.get("project"))
    team = _reference(issue.get("team"))
    cycle = _reference(issue.get("cycle"))
    labels = [Label(name=text(l.get("name")), color=l.get("color")) for l in nodes(issue.get("labels")) if l.get("name")]
    label_names = [label.name for label in labels]

    searchable_text = searchable(
        issue.get("title"),
        issue.get("description"),
        identifier,
        state.get("name"),
        assignee.name if assignee else "",
        project.name if project else "",
        " ".join(label_names),
    )

    created_at = normalize_timestamp(issue.get("createdAt"), context.extracted_at)
    title = text(issue.get("title"))
    return UnifiedContent(
        id=content_id(SOURCE, "issue", source_id),
        source=SOURCE,
        contentType="issue",
        title=f"{identifier}: {title}" if identifier else title,
        description=issue.get("description"),
        url=issue.get("url") or (f"{_BASE_URL}/issue/{identifier}" if identifier else None),
        createdAt=created_at,
        updatedAt=normalize_timestamp(issue.get("updatedAt"), created_at),
        extractedAt=context.extracted_at,
        parentId=content_id(SOURCE, "project", project.id) if project and project.id else None,
        relatedIds=[content_id(SOURCE, "cycle", cycle.id)] if cycle and cycle.id else [],
        sourceMetadata={
            "identifier": identifier,
            "teamId": team.id if team else None,
            "teamKey": team.key if team else None,
            "projectId": project.id if project else None,
            "cycleId": cycle.id if cycle else None,
        },
        content=text(issue.get("description")),
        searchableText=searchable_text,
        keywords=keywords(identifier, state.get("name"), assignee.name if assignee else "", project.name if project else "", *label_names),
        structuredData=StructuredData(
            status=state.get("name"),
            state=state.get("type"),
            priority=issue.get("priority"),
            estimate=to_optional_float(issue.get("estimate")),
            assignees=[assignee] if assignee else [],
            labels=labels,
            project=project,
            team=team,
            cycle=cycle,
            dueDate=issue.get("dueDate"),
            completedAt=normalize_timestamp(issue.get("completedAt")) or None,
        ),
    )


def normalize_project(project: dict[str, Any], context: NormalizationContext) -> UnifiedContent:
    source_id = require_id(project, kind="project")
    name = text(project.get("name"))
    state = text(project.get("state"))
    return UnifiedContent(
        id=content_id(SOURCE, "project", source_id),
        source=SOURCE,
        contentType="project",
        title=name,
        description=project.get("description"),
        url=project.get("url") or f"{_BASE_URL}/project/{source_id}",
        createdAt=normalize_timestamp(project.get("createdAt") or project.get("startDate"), context.extracted_at),
        updatedAt=normalize_timestamp(project.get("updatedAt"), context.extracted_at),
        extractedAt=context.extracted_at,
        sourceMetadata={"projectId": source_id},
        content=text(project.get("description")),
        searchableText=searchable(name, project.get("description"), state),
        keywords=keywords(name, state),
        structuredData=StructuredData(
            status=state or None,
            state=state or None,
            startDate=project.get("startDate"),
            endDate=project.get("targetDate"),
            dueDate=project.get("targetDate"),
        ),
    )


def normalize_cycle(cycle: dict[str, Any], context: NormalizationContext) -> UnifiedContent:
    source_id = require_id(cycle, kind="cycle")
    team = _reference(cycle.get("team"))
    team_name = team.name if team else ""
    name = text(cycle.get("name")) or f"Cycle {text(cycle.get('number'))}".strip()
    status = cycle.get("status") or ("active" if cycle.get("isActive") else "completed")
    starts_at = normalize_timestamp(cycle.get("startsAt"), context.extracted_at)
    return UnifiedContent(
        id=content_id(SOURCE, "cycle", source_id),
        source=SOURCE,
        contentType="cycle",
        title=f"{name} ({team_name})" if team_name else name,
        description=f"Cycle for team {team_name}" if team_name else None,
        url=cycle.get("url") or f"{_BASE_URL}/cycle/{source_id}",
        createdAt=starts_at,
        updatedAt=normalize_timestamp(cycle.get("updatedAt"), context.extracted_at),
        extractedAt=context.extracted_at,
        parentId=content_id(SOURCE, "team", team.id) if team and team.id else None,
        sourceMetadata={
            "cycleId": source_id,
            "teamId": team.id if team else None,
            "teamName": team_name or None,
            "teamKey": team.key if team else None,
        },
        content=f"Cycle {name} for team {team_name}" if team_name else f"Cycle {name}",
        searchableText=searchable(name, team_name, status),
        keywords=keywords(name, team_name, team.key if team else "", status),
        structuredData=StructuredData(
            status=status,
            state=status,
            startDate=starts_at,
            endDate=normalize_timestamp(cycle.get("endsAt")) or None,
            team=team,
        ),
    )


def normalize_team(team: dict[str, Any], context: NormalizationContext) -> UnifiedContent:
    source_id = require_id(team, kind="team")
    name = text(team.get("name"))
    key = text(team.get("key"))
    return UnifiedContent(
        id=content_id(SOURCE, "team", source_id),
        source=SOURCE,
        contentType="team",
        title=name,
        description=f"Team {name} ({key})" if key else f"Team {name}",
        url=f"{_BASE_URL}/team/{key}" if key else None,
        createdAt=normalize_timestamp(team.get("createdAt"), context.extracted_at),
        updatedAt=normalize_timestamp(team.get("updatedAt"), context.extracted_at),
        extractedAt=context.extracted_at,
        sourceMetadata={"teamId": source_id, "teamName": name, "teamKey": key},
        content=f"Team {name} with key {key}",
        searchableText=searchable(name, key),
        keywords=keywords(name, key),
        structuredData=StructuredData(team=Reference(id=source_id, name=name, key=key or None)),
    )


def to_cycle_info(cycle: dict[str, Any]) -> CycleInfo:
    source_id = require_id(cycle, kind="cycle")
    return CycleInfo(
        id=source_id,
        name=text(cycle.get("name")) or f"Cycle {text(cycle.get('number'))}".strip(),
        startsAt=normalize_timestamp(cycle.get("startsAt")),
        endsAt=normalize_timestamp(cycle.get("endsAt")),
    )


def to_tracker_issue(issue: dict[str, Any]) -> TrackerIssue:
    """Shape a raw issue record for cycle aggregation."""
    source_id = require_id(issue, kind="issue")
    state = issue.get("state") if isinstance(issue.get("state"), dict) else {}
    cycle = issue.get("cycle")
    return TrackerIssue(
        id=source_id,
        identifier=text(issue.get("identifier")),
        title=text(issue.get("title")),
        description=issue.get("description"),
        estimate=to_optional_float(issue.get("estimate")),
        assignee=_person(issue.get("assignee")),
        project=_reference(issue.get("project")),
        labels=[Label(name=text(l.get("name")), color=l.get("color")) for l in nodes(issue.get("labels")) if l.get("name")],
        stateType=state.get("type"),
        completedAt=normalize_timestamp(issue.get("completedAt")) or None,
        url=issue.get("url"),
        cycle=to_cycle_info(cycle) if isinstance(cycle, dict) and cycle.get("id") and cycle.get("startsAt") else None,
    )
