"""Normalize version-control records (repositories, commits, pull requests)."""
from __future__ import annotations

from typing import Any

from workstream.date_utils import normalize_timestamp
from workstream.models import Label, Person, StructuredData, UnifiedContent, content_id
from workstream.parsers.common import (
    NormalizationContext,
    keywords,
    require_id,
    searchable,
    text,
)

SOURCE = "version-control"


def _login(raw: Any) -> str:
    if isinstance(raw, dict):
        return text(raw.get("login"))
    return ""


def _labels(raw: Any) -> list[Label]:
    if not isinstance(raw, list):
        return []
    return [Label(name=text(l.get("name")), color=l.get("color")) for l in raw if isinstance(l, dict) and l.get("name")]


def _assignees(raw: Any) -> list[Person]:
    if not isinstance(raw, list):
        return []
    return [Person(id=text(a.get("id")) or None, name=_login(a)) for a in raw if isinstance(a, dict) and _login(a)]


def _repo_parent(repo_id: Any) -> str | None:
    if repo_id is None:
        return None
    return content_id(SOURCE, "repository", repo_id)


def normalize_repository(repo: dict[str, Any], context: NormalizationContext) -> UnifiedContent:
    source_id = require_id(repo, kind="repository")
    full_name = text(repo.get("full_name")) or text(repo.get("name"))
    owner, _, name = full_name.partition("/")
    topics = [text(t) for t in repo.get("topics") or [] if text(t)]
    language = text(repo.get("language"))
    created_at = normalize_timestamp(repo.get("created_at"), context.extracted_at)
    return UnifiedContent(
        id=content_id(SOURCE, "repository", source_id),
        source=SOURCE,
        contentType="repository",
        title=full_name,
        description=repo.get("description"),
        url=repo.get("html_url"),
        createdAt=created_at,
        updatedAt=normalize_timestamp(repo.get("updated_at"), created_at),
        extractedAt=context.extracted_at,
        sourceMetadata={
            "owner": owner or context.owner,
            "repository": name or full_name,
            "branch": repo.get("default_branch"),
        },
        content=text(repo.get("description")),
        searchableText=searchable(repo.get("name"), repo.get("description"), language, " ".join(topics)),
        keywords=keywords(repo.get("name"), language, *topics),
        structuredData=StructuredData(
            language=language or None,
            topics=topics,
            private=bool(repo.get("private")),
            defaultBranch=repo.get("default_branch"),
            lastPush=repo.get("pushed_at"),
        ),
    )


def normalize_commit(commit: dict[str, Any], context: NormalizationContext) -> UnifiedContent:
    sha = require_id(commit, key="sha", kind="commit")
    detail = commit.get("commit") if isinstance(commit.get("commit"), dict) else {}
    author = detail.get("author") if isinstance(detail.get("author"), dict) else {}
    message = text(detail.get("message"))
    login = _login(commit.get("author"))
    authored_at = normalize_timestamp(author.get("date"), context.extracted_at)
    return UnifiedContent(
        id=content_id(SOURCE, "commit", sha),
        source=SOURCE,
        contentType="commit",
        title=message.split("\n", 1)[0],
        description=message or None,
        url=commit.get("html_url"),
        createdAt=authored_at,
        updatedAt=authored_at,
        extractedAt=context.extracted_at,
        parentId=_repo_parent(commit.get("repository_id")),
        sourceMetadata={"owner": context.owner, "repository": context.repository, "sha": sha},
        content=message,
        searchableText=searchable(message, author.get("name"), login),
        keywords=keywords(author.get("name"), login),
        structuredData=StructuredData(
            assignees=[Person(name=login, email=author.get("email"))] if login else [],
            author={"name": text(author.get("name")), "email": author.get("email")},
        ),
    )


def normalize_pull_request(pr: dict[str, Any], context: NormalizationContext) -> UnifiedContent:
    source_id = require_id(pr, kind="pull request")
    number = pr.get("number")
    title = text(pr.get("title"))
    body = text(pr.get("body"))
    author = _login(pr.get("user"))
    assignees = _assignees(pr.get("assignees"))
    labels = _labels(pr.get("labels"))
    head = pr.get("head") if isinstance(pr.get("head"), dict) else {}
    base = pr.get("base") if isinstance(pr.get("base"), dict) else {}
    state = text(pr.get("state"))
    created_at = normalize_timestamp(pr.get("created_at"), context.extracted_at)
    canonical = f"{context.owner}/{context.repository}#{number}" if context.owner and context.repository else None
    return UnifiedContent(
        id=content_id(SOURCE, "pull-request", source_id),
        source=SOURCE,
        contentType="pull-request",
        title=f"#{number}: {title}" if number is not None else title,
        description=pr.get("body"),
        url=pr.get("html_url"),
        createdAt=created_at,
        updatedAt=normalize_timestamp(pr.get("updated_at"), created_at),
        extractedAt=context.extracted_at,
        parentId=_repo_parent(pr.get("repository_id")),
        sourceMetadata={
            "owner": context.owner,
            "repository": context.repository,
            "number": number,
            "canonicalId": canonical,
            "branch": head.get("ref"),
            "baseBranch": base.get("ref"),
        },
        content=body,
        searchableText=searchable(
            title,
            body,
            author,
            " ".join(a.name for a in assignees),
            " ".join(l.name for l in labels),
        ),
        keywords=keywords(author, *(a.name for a in assignees), *(l.name for l in labels), state),
        structuredData=StructuredData(
            status=state or None,
            state=state or None,
            assignees=assignees,
            labels=labels,
            author={"name": author},
            closedAt=pr.get("closed_at"),
            mergedAt=normalize_timestamp(pr.get("merged_at")) or None,
            additions=int(pr.get("additions") or 0),
            deletions=int(pr.get("deletions") or 0),
            filesChanged=int(pr.get("changed_files") or 0),
            headBranch=head.get("ref"),
        ),
    )
