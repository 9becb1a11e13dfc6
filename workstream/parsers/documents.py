"""Parse exported document-store pages (markdown + YAML frontmatter)."""
from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml

from workstream.date_utils import normalize_timestamp
from workstream.errors import ValidationError
from workstream.models import StructuredData, UnifiedContent, content_id
from workstream.parsers.common import NormalizationContext, keywords, require_id, text

SOURCE = "document-store"

_CONTENT_TYPES = {
    "document": "document",
    "doc": "document",
    "page": "page",
    "canvas": "page",
    "subpage": "page",
    "table": "table",
    "view": "table",
}
_MARKUP_RE = re.compile(r"[#*`\[\]()]")
_WORD_RE = re.compile(r"[a-z][a-z0-9_-]{3,}")
_STOPWORDS = {"this", "that", "with", "from", "have", "will", "were", "their", "there", "about", "which"}


def _extract_frontmatter(raw: str) -> tuple[dict[str, Any], str, bool]:
    match = re.match(r"^---\s*\n(.*?)\n---\s*\n?(.*)", raw, re.DOTALL)
    if not match:
        return {}, raw, False
    try:
        fm = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError:
        fm = {}
    if not isinstance(fm, dict):
        fm = {}
    return fm, match.group(2), True


def _description(body: str) -> str | None:
    for line in body.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            return stripped[:200]
    return None


def _top_terms(body: str, limit: int = 10) -> list[str]:
    counts: dict[str, int] = {}
    for word in _WORD_RE.findall(body.lower()):
        if word in _STOPWORDS:
            continue
        counts[word] = counts.get(word, 0) + 1
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [word for word, _ in ranked[:limit]]


def normalize_document_page(
    frontmatter: dict[str, Any],
    body: str,
    context: NormalizationContext,
) -> UnifiedContent:
    page_id = require_id(frontmatter, key="page_id", kind="document page")
    raw_type = text(frontmatter.get("content_type")).strip().lower() or "page"
    content_type = _CONTENT_TYPES.get(raw_type)
    if content_type is None:
        raise ValidationError(f"document page {page_id} has unsupported content_type '{raw_type}'")

    doc_id = text(frontmatter.get("doc_id"))
    doc_name = text(frontmatter.get("doc_name"))
    parent_page_id = text(frontmatter.get("parent_page_id"))
    parent_page_name = text(frontmatter.get("parent_page_name"))
    title = text(frontmatter.get("title")) or page_id

    if parent_page_id:
        parent_id: str | None = content_id(SOURCE, "page", parent_page_id)
    elif doc_id and doc_id != page_id:
        parent_id = content_id(SOURCE, "document", doc_id)
    else:
        parent_id = None

    tags = [text(tag) for tag in frontmatter.get("tags") or [] if text(tag)]
    searchable_text = _MARKUP_RE.sub("", " ".join([title, body, doc_name, parent_page_name]).lower())
    created_at = normalize_timestamp(frontmatter.get("created_at"), context.extracted_at)

    return UnifiedContent(
        id=content_id(SOURCE, content_type, page_id),
        source=SOURCE,
        contentType=content_type,
        title=title,
        description=_description(body),
        url=frontmatter.get("url"),
        createdAt=created_at,
        updatedAt=normalize_timestamp(frontmatter.get("updated_at"), created_at),
        extractedAt=context.extracted_at,
        parentId=parent_id,
        childIds=[content_id(SOURCE, "page", text(c)) for c in frontmatter.get("child_page_ids") or [] if text(c)],
        sourceMetadata={
            "docId": doc_id,
            "docName": doc_name,
            "pageId": page_id,
            "isSubpage": bool(frontmatter.get("is_subpage") or parent_page_id),
            "parentPageId": parent_page_id or None,
            "parentPageName": parent_page_name or None,
        },
        content=body,
        searchableText=searchable_text,
        keywords=keywords(doc_name, parent_page_name, *tags, *_top_terms(body)),
        structuredData=StructuredData(
            documentName=doc_name or None,
            originalContentType=raw_type,
            tags=tags,
        ),
    )


def parse_document_file(path: Path, context: NormalizationContext) -> UnifiedContent:
    """Read one exported page; raises ValidationError when it has no usable frontmatter."""
    raw = path.read_text(encoding="utf-8")
    frontmatter, body, has_frontmatter = _extract_frontmatter(raw)
    if not has_frontmatter:
        raise ValidationError(f"{path.name}: no frontmatter found")
    return normalize_document_page(frontmatter, body.strip(), context)
