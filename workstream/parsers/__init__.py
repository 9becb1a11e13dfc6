"""Normalizers turning source records into UnifiedContent."""

from workstream.parsers.common import NormalizationContext
from workstream.parsers.documents import normalize_document_page, parse_document_file
from workstream.parsers.issue_tracker import (
    normalize_cycle,
    normalize_issue,
    normalize_project,
    normalize_team,
    to_cycle_info,
    to_tracker_issue,
)
from workstream.parsers.version_control import (
    normalize_commit,
    normalize_pull_request,
    normalize_repository,
)

__all__ = [
    "NormalizationContext",
    "normalize_commit",
    "normalize_cycle",
    "normalize_document_page",
    "normalize_issue",
    "normalize_project",
    "normalize_pull_request",
    "normalize_repository",
    "normalize_team",
    "parse_document_file",
    "to_cycle_info",
    "to_tracker_issue",
]
