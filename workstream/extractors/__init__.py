"""Source extractors feeding the sync engine."""

from workstream.extractors.base import ExtractionResult, Extractor
from workstream.extractors.documents import DocumentStoreExtractor
from workstream.extractors.issue_tracker import IssueTrackerExtractor
from workstream.extractors.version_control import VersionControlExtractor

__all__ = [
    "DocumentStoreExtractor",
    "ExtractionResult",
    "Extractor",
    "IssueTrackerExtractor",
    "VersionControlExtractor",
]
