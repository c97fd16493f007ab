"""
Core data types for the regeneration pipeline.

This module defines the fundamental data structures passed between stages:
- Snapshot: one immutable raw capture of a page
- PageDeclaration / DocumentDeclaration: how to extract a document
- VersionRecord: extracted text ready to be recorded
- SkipDecision / AggregationResult / Classification: stage results
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

VERSION_MIME_TYPE = "text/markdown"


def parse_iso8601(value: str) -> datetime:
    """Parse an ISO 8601 timestamp string into a timezone-aware datetime."""
    raw = value.strip()
    if raw.endswith("Z"):
        raw = f"{raw[:-1]}+00:00"
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_iso8601(value: datetime) -> str:
    """Format a datetime as a UTC ISO 8601 string with a trailing Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def document_key(service_id: str, document_type: str) -> str:
    return f"{service_id}/{document_type}"


@dataclass(frozen=True)
class Snapshot:
    """One immutable capture of a page at a point in time.

    Attributes:
        id: Opaque stable identifier
        service_id: Service the page belongs to
        document_type: Type of document captured (e.g. "Terms of Service")
        fetch_date: Timezone-aware capture timestamp
        content: Raw content; str for textual MIME types, bytes otherwise
        mime_type: MIME type of the content
        page_id: Page identifier for multi-page documents, None otherwise
    """

    id: str
    service_id: str
    document_type: str
    fetch_date: datetime
    content: str | bytes
    mime_type: str = "text/html"
    page_id: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.service_id, self.document_type)


@dataclass
class PageDeclaration:
    """Extraction configuration for a single page.

    Attributes:
        location: URL the page was fetched from
        select: Content selector(s); None delegates to the main-content extractor chain
        remove: Noise selectors removed before conversion
        filters: Names of registered filters applied to the parsed tree
        execute_client_scripts: Recorded for display only, snapshots are already rendered
        id: Explicit page identifier; defaults to the location
    """

    location: str
    select: str | list[str] | None = None
    remove: str | list[str] | None = None
    filters: list[str] = field(default_factory=list)
    execute_client_scripts: bool | None = None
    id: str | None = None

    @property
    def page_id(self) -> str:
        return self.id or self.location

    @classmethod
    def from_json(cls, raw: dict[str, Any]) -> "PageDeclaration":
        return cls(
            location=raw.get("fetch", ""),
            select=raw.get("select"),
            remove=raw.get("remove"),
            filters=list(raw.get("filter") or []),
            execute_client_scripts=raw.get("executeClientScripts"),
            id=raw.get("id"),
        )

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "fetch": self.location,
            "select": self.select,
            "remove": self.remove,
            "filter": self.filters or None,
            "executeClientScripts": self.execute_client_scripts,
        }
        return {key: value for key, value in data.items() if value is not None}


@dataclass
class DocumentDeclaration:
    """Ordered page declarations valid up to ``valid_until`` (None means current)."""

    service_id: str
    document_type: str
    pages: list[PageDeclaration]
    service_name: str | None = None
    valid_until: datetime | None = None

    @property
    def is_multi_page(self) -> bool:
        return len(self.pages) > 1

    @property
    def page_ids(self) -> list[str]:
        return [page.page_id for page in self.pages]

    def find_page(self, page_id: str | None) -> PageDeclaration | None:
        if page_id is None:
            return None
        for page in self.pages:
            if page_id in (page.id, page.location):
                return page
        return None


@dataclass
class VersionRecord:
    """Extracted text derived from one or more snapshots, ready to be recorded."""

    content: str
    service_id: str
    document_type: str
    snapshot_ids: list[str]
    fetch_date: datetime
    mime_type: str = VERSION_MIME_TYPE


@dataclass
class SkipDecision:
    skip: bool
    reason: str | None = None


@dataclass
class AggregationResult:
    """Result of submitting a page snapshot to the multi-page buffer.

    Attributes:
        complete: True when every declared page is present
        pages: Page snapshots in declared order, only when complete
        page: Number of distinct pages collected so far
        total_pages: Number of pages the declaration defines
    """

    complete: bool
    pages: list[Snapshot] = field(default_factory=list)
    page: int = 0
    total_pages: int = 0


@dataclass
class Classification:
    """Outcome of comparing new content with the last accepted version.

    Attributes:
        skip: True when the content duplicates the previous version
        first: True when no previous version exists
        reason: Human-readable reason when skipped
        diff: Unified diff against the previous version for changes
        similarity: rapidfuzz ratio (0-100) against the previous version
    """

    skip: bool
    first: bool = False
    reason: str | None = None
    diff: str | None = None
    similarity: float | None = None


@dataclass
class ProgressCheckpoint:
    snapshot_id: str
    index: int
    saved_at: str
    pending_pages: dict[str, list[str]] = field(default_factory=dict)
