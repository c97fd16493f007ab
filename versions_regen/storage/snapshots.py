"""
File-backed snapshot repository.

Layout under the repository root:

    snapshots.jsonl                         one manifest line per snapshot
    <service>/<type>/<date>-<id>.html       single-page content
    <service>/<type> #<page>/<date>-<id>    page-qualified content

Manifest lines only hold metadata; content is read lazily when a snapshot is
yielded, so iterating a large archive never loads every capture at once.
"""

from __future__ import annotations

import json
import mimetypes
from dataclasses import dataclass
from datetime import datetime
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any, Iterator

from ..errors import NotFoundError
from ..jsonfile import append_jsonl
from ..core.types import Snapshot, format_iso8601, parse_iso8601

MANIFEST_FILENAME = "snapshots.jsonl"

_TEXTUAL_MIME_TYPES = {"application/json", "application/xml", "application/xhtml+xml"}
_EXTENSIONS = {"text/html": ".html", "text/plain": ".txt", "text/markdown": ".md", "application/pdf": ".pdf"}


def is_textual(mime_type: str) -> bool:
    return mime_type.startswith("text/") or mime_type in _TEXTUAL_MIME_TYPES


def extension_for(mime_type: str) -> str:
    return _EXTENSIONS.get(mime_type) or mimetypes.guess_extension(mime_type) or ".bin"


def snapshot_filename(snapshot: Snapshot) -> str:
    """Return ``<fetch date without millis, ':' and '.' as '-'>-<id><ext>``."""
    stamp = format_iso8601(snapshot.fetch_date.replace(microsecond=0))
    stamp = stamp.replace(":", "-").replace(".", "-")
    return f"{stamp}-{snapshot.id}{extension_for(snapshot.mime_type)}"


def snapshot_folder_name(document_type: str, page_id: str | None) -> str:
    return f"{document_type} #{page_id}" if page_id else document_type


@dataclass
class _ManifestEntry:
    id: str
    service_id: str
    document_type: str
    page_id: str | None
    fetch_date: datetime
    mime_type: str
    path: str
    position: int

    @property
    def names(self) -> list[str]:
        base = f"{self.service_id}/{self.document_type}"
        if self.page_id:
            return [base, f"{base} #{self.page_id}"]
        return [base]


class FileSnapshotRepository:
    """Ordered, filterable and resumable access to captured snapshots.

    Attributes:
        root: Repository root directory
    """

    def __init__(self, root: Path):
        self.root = root
        self.manifest_path = root / MANIFEST_FILENAME
        self._entries: list[_ManifestEntry] | None = None
        self._by_id: dict[str, _ManifestEntry] = {}

    def _load(self) -> list[_ManifestEntry]:
        if self._entries is not None:
            return self._entries
        entries: list[_ManifestEntry] = []
        if self.manifest_path.exists():
            with self.manifest_path.open("r", encoding="utf-8") as handle:
                for line in handle:
                    if not line.strip():
                        continue
                    entries.append(_entry_from_json(json.loads(line), len(entries)))
        entries.sort(key=lambda entry: (entry.fetch_date, entry.position))
        self._entries = entries
        self._by_id = {entry.id: entry for entry in entries}
        return entries

    def count(self) -> int:
        return len(self._load())

    def iterate(
        self,
        service_id: str = "*",
        document_type: str = "*",
        resume_from: str | None = None,
        aliases: dict[str, str] | None = None,
    ) -> Iterator[Snapshot]:
        """Yield snapshots in fetch-date order, optionally after ``resume_from``.

        Args:
            service_id: Glob matched against the snapshot service id
            document_type: Glob matched against the document type
            resume_from: Snapshot id after which iteration starts
            aliases: Raw -> canonical document type mapping, so a canonical
                     filter also selects snapshots stored under a raw type

        Raises:
            NotFoundError: If ``resume_from`` is not in the repository
        """
        entries = self._load()
        start = 0
        if resume_from is not None:
            entry = self._by_id.get(resume_from)
            if entry is None:
                raise NotFoundError(resume_from)
            start = entries.index(entry) + 1

        pattern = f"{service_id}/{document_type}"
        for entry in entries[start:]:
            if not self._matches(entry, pattern, aliases or {}):
                continue
            yield self._materialize(entry)

    def count_matching(
        self,
        service_id: str = "*",
        document_type: str = "*",
        aliases: dict[str, str] | None = None,
    ) -> int:
        pattern = f"{service_id}/{document_type}"
        return sum(1 for entry in self._load() if self._matches(entry, pattern, aliases or {}))

    def find_by_id(self, snapshot_id: str) -> Snapshot:
        self._load()
        entry = self._by_id.get(snapshot_id)
        if entry is None:
            raise NotFoundError(snapshot_id)
        return self._materialize(entry)

    def save(self, snapshot: Snapshot) -> Path:
        """Store a snapshot's content and register it in the manifest."""
        folder = self.root / snapshot.service_id / snapshot_folder_name(snapshot.document_type, snapshot.page_id)
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / snapshot_filename(snapshot)
        if isinstance(snapshot.content, bytes):
            path.write_bytes(snapshot.content)
        else:
            path.write_text(snapshot.content, encoding="utf-8")

        append_jsonl(
            self.manifest_path,
            {
                "id": snapshot.id,
                "serviceId": snapshot.service_id,
                "documentType": snapshot.document_type,
                "pageId": snapshot.page_id,
                "fetchDate": format_iso8601(snapshot.fetch_date),
                "mimeType": snapshot.mime_type,
                "path": path.relative_to(self.root).as_posix(),
            },
        )
        self._entries = None
        return path

    @staticmethod
    def _matches(entry: _ManifestEntry, pattern: str, aliases: dict[str, str]) -> bool:
        names = list(entry.names)
        canonical = aliases.get(entry.document_type)
        if canonical and canonical != entry.document_type:
            base = f"{entry.service_id}/{canonical}"
            names.append(base)
            if entry.page_id:
                names.append(f"{base} #{entry.page_id}")
        return any(fnmatchcase(name, pattern) for name in names)

    def _materialize(self, entry: _ManifestEntry) -> Snapshot:
        raw = (self.root / entry.path).read_bytes()
        content: str | bytes = raw.decode("utf-8", errors="replace") if is_textual(entry.mime_type) else raw
        return Snapshot(
            id=entry.id,
            service_id=entry.service_id,
            document_type=entry.document_type,
            fetch_date=entry.fetch_date,
            content=content,
            mime_type=entry.mime_type,
            page_id=entry.page_id,
        )


def _entry_from_json(raw: dict[str, Any], position: int) -> _ManifestEntry:
    return _ManifestEntry(
        id=str(raw["id"]),
        service_id=raw["serviceId"],
        document_type=raw["documentType"],
        page_id=raw.get("pageId"),
        fetch_date=parse_iso8601(raw["fetchDate"]),
        mime_type=raw.get("mimeType") or "text/html",
        path=raw["path"],
        position=position,
    )
