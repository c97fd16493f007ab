"""
File-backed store of regenerated versions.

Layout under the store root:

    <service>/<type>.md               latest accepted content
    <service>/<type>.history.jsonl    one line per accepted version
"""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
from datetime import datetime
from pathlib import Path

from ..core.types import VersionRecord, format_iso8601, parse_iso8601
from ..jsonfile import append_jsonl, write_text_atomic

logger = logging.getLogger("versions_regen.versions")


class FileVersionRepository:
    """Version store keeping the latest content and an append-only history.

    ``save`` refuses records older than the last one saved for the same
    document, so the history is always in non-decreasing fetch-date order.
    """

    def __init__(self, root: Path):
        self.root = root
        self._last_entries: dict[tuple[str, str], dict] = {}

    def content_path(self, service_id: str, document_type: str) -> Path:
        return self.root / service_id / f"{document_type}.md"

    def history_path(self, service_id: str, document_type: str) -> Path:
        return self.root / service_id / f"{document_type}.history.jsonl"

    def find_latest(self, service_id: str, document_type: str) -> str | None:
        path = self.content_path(service_id, document_type)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def save(self, record: VersionRecord) -> str:
        """Record a version and return its id.

        Raises:
            ValueError: If the record is older than the last recorded version
        """
        key = (record.service_id, record.document_type)
        last = self._last_date(*key)
        if last is not None and record.fetch_date < last:
            raise ValueError(
                f"Version of {record.service_id} - {record.document_type} fetched at "
                f"{format_iso8601(record.fetch_date)} is older than the last recorded one "
                f"({format_iso8601(last)})"
            )

        version_id = _version_id(record)
        entry = {
            "id": version_id,
            "serviceId": record.service_id,
            "documentType": record.document_type,
            "snapshotIds": record.snapshot_ids,
            "fetchDate": format_iso8601(record.fetch_date),
            "mimeType": record.mime_type,
        }
        # History goes first; a save interrupted before the content write is replayed on resume.
        if self._last_entry(*key).get("id") != version_id:
            append_jsonl(self.history_path(*key), entry)
        write_text_atomic(self.content_path(*key), record.content)
        self._last_entries[key] = entry
        return version_id

    def history(self, service_id: str, document_type: str) -> list[dict]:
        path = self.history_path(service_id, document_type)
        if not path.exists():
            return []
        with path.open("r", encoding="utf-8") as handle:
            return [json.loads(line) for line in handle if line.strip()]

    def remove_all(self) -> None:
        if self.root.exists():
            logger.info("Removing previously regenerated versions in %s", self.root)
            shutil.rmtree(self.root)
        self._last_entries.clear()

    def _last_entry(self, service_id: str, document_type: str) -> dict:
        key = (service_id, document_type)
        if key not in self._last_entries:
            entries = self.history(service_id, document_type)
            self._last_entries[key] = entries[-1] if entries else {}
        return self._last_entries[key]

    def _last_date(self, service_id: str, document_type: str) -> datetime | None:
        fetch_date = self._last_entry(service_id, document_type).get("fetchDate")
        return parse_iso8601(fetch_date) if fetch_date else None


def _version_id(record: VersionRecord) -> str:
    payload = "|".join([record.service_id, record.document_type, *record.snapshot_ids, record.content])
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()
