"""
Service declarations and their history.

A declarations directory holds, per service:
- ``<serviceId>.json``: the current declaration, ``{"name", "documents"}``
  where each document is a page object or ``{"combine": [page, ...]}``
- ``<serviceId>.history.json``: past declarations per document type, each
  entry carrying the ``validUntil`` date after which it stopped applying

A snapshot is matched to the first history entry still valid at its fetch
date, otherwise to the current declaration.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from .core.types import DocumentDeclaration, PageDeclaration, format_iso8601, parse_iso8601
from .errors import DeclarationAbsent
from .jsonfile import read_json, write_json_atomic

logger = logging.getLogger("versions_regen.declarations")

HISTORY_SUFFIX = ".history.json"


def pages_from_json(raw: dict[str, Any]) -> list[PageDeclaration]:
    if "combine" in raw:
        return [PageDeclaration.from_json(page) for page in raw["combine"]]
    return [PageDeclaration.from_json(raw)]


def document_to_json(declaration: DocumentDeclaration) -> dict[str, Any]:
    if declaration.is_multi_page:
        return {"combine": [page.to_json() for page in declaration.pages]}
    return declaration.pages[0].to_json()


def declaration_to_json(declaration: DocumentDeclaration) -> dict[str, Any]:
    return {
        "name": declaration.service_name or declaration.service_id,
        "documents": {declaration.document_type: document_to_json(declaration)},
    }


class DeclarationSet:
    """Current and historical declarations of a set of services.

    Attributes:
        base_dir: Declarations directory
        service_ids: Services to load, or None for every service in the directory
    """

    def __init__(self, base_dir: Path, service_ids: list[str] | None = None):
        self.base_dir = base_dir
        self.service_ids = service_ids
        self._current: dict[str, dict[str, Any]] = {}
        self._history: dict[str, dict[str, list[dict[str, Any]]]] = {}
        self.reload()

    def reload(self) -> None:
        """Re-read declarations from disk, picking up operator edits."""
        self._current = {}
        self._history = {}
        for service_id in self._discover_services():
            path = self.base_dir / f"{service_id}.json"
            if path.exists():
                self._current[service_id] = read_json(path)
            self._history[service_id] = self._read_history(service_id)
        logger.debug("Loaded declarations of %d services", len(self._current))

    def _discover_services(self) -> list[str]:
        if self.service_ids is not None:
            return list(self.service_ids)
        if not self.base_dir.exists():
            return []
        services = set()
        for path in self.base_dir.glob("*.json"):
            name = path.name
            services.add(name[: -len(HISTORY_SUFFIX)] if name.endswith(HISTORY_SUFFIX) else path.stem)
        return sorted(services)

    def _read_history(self, service_id: str) -> dict[str, list[dict[str, Any]]]:
        path = self.base_dir / f"{service_id}{HISTORY_SUFFIX}"
        if not path.exists():
            return {}
        return read_json(path)

    def document_types(self) -> list[tuple[str, str]]:
        """All (service, document type) pairs with a current or past declaration."""
        pairs = set()
        for service_id, declaration in self._current.items():
            pairs.update((service_id, document_type) for document_type in declaration.get("documents", {}))
        for service_id, history in self._history.items():
            pairs.update((service_id, document_type) for document_type, entries in history.items() if entries)
        return sorted(pairs, key=lambda pair: (pair[0].lower(), pair[1]))

    def resolve(self, service_id: str, document_type: str, fetch_date: datetime) -> DocumentDeclaration:
        """Return the declaration that applied to a document at ``fetch_date``.

        Raises:
            DeclarationAbsent: If no declaration covers the date
        """
        service_name = self._current.get(service_id, {}).get("name")
        for entry in self._sorted_history(service_id, document_type):
            valid_until = entry.get("validUntil")
            if valid_until is None or fetch_date <= parse_iso8601(valid_until):
                return DocumentDeclaration(
                    service_id=service_id,
                    document_type=document_type,
                    pages=pages_from_json(entry),
                    service_name=service_name,
                    valid_until=parse_iso8601(valid_until) if valid_until else None,
                )

        current = self._current.get(service_id, {}).get("documents", {}).get(document_type)
        if current is None:
            raise DeclarationAbsent(service_id, document_type, format_iso8601(fetch_date))
        return DocumentDeclaration(
            service_id=service_id,
            document_type=document_type,
            pages=pages_from_json(current),
            service_name=service_name,
        )

    def _sorted_history(self, service_id: str, document_type: str) -> list[dict[str, Any]]:
        entries = self._history.get(service_id, {}).get(document_type, [])
        dated = [entry for entry in entries if entry.get("validUntil")]
        open_ended = [entry for entry in entries if not entry.get("validUntil")]
        dated.sort(key=lambda entry: parse_iso8601(entry["validUntil"]))
        return dated + open_ended

    def update_history(
        self,
        service_id: str,
        document_type: str,
        declaration: DocumentDeclaration,
        valid_until: datetime | str | None,
    ) -> Path:
        """Record ``declaration`` as valid until ``valid_until`` in the history file.

        If the latest history entry is structurally identical to the
        declaration (ignoring ``validUntil``), only its ``validUntil`` moves.
        """
        path = self.base_dir / f"{service_id}{HISTORY_SUFFIX}"
        history = self._read_history(service_id)
        entries = list(history.get(document_type, []))
        if isinstance(valid_until, datetime):
            valid_until = format_iso8601(valid_until)

        candidate = document_to_json(declaration)
        latest = entries[-1] if entries else None
        if latest is not None and _without_valid_until(latest) == candidate:
            logger.info("History entry is already present, updating validUntil to %s", valid_until)
            entries[-1] = {**latest, "validUntil": valid_until}
        else:
            logger.info("History entry does not exist, creating one")
            entries.append({**candidate, "validUntil": valid_until})

        history[document_type] = entries
        write_json_atomic(path, history)
        self._history[service_id] = history
        return path


def _without_valid_until(entry: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in entry.items() if key != "validUntil" and value is not None}
