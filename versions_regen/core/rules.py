"""
Durable store of operator-authored skip rules and the run checkpoint.

The rule file is a single JSON document (see ``DEFAULT_RULES``). It is read
once and then served from memory; every rule mutation rewrites the whole
file atomically. Progress checkpoints may be held back until ``flush()``.
One ``RuleStore`` instance is created per run and handed to every consumer
that needs rules.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime
from pathlib import Path
from typing import Any

from ..jsonfile import read_json, write_json_atomic
from .types import ProgressCheckpoint, format_iso8601

logger = logging.getLogger("versions_regen.rules")

WILDCARD = "*"
DEFAULT_RULES: dict[str, Any] = {"documents": {}, "documentTypes": {}}

SKIP_CONTENT = "skipContent"
SKIP_SELECTOR = "skipSelector"
SKIP_MISSING_SELECTOR = "skipMissingSelector"
SKIP_COMMIT = "skipCommit"
DONE = "done"

_SET_FIELDS = (SKIP_SELECTOR, SKIP_MISSING_SELECTOR, SKIP_COMMIT)
FIELDS = (SKIP_CONTENT, *_SET_FIELDS, DONE)


@dataclass
class DocumentRules:
    """Skip rules applying to one concrete (service, document type) pair.

    Attributes:
        skip_content: Selector -> exact inner HTML that triggers a skip
        skip_selector: Selectors whose presence triggers a skip
        skip_missing_selector: Selectors whose absence triggers a skip
        skip_commit: Snapshot ids explicitly marked unprocessable
    """

    skip_content: dict[str, str] = field(default_factory=dict)
    skip_selector: list[str] = field(default_factory=list)
    skip_missing_selector: list[str] = field(default_factory=list)
    skip_commit: list[str] = field(default_factory=list)

    @property
    def has_content_rules(self) -> bool:
        return bool(self.skip_content or self.skip_selector or self.skip_missing_selector)


class RuleStore:
    """JSON-backed rule file with an in-process cache.

    Attributes:
        path: Location of the rule file
    """

    def __init__(self, base_dir: Path, filename: str = "index.json"):
        self.base_dir = base_dir
        self.path = base_dir / filename
        self._rules: dict[str, Any] | None = None
        self._dirty = False

    def load(self) -> dict[str, Any]:
        """Return the rule document, creating the default file if absent."""
        if self._rules is None:
            if not self.path.exists():
                logger.debug("Creating rule file %s", self.path)
                write_json_atomic(self.path, DEFAULT_RULES)
            rules = read_json(self.path)
            if not isinstance(rules, dict):
                raise ValueError(f"Rule file must contain a JSON object: {self.path}")
            rules.setdefault("documents", {})
            rules.setdefault("documentTypes", {})
            self._rules = rules
        return self._rules

    def save(self, rules: dict[str, Any]) -> None:
        self._rules = rules
        self._dirty = True
        self.flush()

    def flush(self) -> None:
        if not self._dirty or self._rules is None:
            return
        write_json_atomic(self.path, self._rules)
        self._dirty = False

    def update_document(self, service_id: str, document_type: str, field_name: str, value: Any) -> None:
        """Read-modify-write one field of a document's rules.

        ``skipContent`` values are merged into the existing mapping, set-like
        fields get ``value`` appended unless already present, ``done`` is
        replaced outright.
        """
        if field_name not in FIELDS:
            raise ValueError(f"Unknown rule field: {field_name}")

        rules = copy.deepcopy(self.load())
        document = rules["documents"].setdefault(service_id, {}).setdefault(document_type, {})

        if field_name == SKIP_CONTENT:
            if not isinstance(value, dict):
                raise ValueError("skipContent expects a mapping of selector to content")
            document[field_name] = {**document.get(field_name, {}), **value}
        elif field_name in _SET_FIELDS:
            existing = list(document.get(field_name, []))
            if value not in existing:
                existing.append(value)
            document[field_name] = existing
        else:
            document[field_name] = format_iso8601(value) if isinstance(value, datetime) else value

        logger.debug("%s appended to %s for %s - %s", value, field_name, service_id, document_type)
        self.save(rules)

    def _matching_entries(self, service_id: str, document_type: str) -> list[dict[str, Any]]:
        """Entries applying to the pair, least specific first."""
        documents = self.load()["documents"]
        matches: list[tuple[int, dict[str, Any]]] = []
        for rule_service, rule_types in documents.items():
            if rule_service not in (WILDCARD, service_id):
                continue
            for rule_type, entry in rule_types.items():
                if rule_type not in (WILDCARD, document_type):
                    continue
                specificity = int(rule_service != WILDCARD) + int(rule_type != WILDCARD)
                matches.append((specificity, entry))
        matches.sort(key=lambda item: item[0])
        return [entry for _, entry in matches]

    def get_document_rules(self, service_id: str, document_type: str) -> DocumentRules:
        result = DocumentRules()
        for entry in self._matching_entries(service_id, document_type):
            result.skip_content.update(entry.get(SKIP_CONTENT) or {})
            for field_name, target in (
                (SKIP_SELECTOR, result.skip_selector),
                (SKIP_MISSING_SELECTOR, result.skip_missing_selector),
                (SKIP_COMMIT, result.skip_commit),
            ):
                for value in entry.get(field_name) or []:
                    if value not in target:
                        target.append(value)
        return result

    def get_snapshot_ids_to_skip(self, service_id: str, document_type: str) -> list[str]:
        return self.get_document_rules(service_id, document_type).skip_commit

    def get_document_type_aliases(self) -> dict[str, str]:
        return dict(self.load().get("documentTypes") or {})

    def is_document_done(self, service_id: str, document_type: str) -> bool:
        documents = self.load()["documents"]
        return bool(documents.get(service_id, {}).get(document_type, {}).get(DONE))

    def save_progress(
        self,
        snapshot_id: str,
        index: int,
        pending_pages: dict[str, list[str]] | None = None,
        flush: bool = True,
    ) -> None:
        """Record the checkpoint; with ``flush=False`` it stays in memory until ``flush()``."""
        progression: dict[str, Any] = {
            "snapshotId": snapshot_id,
            "index": index,
            "date": format_datetime(datetime.now(timezone.utc), usegmt=True),
        }
        if pending_pages:
            progression["pendingPages"] = pending_pages
        self.load()["progression"] = progression
        self._dirty = True
        if flush:
            self.flush()

    def get_progress(self) -> ProgressCheckpoint | None:
        progression = self.load().get("progression")
        if not progression or not progression.get("snapshotId"):
            return None
        return ProgressCheckpoint(
            snapshot_id=progression["snapshotId"],
            index=int(progression.get("index", 1)),
            saved_at=progression.get("date", ""),
            pending_pages=dict(progression.get("pendingPages") or {}),
        )

    def reset_progress(self) -> None:
        rules = copy.deepcopy(self.load())
        if rules.pop("progression", None) is None:
            return
        self.save(rules)
