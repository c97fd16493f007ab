"""
Version deduplication against the last accepted version.

Each extracted version is compared with the most recent accepted version of
the same document:
1. No previous version: always accepted as the first version
2. Byte-identical content: skipped as a duplicate
3. Anything else: accepted, with a unified diff and a similarity score
"""

from __future__ import annotations

from difflib import unified_diff
from typing import Protocol

from rapidfuzz import fuzz

from .types import Classification, VersionRecord

IDENTICAL_REASON = "version is identical to previous"


class VersionRepository(Protocol):
    """Store of accepted versions, queried for the last accepted content."""

    def find_latest(self, service_id: str, document_type: str) -> str | None: ...

    def save(self, record: VersionRecord) -> str: ...

    def remove_all(self) -> None: ...


class DiffDeduplicator:
    """Classifies new content as first version, duplicate or change.

    Attributes:
        versions: Repository holding the accepted versions
        context_lines: Number of context lines in generated diffs
    """

    def __init__(self, versions: VersionRepository, context_lines: int = 3):
        self.versions = versions
        self.context_lines = context_lines

    def classify(self, service_id: str, document_type: str, new_content: str) -> Classification:
        """Compare ``new_content`` with the last accepted version of the document.

        Returns:
            Classification with ``first=True`` when there is nothing to compare
            against, ``skip=True`` for duplicates, otherwise a diff
        """
        previous = self.versions.find_latest(service_id, document_type)
        if previous is None:
            return Classification(skip=False, first=True)

        if previous == new_content:
            return Classification(skip=True, reason=IDENTICAL_REASON, similarity=100.0)

        return Classification(
            skip=False,
            diff=build_diff(previous, new_content, f"{service_id}/{document_type}.md", self.context_lines),
            similarity=fuzz.ratio(previous, new_content),
        )


def build_diff(previous: str, current: str, name: str, context_lines: int = 3) -> str:
    """Return a unified diff between two versions of a document."""
    lines = unified_diff(
        previous.splitlines(),
        current.splitlines(),
        fromfile=f"a/{name}",
        tofile=f"b/{name}",
        n=context_lines,
        lineterm="",
    )
    return "\n".join(lines)
