"""
Exception taxonomy for the regeneration pipeline.

Per-snapshot failures derive from ``SnapshotError`` and are converted into
outcomes at the pipeline boundary. Anything else propagates and aborts the run.
"""

from __future__ import annotations


class RegenerationError(Exception):
    """Base class for all errors raised by versions_regen."""


class NotFoundError(RegenerationError):
    """Raised when a snapshot id is unknown to the snapshot repository."""

    def __init__(self, snapshot_id: str):
        super().__init__(f"Snapshot {snapshot_id!r} not found")
        self.snapshot_id = snapshot_id


class DocumentAlreadyDone(RegenerationError):
    """Interactive run refused because the document was already marked as done."""

    def __init__(self, service_id: str, document_type: str):
        super().__init__(
            f"{service_id} - {document_type} has already been marked as done. "
            'If you are sure of what you are doing, remove "done" from the rule file or use --force'
        )
        self.service_id = service_id
        self.document_type = document_type


class SnapshotError(RegenerationError):
    """Failure local to one snapshot; never aborts the run."""


class ExtractionFailure(SnapshotError):
    """The snapshot content is inaccessible or cannot be turned into text."""


class DeclarationAbsent(SnapshotError):
    """No document declaration covers the snapshot fetch date."""

    def __init__(self, service_id: str, document_type: str, fetch_date: str):
        super().__init__(
            f"no declaration found for {service_id} - {document_type} at {fetch_date}"
        )
        self.service_id = service_id
        self.document_type = document_type
        self.fetch_date = fetch_date


class PageDeclarationMismatch(SnapshotError):
    """A page-qualified snapshot references a page absent from the declaration."""

    def __init__(self, snapshot_id: str, page_id: str | None, declared: list[str]):
        listed = ", ".join(declared) or "none"
        super().__init__(
            f"snapshot {snapshot_id} targets page {page_id!r} "
            f"but the declaration only defines: {listed}"
        )
        self.snapshot_id = snapshot_id
        self.page_id = page_id
        self.declared = declared
