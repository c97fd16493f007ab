"""
Multi-page version assembly.

Page snapshots of one capture cycle are buffered per document until every
page of the declaration has been captured. A page captured twice before the
cycle completes keeps only its latest capture.
"""

from __future__ import annotations

from ..errors import PageDeclarationMismatch
from .types import AggregationResult, DocumentDeclaration, Snapshot, document_key


class MultiPageAggregator:
    def __init__(self) -> None:
        self._buffers: dict[tuple[str, str], dict[str, Snapshot]] = {}

    def submit(self, snapshot: Snapshot, declaration: DocumentDeclaration) -> AggregationResult:
        """Add a page snapshot to its document's buffer.

        Args:
            snapshot: Snapshot accepted by the rule evaluator
            declaration: Declaration resolved for the snapshot fetch date

        Returns:
            AggregationResult, complete with the pages in declared order once
            every declared page is present

        Raises:
            PageDeclarationMismatch: If the snapshot page is not declared
        """
        total = len(declaration.pages)

        if not declaration.is_multi_page:
            if snapshot.page_id is not None and declaration.find_page(snapshot.page_id) is None:
                raise PageDeclarationMismatch(snapshot.id, snapshot.page_id, declaration.page_ids)
            return AggregationResult(complete=True, pages=[snapshot], page=1, total_pages=1)

        page = declaration.find_page(snapshot.page_id)
        if page is None:
            raise PageDeclarationMismatch(snapshot.id, snapshot.page_id, declaration.page_ids)

        buffer = self._buffers.setdefault(snapshot.key, {})
        buffer[page.page_id] = snapshot

        # Pages buffered under a previous declaration may no longer be declared.
        for stale in [page_id for page_id in buffer if page_id not in declaration.page_ids]:
            del buffer[stale]

        if len(buffer) < total:
            return AggregationResult(complete=False, page=len(buffer), total_pages=total)

        pages = [buffer[page_id] for page_id in declaration.page_ids]
        del self._buffers[snapshot.key]
        return AggregationResult(complete=True, pages=pages, page=total, total_pages=total)

    def restore(self, pages: list[Snapshot], declaration: DocumentDeclaration) -> None:
        """Put page snapshots back into their buffer without completing a cycle."""
        if not declaration.is_multi_page:
            return
        for snapshot in pages:
            page = declaration.find_page(snapshot.page_id)
            if page is None:
                continue
            self._buffers.setdefault(snapshot.key, {})[page.page_id] = snapshot

    def discard(self, service_id: str, document_type: str) -> None:
        self._buffers.pop((service_id, document_type), None)

    def pending(self) -> dict[str, list[str]]:
        """Snapshot ids currently buffered, keyed by ``<service>/<type>``."""
        return {
            document_key(*key): [snapshot.id for snapshot in buffer.values()]
            for key, buffer in self._buffers.items()
            if buffer
        }

    def buffered(self, service_id: str, document_type: str) -> list[Snapshot]:
        return list(self._buffers.get((service_id, document_type), {}).values())
