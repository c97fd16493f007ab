"""
Per-snapshot processing.

Each snapshot walks an explicit state machine:

    PENDING -> EVALUATED -> BUFFERING                  (waiting for more pages)
                         -> ASSEMBLED -> CLASSIFIED -> ACCEPTED
    any stage            -> SKIPPED | FAILED

A review decision on a CLASSIFIED or FAILED snapshot can send it back to
PENDING (after rules or declarations changed). ``SnapshotProcessor.handle``
runs that as a loop, so long interactive sessions never grow the call stack.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

from .core.aggregator import MultiPageAggregator
from .core.dedup import DiffDeduplicator, VersionRepository
from .core.evaluator import RuleEvaluator
from .core.rules import SKIP_COMMIT, SKIP_CONTENT, SKIP_MISSING_SELECTOR, SKIP_SELECTOR, RuleStore
from .core.types import (
    Classification,
    DocumentDeclaration,
    Snapshot,
    VersionRecord,
)
from .declarations import DeclarationSet
from .errors import (
    DeclarationAbsent,
    ExtractionFailure,
    NotFoundError,
    PageDeclarationMismatch,
    SnapshotError,
)
from .extract.extractor import Extractor
from .logging_utils import log_event
from .review import RETRY_DECISIONS, Adjudication, AutoReviewer, Decision, ReviewRequest, Reviewer
from .storage.output import VersionsOutput
from .storage.snapshots import FileSnapshotRepository

logger = logging.getLogger("versions_regen.pipeline")

MARKED_UNPROCESSABLE_REASON = "snapshot is marked as unprocessable"
ALREADY_SKIPPED_REASON = "snapshot content is identical to one already skipped"


class SnapshotState(str, Enum):
    PENDING = "pending"
    EVALUATED = "evaluated"
    BUFFERING = "buffering"
    ASSEMBLED = "assembled"
    CLASSIFIED = "classified"
    ACCEPTED = "accepted"
    SKIPPED = "skipped"
    FAILED = "failed"


class SkipCause(str, Enum):
    MARKED = "marked"
    RULE = "rule"
    DECLARATION_ABSENT = "declaration_absent"
    KNOWN_CONTENT = "known_content"
    IDENTICAL = "identical"
    OPERATOR = "operator"


@dataclass
class SnapshotOutcome:
    """Where a snapshot ended up and why.

    Attributes:
        snapshot: Snapshot processed, with its canonical document type
        state: Final state reached
        reason: Human-readable skip or failure reason
        cause: Category of skip, when skipped
        declaration: Declaration resolved for the snapshot
        pages: Page snapshots assembled into the version
        version: Extracted text
        classification: Deduplication result
        record: Version record built from the pages
        version_id: Id returned by the version store once accepted
        error: Per-snapshot error, when failed
        page / total_pages: Buffer progress for multi-page documents
        history: States visited, in order
    """

    snapshot: Snapshot
    state: SnapshotState = SnapshotState.PENDING
    reason: str | None = None
    cause: SkipCause | None = None
    declaration: DocumentDeclaration | None = None
    pages: list[Snapshot] = field(default_factory=list)
    version: str | None = None
    classification: Classification | None = None
    record: VersionRecord | None = None
    version_id: str | None = None
    error: SnapshotError | None = None
    page: int = 0
    total_pages: int = 0
    history: list[SnapshotState] = field(default_factory=lambda: [SnapshotState.PENDING])

    def move(self, state: SnapshotState) -> "SnapshotOutcome":
        self.state = state
        self.history.append(state)
        return self

    def skip(self, reason: str, cause: SkipCause) -> "SnapshotOutcome":
        self.reason = reason
        self.cause = cause
        return self.move(SnapshotState.SKIPPED)

    def fail(self, error: SnapshotError) -> "SnapshotOutcome":
        self.error = error
        self.reason = str(error)
        return self.move(SnapshotState.FAILED)

    @property
    def reviewable(self) -> bool:
        return self.state is SnapshotState.CLASSIFIED or isinstance(self.error, ExtractionFailure)


class SnapshotProcessor:
    """Runs snapshots through evaluation, assembly, extraction and deduplication.

    Attributes:
        rule_store: Source of skip rules; updated on operator decisions only
        declarations: Declarations resolved per snapshot
        snapshots: Snapshot repository, used to resolve skipped snapshot ids
        versions: Store of accepted versions
        output: Sink for skipped and review copies
        extractor: Extraction boundary
        reviewer: Decides on new versions and extraction failures
        save_review_copies: Copy each reviewed snapshot under ``to-check/``
        page_separator: Text inserted between pages of a multi-page version
    """

    def __init__(
        self,
        rule_store: RuleStore,
        declarations: DeclarationSet,
        snapshots: FileSnapshotRepository,
        versions: VersionRepository,
        output: VersionsOutput,
        extractor: Extractor | None = None,
        reviewer: Reviewer | None = None,
        save_review_copies: bool = False,
        page_separator: str = "\n\n",
        context_lines: int = 3,
    ):
        self.rule_store = rule_store
        self.declarations = declarations
        self.snapshots = snapshots
        self.versions = versions
        self.output = output
        self.extractor = extractor or Extractor()
        self.reviewer = reviewer or AutoReviewer()
        self.save_review_copies = save_review_copies
        self.page_separator = page_separator
        self.evaluator = RuleEvaluator(rule_store)
        self.aggregator = MultiPageAggregator()
        self.deduplicator = DiffDeduplicator(versions, context_lines=context_lines)
        self._skipped_fingerprints: dict[tuple[str, str], list[str]] = {}
        self._previous_fetch_dates: dict[tuple[str, str], datetime] = {}

    def canonicalize(self, snapshot: Snapshot) -> Snapshot:
        """Apply the document type aliases of the rule file."""
        canonical = self.rule_store.get_document_type_aliases().get(snapshot.document_type)
        if canonical and canonical != snapshot.document_type:
            return replace(snapshot, document_type=canonical)
        return snapshot

    def handle(self, snapshot: Snapshot) -> SnapshotOutcome:
        """Process one snapshot to a terminal state, looping on retry decisions."""
        snapshot = self.canonicalize(snapshot)
        while True:
            outcome = self.evaluate(snapshot)
            if not outcome.reviewable:
                break

            adjudication = self.reviewer.review(self._review_request(outcome))
            if adjudication.decision in RETRY_DECISIONS:
                self._apply(adjudication, outcome)
                self._rewind(outcome)
                logger.debug("Retrying snapshot %s after %s", snapshot.id, adjudication.decision.value)
                continue

            if adjudication.decision is Decision.SKIP:
                self._mark_unprocessable(outcome)
                outcome.skip(MARKED_UNPROCESSABLE_REASON, SkipCause.OPERATOR)
            elif adjudication.decision in (Decision.KEEP, Decision.BYPASS) and outcome.state is SnapshotState.CLASSIFIED:
                self.accept(outcome)
            break

        self._previous_fetch_dates[snapshot.key] = snapshot.fetch_date
        return outcome

    def evaluate(self, snapshot: Snapshot) -> SnapshotOutcome:
        """Run a snapshot from PENDING up to CLASSIFIED or an earlier terminal state."""
        outcome = SnapshotOutcome(snapshot=snapshot)
        service_id, document_type = snapshot.key

        if snapshot.id in self.rule_store.get_snapshot_ids_to_skip(service_id, document_type):
            self.output.save_skipped(snapshot)
            return outcome.skip(MARKED_UNPROCESSABLE_REASON, SkipCause.MARKED)

        try:
            declaration = self.declarations.resolve(service_id, document_type, snapshot.fetch_date)
        except DeclarationAbsent as exc:
            outcome.error = exc
            return outcome.skip(str(exc), SkipCause.DECLARATION_ABSENT)
        outcome.declaration = declaration

        page_declaration = declaration.find_page(snapshot.page_id)
        if page_declaration is None and not declaration.is_multi_page:
            page_declaration = declaration.pages[0]

        rules = self.rule_store.get_document_rules(service_id, document_type)
        decision = self.evaluator.should_skip(snapshot, page_declaration, rules)
        outcome.move(SnapshotState.EVALUATED)
        if decision.skip:
            self.output.save_skipped(snapshot)
            return outcome.skip(decision.reason or "matched a skip rule", SkipCause.RULE)

        try:
            aggregation = self.aggregator.submit(snapshot, declaration)
        except PageDeclarationMismatch as exc:
            return outcome.fail(exc)
        outcome.page, outcome.total_pages = aggregation.page, aggregation.total_pages
        if not aggregation.complete:
            outcome.reason = f"waiting for all pages to generate version: {aggregation.page}/{aggregation.total_pages}"
            return outcome.move(SnapshotState.BUFFERING)

        outcome.pages = aggregation.pages
        outcome.move(SnapshotState.ASSEMBLED)

        try:
            version = self._extract(aggregation.pages, declaration)
        except ExtractionFailure as exc:
            if self.extractor.fingerprint(snapshot) in self._fingerprints_to_skip(service_id, document_type):
                return outcome.skip(ALREADY_SKIPPED_REASON, SkipCause.KNOWN_CONTENT)
            return outcome.fail(exc)
        outcome.version = version

        classification = self.deduplicator.classify(service_id, document_type, version)
        outcome.classification = classification
        outcome.record = VersionRecord(
            content=version,
            service_id=service_id,
            document_type=document_type,
            snapshot_ids=[page.id for page in aggregation.pages],
            fetch_date=max(page.fetch_date for page in aggregation.pages),
        )
        outcome.move(SnapshotState.CLASSIFIED)
        if classification.skip:
            return outcome.skip(classification.reason or "version is identical to previous", SkipCause.IDENTICAL)
        return outcome

    def accept(self, outcome: SnapshotOutcome) -> SnapshotOutcome:
        if outcome.record is None:
            raise ValueError(f"Snapshot {outcome.snapshot.id} has no version to record")
        outcome.version_id = self.versions.save(outcome.record)
        return outcome.move(SnapshotState.ACCEPTED)

    def restore_pending(self, pending: dict[str, list[str]]) -> int:
        """Refill multi-page buffers from a checkpoint; returns pages restored."""
        restored = 0
        for key, snapshot_ids in pending.items():
            for snapshot_id in snapshot_ids:
                try:
                    snapshot = self.canonicalize(self.snapshots.find_by_id(snapshot_id))
                    declaration = self.declarations.resolve(
                        snapshot.service_id, snapshot.document_type, snapshot.fetch_date
                    )
                except (NotFoundError, DeclarationAbsent) as exc:
                    log_event(
                        logger,
                        "Buffered page dropped",
                        level=logging.WARNING,
                        event="pending_page_dropped",
                        document=key,
                        snapshot_id=snapshot_id,
                        error=str(exc),
                    )
                    continue
                self.aggregator.restore([snapshot], declaration)
                restored += 1
        return restored

    def _extract(self, pages: list[Snapshot], declaration: DocumentDeclaration) -> str:
        texts = []
        for page in pages:
            page_declaration = declaration.find_page(page.page_id) or declaration.pages[0]
            texts.append(self.extractor.extract(page.content, page.mime_type, page_declaration))
        return self.page_separator.join(texts)

    def _fingerprints_to_skip(self, service_id: str, document_type: str) -> list[str]:
        key = (service_id, document_type)
        if key not in self._skipped_fingerprints:
            fingerprints = []
            for snapshot_id in self.rule_store.get_snapshot_ids_to_skip(service_id, document_type):
                try:
                    fingerprints.append(self.extractor.fingerprint(self.snapshots.find_by_id(snapshot_id)))
                except NotFoundError:
                    logger.warning("Skipped snapshot %s is not in the snapshot repository", snapshot_id)
            self._skipped_fingerprints[key] = [fingerprint for fingerprint in fingerprints if fingerprint]
        return self._skipped_fingerprints[key]

    def _review_request(self, outcome: SnapshotOutcome) -> ReviewRequest:
        snapshot = outcome.snapshot
        label = f'"{snapshot.service_id} - {snapshot.document_type}"'
        if outcome.state is SnapshotState.CLASSIFIED:
            message = f"A new version is available for {label}, is it valid?"
        else:
            message = f"A version can not be created from the snapshot of {label}. What do you want to do?"
        return ReviewRequest(
            message=message,
            snapshot=snapshot,
            declaration=outcome.declaration,
            version=outcome.version,
            classification=outcome.classification,
            error=outcome.reason if outcome.error else None,
            review_path=self.output.save_for_review(snapshot) if self.save_review_copies else None,
            fingerprint=self.extractor.fingerprint(snapshot),
        )

    def _apply(self, adjudication: Adjudication, outcome: SnapshotOutcome) -> None:
        service_id, document_type = outcome.snapshot.key
        decision = adjudication.decision
        if decision is Decision.SKIP_CONTENT and adjudication.selector:
            self.rule_store.update_document(
                service_id, document_type, SKIP_CONTENT, {adjudication.selector: adjudication.value or ""}
            )
        elif decision is Decision.SKIP_SELECTOR and adjudication.selector:
            self.rule_store.update_document(service_id, document_type, SKIP_SELECTOR, adjudication.selector)
        elif decision is Decision.SKIP_MISSING_SELECTOR and adjudication.selector:
            self.rule_store.update_document(service_id, document_type, SKIP_MISSING_SELECTOR, adjudication.selector)
        elif decision is Decision.UPDATE_HISTORY and outcome.declaration is not None:
            valid_until = self._previous_fetch_dates.get(outcome.snapshot.key, outcome.snapshot.fetch_date)
            self.declarations.update_history(service_id, document_type, outcome.declaration, valid_until)
            logger.warning("History has been updated, you now need to fix the current declaration")

        logger.debug("Reloading declarations")
        self.declarations.reload()

    def _rewind(self, outcome: SnapshotOutcome) -> None:
        """Put the other pages of the cycle back; the snapshot itself is submitted again."""
        if len(outcome.pages) > 1 and outcome.declaration is not None:
            others = [page for page in outcome.pages if page.id != outcome.snapshot.id]
            self.aggregator.restore(others, outcome.declaration)

    def _mark_unprocessable(self, outcome: SnapshotOutcome) -> None:
        snapshot = outcome.snapshot
        self.rule_store.update_document(snapshot.service_id, snapshot.document_type, SKIP_COMMIT, snapshot.id)
        fingerprint = self.extractor.fingerprint(snapshot)
        if fingerprint:
            self._fingerprints_to_skip(*snapshot.key).append(fingerprint)

    def pending_pages(self) -> dict[str, list[str]]:
        return self.aggregator.pending()


__all__ = ["SnapshotProcessor", "SnapshotOutcome", "SnapshotState", "SkipCause"]
