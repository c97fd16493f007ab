"""
Main regeneration orchestration.

This module coordinates a regeneration run:
1. Load rules, declarations and the snapshot repository
2. Resume from the progress checkpoint, or reset the target versions
3. Walk the snapshots in fetch-date order through the snapshot processor
4. Checkpoint after every snapshot; the rule file is written every few
   snapshots and whenever a version is accepted
5. Prune empty output directories and report statistics

Supports both progress bar and quiet modes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeRemainingColumn,
)

from .config import AppConfig
from .core.types import Snapshot
from .core.rules import RuleStore
from .declarations import DeclarationSet
from .errors import DocumentAlreadyDone, PageDeclarationMismatch
from .extract.extractor import Extractor
from .logging_utils import log_event, setup_logging
from .pipeline import SkipCause, SnapshotOutcome, SnapshotProcessor, SnapshotState
from .review import Reviewer
from .storage.output import VersionsOutput
from .storage.snapshots import FileSnapshotRepository
from .storage.versions import FileVersionRepository

_GLOB_CHARS = "*?["


@dataclass
class RunStats:
    """Statistics collected during a regeneration run.

    Attributes:
        total: Snapshots in the repository, irrespective of filters
        to_process: Snapshots matching the filters
        visited: Snapshots processed by this run
        accepted: Versions recorded
        first_versions: Accepted versions that started a document history
        skipped_snapshots: Snapshots skipped by rules or missing declarations
        skipped_versions: Versions identical to the previous one
        waiting: Pages buffered while waiting for the rest of their cycle
        failed: Snapshots that could not be turned into a version
    """

    total: int = 0
    to_process: int = 0
    visited: int = 0
    accepted: int = 0
    first_versions: int = 0
    skipped_snapshots: int = 0
    skipped_versions: int = 0
    waiting: int = 0
    failed: int = 0


def is_explicit(pattern: str) -> bool:
    return not any(char in pattern for char in _GLOB_CHARS)


def run_regeneration(
    cfg: AppConfig,
    service_id: str = "*",
    document_type: str = "*",
    resume: bool = True,
    reviewer: Reviewer | None = None,
    interactive: bool = False,
    force: bool = False,
    show_progress: bool = True,
    console: Console | None = None,
) -> RunStats:
    """Regenerate versions from snapshots.

    Args:
        cfg: Application configuration
        service_id: Service id or glob
        document_type: Document type or glob
        resume: Continue after the saved checkpoint when one exists
        reviewer: Decides on new versions and extraction failures
        interactive: Keep review copies of snapshots under ``to-check/``
        force: Allow an interactive run on a document already marked as done
        show_progress: Whether to display a progress bar
        console: Rich console for output (creates default if None)

    Returns:
        Statistics of the run
    """
    console = console or Console()
    output = VersionsOutput(Path(cfg.paths.output_dir))
    logger = setup_logging(cfg.logging, output.base_dir)

    rule_store = RuleStore(cfg.paths.rules_path, cfg.paths.rules_filename)
    rule_store.load()
    if (
        interactive
        and not force
        and is_explicit(service_id)
        and is_explicit(document_type)
        and rule_store.is_document_done(service_id, document_type)
    ):
        raise DocumentAlreadyDone(service_id, document_type)

    declarations = DeclarationSet(
        Path(cfg.paths.declarations_dir), [service_id] if is_explicit(service_id) else None
    )
    snapshots = FileSnapshotRepository(Path(cfg.paths.snapshots_dir))
    versions = FileVersionRepository(output.resulting_versions_path)
    processor = SnapshotProcessor(
        rule_store,
        declarations,
        snapshots,
        versions,
        output,
        extractor=Extractor(cfg.extract.primary, cfg.extract.fallback),
        reviewer=reviewer,
        save_review_copies=interactive,
        page_separator=cfg.extract.page_separator,
        context_lines=cfg.review.diff_context_lines,
    )

    resume_from = None
    index = 1
    checkpoint = rule_store.get_progress() if resume else None
    if checkpoint is not None:
        resume_from = checkpoint.snapshot_id
        index = checkpoint.index
        restored = processor.restore_pending(checkpoint.pending_pages)
        log_event(
            logger,
            "Resuming after checkpoint",
            event="run_resume",
            snapshot_id=checkpoint.snapshot_id,
            index=checkpoint.index,
            restored_pages=restored,
        )
    else:
        rule_store.reset_progress()
        versions.remove_all()

    aliases = rule_store.get_document_type_aliases()
    stats = RunStats(
        total=snapshots.count(),
        to_process=snapshots.count_matching(service_id, document_type, aliases=aliases),
    )
    log_event(
        logger,
        "Regeneration start",
        event="run_start",
        service_id=service_id,
        document_type=document_type,
        total=stats.total,
        to_process=stats.to_process,
        resumed=resume_from is not None,
    )

    iterator = snapshots.iterate(service_id, document_type, resume_from=resume_from, aliases=aliases)
    interval = max(1, cfg.run.checkpoint_interval)

    try:
        if not show_progress:
            for snapshot in iterator:
                index = _process_one(processor, rule_store, snapshot, index, stats, logger, interval)
        else:
            progress = Progress(
                SpinnerColumn(),
                TextColumn("{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                TimeRemainingColumn(),
                console=console,
            )
            with progress:
                task = progress.add_task("Regenerate", total=stats.to_process, completed=index - 1)
                for snapshot in iterator:
                    index = _process_one(processor, rule_store, snapshot, index, stats, logger, interval)
                    progress.advance(task, 1)
    finally:
        rule_store.flush()

    output.finalize()
    log_event(
        logger,
        "Regeneration complete",
        event="run_complete",
        visited=stats.visited,
        accepted=stats.accepted,
        skipped_snapshots=stats.skipped_snapshots,
        skipped_versions=stats.skipped_versions,
        waiting=stats.waiting,
        failed=stats.failed,
    )
    _render_stats(stats, console)
    return stats


def _process_one(
    processor: SnapshotProcessor,
    rule_store: RuleStore,
    snapshot: Snapshot,
    index: int,
    stats: RunStats,
    logger: logging.Logger,
    checkpoint_interval: int = 1,
) -> int:
    """Process one snapshot, record its outcome and checkpoint. Returns the next index."""
    log_event(
        logger,
        "Snapshot start",
        level=logging.DEBUG,
        event="snapshot_start",
        snapshot_id=snapshot.id,
        index=index,
        service_id=snapshot.service_id,
        document_type=snapshot.document_type,
        page_id=snapshot.page_id,
    )
    outcome = processor.handle(snapshot)
    _record(outcome, index, stats, logger)

    index += 1
    # A checkpoint behind an accepted version would replay it on resume.
    flush = outcome.state is SnapshotState.ACCEPTED or stats.visited % checkpoint_interval == 0
    rule_store.save_progress(snapshot.id, index, processor.pending_pages(), flush=flush)
    return index


def _record(outcome: SnapshotOutcome, index: int, stats: RunStats, logger: logging.Logger) -> None:
    snapshot = outcome.snapshot
    fields = {
        "snapshot_id": snapshot.id,
        "index": index,
        "service_id": snapshot.service_id,
        "document_type": snapshot.document_type,
    }
    stats.visited += 1

    if outcome.state is SnapshotState.ACCEPTED:
        stats.accepted += 1
        first = bool(outcome.classification and outcome.classification.first)
        if first:
            stats.first_versions += 1
        log_event(
            logger,
            "Version accepted",
            event="version_accepted",
            version_id=outcome.version_id,
            first=first,
            pages=len(outcome.pages),
            **fields,
        )
    elif outcome.state is SnapshotState.BUFFERING:
        stats.waiting += 1
        log_event(
            logger,
            "Waiting for remaining pages",
            event="snapshot_waiting",
            page=outcome.page,
            total_pages=outcome.total_pages,
            **fields,
        )
    elif outcome.state is SnapshotState.SKIPPED and outcome.cause is SkipCause.IDENTICAL:
        stats.skipped_versions += 1
        log_event(logger, "Version skipped", event="version_skipped", reason=outcome.reason, **fields)
    elif outcome.state is SnapshotState.SKIPPED:
        stats.skipped_snapshots += 1
        log_event(
            logger,
            "Snapshot skipped",
            event="snapshot_skipped",
            reason=outcome.reason,
            cause=outcome.cause.value if outcome.cause else None,
            **fields,
        )
    elif outcome.state is SnapshotState.FAILED:
        stats.failed += 1
        if isinstance(outcome.error, PageDeclarationMismatch):
            log_event(
                logger,
                "Page not declared",
                level=logging.WARNING,
                event="page_mismatch",
                page_id=snapshot.page_id,
                declared=outcome.error.declared,
                **fields,
            )
        else:
            log_event(
                logger,
                "Snapshot failed",
                level=logging.WARNING,
                event="extraction_failed",
                error=outcome.reason,
                **fields,
            )


def _render_stats(stats: RunStats, console: Console) -> None:
    console.print(
        "[bold]Regeneration summary[/bold]: "
        f"visited={stats.visited}/{stats.to_process}, accepted={stats.accepted} "
        f"(first={stats.first_versions}), skipped_snapshots={stats.skipped_snapshots}, "
        f"skipped_versions={stats.skipped_versions}, waiting={stats.waiting}, failed={stats.failed}"
    )
