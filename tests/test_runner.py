"""Tests for whole regeneration runs, checkpoints and resume."""

from __future__ import annotations

import io
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from rich.console import Console

from versions_regen.config import AppConfig
from versions_regen.core.rules import DONE, RuleStore
from versions_regen.core.types import Snapshot
from versions_regen.errors import DocumentAlreadyDone
from versions_regen.review import AutoReviewer
from versions_regen.runner import run_regeneration
from versions_regen.storage.snapshots import FileSnapshotRepository
from versions_regen.storage.versions import FileVersionRepository

BASE_DATE = datetime(2023, 1, 1, tzinfo=timezone.utc)


class _RecordingReviewer(AutoReviewer):
    def __init__(self):
        self.reviewed = []

    def review(self, request):
        self.reviewed.append(request.snapshot.id)
        return super().review(request)


def _config(tmp_path, documents=None):
    declarations_dir = tmp_path / "declarations"
    declarations_dir.mkdir(exist_ok=True)
    (declarations_dir / "svc.json").write_text(
        json.dumps(
            {"name": "Service", "documents": documents or {"tos": {"fetch": "https://example.com/tos", "select": "main"}}}
        ),
        encoding="utf-8",
    )
    cfg = AppConfig()
    cfg.paths.declarations_dir = str(declarations_dir)
    cfg.paths.snapshots_dir = str(tmp_path / "snapshots")
    cfg.paths.output_dir = str(tmp_path / "output")
    cfg.logging.console = False
    cfg.logging.level = "DEBUG"
    return cfg


def _add(cfg, snapshot_id, day, text, page_id=None):
    FileSnapshotRepository(Path(cfg.paths.snapshots_dir)).save(
        Snapshot(
            id=snapshot_id,
            service_id="svc",
            document_type="tos",
            fetch_date=BASE_DATE + timedelta(days=day),
            content=f"<html><body><main><p>{text}</p></main></body></html>",
            page_id=page_id,
        )
    )


def _run(cfg, **kwargs):
    kwargs.setdefault("show_progress", False)
    return run_regeneration(cfg, console=Console(file=io.StringIO()), **kwargs)


def _versions(cfg):
    return FileVersionRepository(Path(cfg.paths.output_dir) / "resulting-versions")


def test_end_to_end_run(tmp_path):
    cfg = _config(tmp_path)
    _add(cfg, "a1", 0, "Hello world")
    _add(cfg, "a2", 1, "Hello world")
    _add(cfg, "a3", 2, "Hello world v2")

    stats = _run(cfg)

    assert (stats.visited, stats.accepted, stats.first_versions, stats.skipped_versions) == (3, 2, 1, 1)
    assert _versions(cfg).find_latest("svc", "tos") == "Hello world v2"
    checkpoint = RuleStore(cfg.paths.rules_path).get_progress()
    assert (checkpoint.snapshot_id, checkpoint.index) == ("a3", 4)

    log_lines = (tmp_path / "output" / "run.jsonl").read_text(encoding="utf-8").splitlines()
    events = [json.loads(line).get("event") for line in log_lines]
    events = [event for event in events if event]
    assert events[0] == "run_start"
    assert events.count("version_accepted") == 2
    assert events[-1] == "run_complete"


def test_resume_continues_after_checkpoint(tmp_path):
    cfg = _config(tmp_path)
    _add(cfg, "a1", 0, "Hello world")
    _add(cfg, "a2", 1, "Hello world")
    _run(cfg)

    checkpoint = RuleStore(cfg.paths.rules_path).get_progress()
    assert (checkpoint.snapshot_id, checkpoint.index) == ("a2", 3)

    _add(cfg, "a3", 2, "Hello world v2")
    _add(cfg, "a4", 3, "Hello world v3")
    reviewer = _RecordingReviewer()
    stats = _run(cfg, reviewer=reviewer)

    assert stats.visited == 2
    assert reviewer.reviewed == ["a3", "a4"]
    assert len(_versions(cfg).history("svc", "tos")) == 3
    checkpoint = RuleStore(cfg.paths.rules_path).get_progress()
    assert (checkpoint.snapshot_id, checkpoint.index) == ("a4", 5)

    starts = [
        json.loads(line)
        for line in (tmp_path / "output" / "run.jsonl").read_text(encoding="utf-8").splitlines()
        if '"snapshot_start"' in line
    ]
    assert [entry["index"] for entry in starts] == [1, 2, 3, 4]


def test_restart_resets_versions_and_progress(tmp_path):
    cfg = _config(tmp_path)
    _add(cfg, "a1", 0, "Hello world")
    _add(cfg, "a2", 1, "Hello world v2")
    _run(cfg)

    stats = _run(cfg, resume=False)

    assert stats.visited == 2
    assert len(_versions(cfg).history("svc", "tos")) == 2


def test_pending_pages_survive_interruption(tmp_path):
    documents = {
        "tos": {
            "combine": [
                {"id": "p1", "fetch": "https://example.com/1", "select": "main"},
                {"id": "p2", "fetch": "https://example.com/2", "select": "main"},
            ]
        }
    }
    cfg = _config(tmp_path, documents)
    _add(cfg, "s1", 0, "One", page_id="p1")
    first = _run(cfg)

    assert first.waiting == 1
    assert RuleStore(cfg.paths.rules_path).get_progress().pending_pages == {"svc/tos": ["s1"]}

    _add(cfg, "s2", 1, "Two", page_id="p2")
    second = _run(cfg)

    assert second.accepted == 1
    assert _versions(cfg).find_latest("svc", "tos") == "One\n\nTwo"
    assert RuleStore(cfg.paths.rules_path).get_progress().pending_pages == {}


def test_interactive_run_refuses_done_document(tmp_path):
    cfg = _config(tmp_path)
    _add(cfg, "a1", 0, "Hello world")
    RuleStore(cfg.paths.rules_path).update_document("svc", "tos", DONE, BASE_DATE)

    with pytest.raises(DocumentAlreadyDone):
        _run(cfg, service_id="svc", document_type="tos", interactive=True, reviewer=AutoReviewer())

    stats = _run(cfg, service_id="svc", document_type="tos", interactive=True, reviewer=AutoReviewer(), force=True)
    assert stats.accepted == 1
    assert list((tmp_path / "output" / "to-check" / "svc" / "tos").iterdir())


def test_filters_limit_processed_snapshots(tmp_path):
    cfg = _config(tmp_path)
    _add(cfg, "a1", 0, "Hello world")
    FileSnapshotRepository(Path(cfg.paths.snapshots_dir)).save(
        Snapshot(
            id="o1",
            service_id="other",
            document_type="tos",
            fetch_date=BASE_DATE,
            content="<html><body><main>Other</main></body></html>",
        )
    )

    stats = _run(cfg, service_id="svc")

    assert (stats.total, stats.to_process, stats.visited) == (2, 1, 1)


def test_progress_bar_mode(tmp_path):
    cfg = _config(tmp_path)
    _add(cfg, "a1", 0, "Hello world")

    stats = _run(cfg, show_progress=True)

    assert stats.accepted == 1


class _InterruptingReviewer(AutoReviewer):
    """Keeps versions until ``stop_at`` is reviewed, then aborts the run."""

    def __init__(self, rules_path, stop_at):
        self.rules_path = rules_path
        self.stop_at = stop_at
        self.checkpoint_on_disk = None

    def review(self, request):
        if request.snapshot.id == self.stop_at:
            self.checkpoint_on_disk = RuleStore(self.rules_path).get_progress()
            raise RuntimeError("interrupted")
        return super().review(request)


def test_checkpoint_flushed_on_acceptance_and_when_run_stops(tmp_path):
    cfg = _config(tmp_path)
    cfg.run.checkpoint_interval = 10
    _add(cfg, "a1", 0, "Hello world")
    _add(cfg, "a2", 1, "Hello world")
    _add(cfg, "a3", 2, "Hello world v2")
    reviewer = _InterruptingReviewer(cfg.paths.rules_path, stop_at="a3")

    with pytest.raises(RuntimeError):
        _run(cfg, reviewer=reviewer)

    assert (reviewer.checkpoint_on_disk.snapshot_id, reviewer.checkpoint_on_disk.index) == ("a1", 2)
    checkpoint = RuleStore(cfg.paths.rules_path).get_progress()
    assert (checkpoint.snapshot_id, checkpoint.index) == ("a2", 3)

    stats = _run(cfg)

    assert stats.visited == 1
    assert _versions(cfg).find_latest("svc", "tos") == "Hello world v2"


def test_undeclared_page_logged_as_page_mismatch(tmp_path):
    cfg = _config(tmp_path)
    _add(cfg, "a1", 0, "Hello world", page_id="unknown")

    stats = _run(cfg)

    assert stats.failed == 1
    entries = [
        json.loads(line)
        for line in (tmp_path / "output" / "run.jsonl").read_text(encoding="utf-8").splitlines()
    ]
    mismatches = [entry for entry in entries if entry.get("event") == "page_mismatch"]
    assert len(mismatches) == 1
    assert mismatches[0]["page_id"] == "unknown"
    assert mismatches[0]["declared"] == ["https://example.com/tos"]
    assert not any(entry.get("event") == "extraction_failed" for entry in entries)
