"""Tests for review output folders and the file-backed version store."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from versions_regen.core.types import Snapshot, VersionRecord
from versions_regen.storage.output import VersionsOutput
from versions_regen.storage.versions import FileVersionRepository


def _record(content, day, snapshot_ids=None):
    return VersionRecord(
        content=content,
        service_id="svc",
        document_type="tos",
        snapshot_ids=snapshot_ids or [f"s{day}"],
        fetch_date=datetime(2023, 1, day, tzinfo=timezone.utc),
    )


def test_save_skipped_and_for_review(tmp_path):
    output = VersionsOutput(tmp_path)
    snapshot = Snapshot(
        id="abc",
        service_id="svc",
        document_type="tos",
        fetch_date=datetime(2023, 1, 1, 12, 30, tzinfo=timezone.utc),
        content="<p>Down</p>",
    )

    skipped = output.save_skipped(snapshot)
    to_check = output.save_for_review(snapshot)

    assert skipped == tmp_path / "skipped" / "svc" / "tos" / "2023-01-01T12-30-00Z-abc.html"
    assert to_check.parent == tmp_path / "to-check" / "svc" / "tos"
    assert skipped.read_text(encoding="utf-8") == "<p>Down</p>"


def test_finalize_prunes_empty_folders(tmp_path):
    output = VersionsOutput(tmp_path)
    (output.skipped_path / "svc" / "tos").mkdir(parents=True)
    (output.to_check_path / "svc" / "tos").mkdir(parents=True)
    (output.to_check_path / "svc" / "tos" / "kept.html").write_text("x", encoding="utf-8")

    output.finalize()

    assert not (output.skipped_path / "svc").exists()
    assert (output.to_check_path / "svc" / "tos" / "kept.html").exists()


def test_version_repository_latest_and_history(tmp_path):
    versions = FileVersionRepository(tmp_path)
    assert versions.find_latest("svc", "tos") is None

    first_id = versions.save(_record("Hello world", 1))
    versions.save(_record("Hello world v2", 2, ["p1", "p2"]))

    assert versions.find_latest("svc", "tos") == "Hello world v2"
    history = versions.history("svc", "tos")
    assert [entry["id"] for entry in history][0] == first_id
    assert history[1]["snapshotIds"] == ["p1", "p2"]
    assert history[1]["fetchDate"] == "2023-01-02T00:00:00Z"


def test_version_repository_refuses_older_records(tmp_path):
    versions = FileVersionRepository(tmp_path)
    versions.save(_record("Hello world", 2))

    with pytest.raises(ValueError):
        FileVersionRepository(tmp_path).save(_record("Older", 1))


def test_version_repository_remove_all(tmp_path):
    versions = FileVersionRepository(tmp_path / "resulting-versions")
    versions.save(_record("Hello world", 2))

    versions.remove_all()
    versions.save(_record("Earlier", 1))

    assert versions.find_latest("svc", "tos") == "Earlier"
    assert len(versions.history("svc", "tos")) == 1


def test_interrupted_save_keeps_content_and_replays_cleanly(tmp_path, monkeypatch):
    versions = FileVersionRepository(tmp_path)
    versions.save(_record("Hello world", 1))

    def crash(path, text):
        raise OSError("disk full")

    monkeypatch.setattr("versions_regen.storage.versions.write_text_atomic", crash)
    with pytest.raises(OSError):
        versions.save(_record("Hello world v2", 2))
    monkeypatch.undo()

    assert versions.find_latest("svc", "tos") == "Hello world"
    assert len(versions.history("svc", "tos")) == 2

    replayed = FileVersionRepository(tmp_path)
    replayed.save(_record("Hello world v2", 2))

    assert replayed.find_latest("svc", "tos") == "Hello world v2"
    assert len(replayed.history("svc", "tos")) == 2
    assert sorted(path.name for path in (tmp_path / "svc").iterdir()) == ["tos.history.jsonl", "tos.md"]
