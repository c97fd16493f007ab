"""Review artifacts: copies of skipped snapshots and snapshots to check by hand."""

from __future__ import annotations

from pathlib import Path

from ..core.types import Snapshot
from .snapshots import snapshot_filename


class VersionsOutput:
    """Writes snapshot copies under ``skipped/`` and ``to-check/``.

    Attributes:
        base_dir: Output root directory
        skipped_path: Snapshots skipped by a rule
        to_check_path: Snapshots copied for manual review
        resulting_versions_path: Root of the regenerated version store
    """

    def __init__(self, base_dir: Path):
        self.base_dir = base_dir
        self.skipped_path = base_dir / "skipped"
        self.to_check_path = base_dir / "to-check"
        self.resulting_versions_path = base_dir / "resulting-versions"
        base_dir.mkdir(parents=True, exist_ok=True)

    def save_skipped(self, snapshot: Snapshot) -> Path:
        return self._write(self.skipped_path, snapshot)

    def save_for_review(self, snapshot: Snapshot) -> Path:
        return self._write(self.to_check_path, snapshot)

    def finalize(self) -> None:
        """Remove empty service and document type folders."""
        for folder in (self.skipped_path, self.to_check_path):
            if not folder.exists():
                continue
            for service_dir in [path for path in folder.iterdir() if path.is_dir()]:
                for document_dir in [path for path in service_dir.iterdir() if path.is_dir()]:
                    if not any(document_dir.iterdir()):
                        document_dir.rmdir()
                if not any(service_dir.iterdir()):
                    service_dir.rmdir()

    @staticmethod
    def _write(root: Path, snapshot: Snapshot) -> Path:
        folder = root / snapshot.service_id / snapshot.document_type
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / snapshot_filename(snapshot)
        if isinstance(snapshot.content, bytes):
            path.write_bytes(snapshot.content)
        else:
            path.write_text(snapshot.content, encoding="utf-8")
        return path
