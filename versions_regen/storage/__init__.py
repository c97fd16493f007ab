"""
File-backed repositories.

This package stores snapshots, regenerated versions and review copies
on the local filesystem.
"""

from .snapshots import FileSnapshotRepository, snapshot_filename
from .versions import FileVersionRepository
from .output import VersionsOutput

__all__ = [
    "FileSnapshotRepository",
    "snapshot_filename",
    "FileVersionRepository",
    "VersionsOutput",
]
