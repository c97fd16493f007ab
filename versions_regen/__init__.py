"""
Versions regeneration - rebuild a document version archive from snapshots.

This package replays captured web-page snapshots through document
declarations and operator-authored skip rules to regenerate the history of
extracted document versions, resumably.

Main entry point is the CLI via `versions-regen run` command.

Example:
    $ versions-regen run -s ServiceA -d "Terms of Service" -i
"""

__all__ = ["__version__", "RuleStore", "SnapshotProcessor", "run_regeneration"]
__version__ = "0.1.0"

from .core.rules import RuleStore
from .pipeline import SnapshotProcessor
from .runner import run_regeneration
