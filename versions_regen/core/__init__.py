"""
Core domain models and regeneration logic.

This package contains data types, the rule store and the per-snapshot
decision components, independent of any storage backend.
"""

from .types import Snapshot, PageDeclaration, DocumentDeclaration, VersionRecord
from .rules import RuleStore, DocumentRules
from .evaluator import RuleEvaluator
from .aggregator import MultiPageAggregator
from .dedup import DiffDeduplicator, VersionRepository

__all__ = [
    "Snapshot",
    "PageDeclaration",
    "DocumentDeclaration",
    "VersionRecord",
    "RuleStore",
    "DocumentRules",
    "RuleEvaluator",
    "MultiPageAggregator",
    "DiffDeduplicator",
    "VersionRepository",
]
