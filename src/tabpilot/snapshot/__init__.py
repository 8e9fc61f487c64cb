"""
Snapshot module - accessibility snapshots, formatting, search and strategies.
"""
from tabpilot.snapshot.builder import (
    AccessibilityTreeConverter,
    SnapshotBuilder,
    convert_accessibility_tree,
    is_interesting,
)
from tabpilot.snapshot.dom import DomSnapshotCollector, convert_dom_snapshot
from tabpilot.snapshot.formatter import format_snapshot, should_include_in_output
from tabpilot.snapshot.provider import (
    CdpSnapshotStrategy,
    DomSnapshotStrategy,
    SnapshotProvider,
    SnapshotStrategy,
)
from tabpilot.snapshot.query import (
    SearchResult,
    format_search_results,
    match_glob,
    search_snapshot_text,
)

__all__ = [
    "AccessibilityTreeConverter",
    "SnapshotBuilder",
    "convert_accessibility_tree",
    "is_interesting",
    "DomSnapshotCollector",
    "convert_dom_snapshot",
    "format_snapshot",
    "should_include_in_output",
    "CdpSnapshotStrategy",
    "DomSnapshotStrategy",
    "SnapshotProvider",
    "SnapshotStrategy",
    "SearchResult",
    "format_search_results",
    "match_glob",
    "search_snapshot_text",
]
