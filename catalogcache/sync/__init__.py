"""Sync engine for catalogcache - incremental and full mirroring of the catalog."""

from .engine import FETCH_PAGE, SyncEngine, get_updated_cache
from .merge import MergeAction, MergeDecision, RecordMerger
from .modes import SyncMode

__all__ = [
    "SyncEngine",
    "SyncMode",
    "RecordMerger",
    "MergeAction",
    "MergeDecision",
    "FETCH_PAGE",
    "get_updated_cache",
]
