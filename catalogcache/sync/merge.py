"""Merge policy reconciling incoming remote records with cached ones."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..exceptions import MissingFieldError
from ..models import IndexEntry, Record
from ..utils import EPOCH, format_timestamp


class MergeAction(str, Enum):
    """Actions that can be taken for an incoming record."""

    INSERT = "insert"
    """Record is not cached yet, add it"""

    REPLACE = "replace"
    """Incoming record is at least as new as the cached one"""

    REMOVE = "remove"
    """Incoming record is deleted and the cache discards deleted records"""

    SKIP_OLDER = "skip_older"
    """Cached record is newer, keep it"""

    SKIP_DELETED = "skip_deleted"
    """Incoming record is deleted, not cached, and deleted records are discarded"""


@dataclass
class MergeDecision:
    """Represents a decision about how to merge a record."""

    action: MergeAction
    """Action to take"""

    reason: str
    """Human-readable reason for this decision"""

    record: Record
    """Incoming record"""

    cached: Optional[IndexEntry]
    """Cached entry matched by id or reference id (if any)"""


class RecordMerger:
    """Decides how an incoming record is merged into the cache."""

    def __init__(self, include_deleted: bool = False):
        """Initialize the record merger.

        Args:
            include_deleted: Treat DELETED records like any other state
                instead of removing them from the cache
        """
        self.include_deleted = include_deleted

    def decide(self, record: Record, cached: Optional[IndexEntry]) -> MergeDecision:
        """Decide what to do with an incoming record.

        Args:
            record: Record fetched from the remote catalog
            cached: Entry already in the cache for the same identity

        Returns:
            MergeDecision for this record

        Raises:
            MissingFieldError: If timestamps must be compared and either side
                has none
        """
        if record.is_deleted and not self.include_deleted:
            if cached is not None:
                return MergeDecision(
                    MergeAction.REMOVE,
                    "Record was deleted remotely, removing cached copy",
                    record,
                    cached,
                )
            return MergeDecision(
                MergeAction.SKIP_DELETED,
                "Record was deleted remotely and is not cached",
                record,
                cached,
            )

        if cached is None:
            return MergeDecision(
                MergeAction.INSERT, "Record not in cache", record, cached
            )

        if record.last_modified is None or cached.last_modified == EPOCH:
            raise MissingFieldError(
                f"Record {record.id} can't be compared with the cached copy: the "
                "remote query must always request the last modified date."
            )

        incoming = format_timestamp(record.last_modified)
        existing = format_timestamp(cached.last_modified)
        if record.last_modified < cached.last_modified:
            return MergeDecision(
                MergeAction.SKIP_OLDER,
                f"Cached record is newer ({incoming} vs {existing})",
                record,
                cached,
            )
        return MergeDecision(
            MergeAction.REPLACE,
            f"Record is not older than the cached one ({incoming} vs {existing})",
            record,
            cached,
        )
