"""In-memory index of cached records."""

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from types import MappingProxyType
from typing import Optional

from .models import IndexEntry, ItemState, Record
from .utils import EPOCH, truncate_to_millis

logger = logging.getLogger(__name__)


class CacheIndex:
    """Maps record ids to their state, reference id and modification time.

    The index only tracks identity, state and ordering; full record payloads
    live in the RecordStore. It is single-writer: a sync pass is the only
    mutator, and readers on other threads may observe a partially updated
    index while a pass runs.
    """

    def __init__(self) -> None:
        self._state_by_id: dict[int, ItemState] = {}
        self._id_by_reference_id: dict[str, int] = {}
        self._last_modified_by_id: dict[int, datetime] = {}
        # Reverse of _id_by_reference_id, kept so an id maps to at most one
        # reference id.
        self._reference_id_by_id: dict[int, str] = {}

    @classmethod
    def from_snapshot(
        cls,
        state_by_id: Mapping[int, ItemState],
        id_by_reference_id: Mapping[str, int],
        last_modified_by_id: Mapping[int, datetime],
    ) -> "CacheIndex":
        """Build an index from the three snapshot sections.

        Reference ids pointing at unknown ids are dropped, as are timestamps
        of unknown ids. Missing timestamps are left missing so that
        needs_repair() reports them.
        """
        index = cls()
        index._state_by_id = dict(state_by_id)

        for reference_id, record_id in id_by_reference_id.items():
            if record_id not in index._state_by_id:
                logger.debug(
                    f"Dropping reference id '{reference_id}' pointing at "
                    f"unknown id {record_id}"
                )
                continue
            stale = index._reference_id_by_id.get(record_id)
            if stale is not None:
                del index._id_by_reference_id[stale]
            index._id_by_reference_id[reference_id] = record_id
            index._reference_id_by_id[record_id] = reference_id

        for record_id, last_modified in last_modified_by_id.items():
            if record_id in index._state_by_id:
                index._last_modified_by_id[record_id] = last_modified

        return index

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state_by_id(self) -> Mapping[int, ItemState]:
        return MappingProxyType(self._state_by_id)

    @property
    def id_by_reference_id(self) -> Mapping[str, int]:
        return MappingProxyType(self._id_by_reference_id)

    @property
    def last_modified_by_id(self) -> Mapping[int, datetime]:
        return MappingProxyType(self._last_modified_by_id)

    def ids(self) -> list[int]:
        """Return a copy of all cached ids."""
        return list(self._state_by_id)

    def __len__(self) -> int:
        return len(self._state_by_id)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._state_by_id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CacheIndex):
            return NotImplemented
        return (
            self._state_by_id == other._state_by_id
            and self._id_by_reference_id == other._id_by_reference_id
            and self._last_modified_by_id == other._last_modified_by_id
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def lookup_by_id(
        self, record_id: int, active_only: bool = False
    ) -> Optional[IndexEntry]:
        """Look up a record by id.

        Args:
            record_id: Record id
            active_only: Treat records that are not ACTIVE as not found

        Returns:
            IndexEntry if found, None otherwise
        """
        state = self._state_by_id.get(record_id)
        if state is None:
            return None
        if active_only and state != ItemState.ACTIVE:
            return None
        return IndexEntry(
            id=record_id,
            state=state,
            last_modified=self._last_modified_by_id.get(record_id, EPOCH),
            reference_id=self._reference_id_by_id.get(record_id),
        )

    def lookup_by_reference_id(
        self, reference_id: Optional[str], active_only: bool = False
    ) -> Optional[IndexEntry]:
        """Look up a record by reference id."""
        if reference_id is None:
            return None
        record_id = self._id_by_reference_id.get(reference_id)
        if record_id is None:
            return None
        return self.lookup_by_id(record_id, active_only=active_only)

    def high_water_mark(self) -> datetime:
        """Most recent modification time across all records (epoch if empty)."""
        if not self._last_modified_by_id:
            return EPOCH
        return max(self._last_modified_by_id.values())

    def needs_repair(self) -> bool:
        """True when some ids have no timestamp entry."""
        return len(self._last_modified_by_id) != len(self._state_by_id)

    def missing_timestamps(self) -> list[int]:
        """Ids that have a state but no timestamp entry."""
        return [i for i in self._state_by_id if i not in self._last_modified_by_id]

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def upsert(self, record: Record) -> None:
        """Insert or overwrite the entries for a record.

        A record without a modification time is stored with the epoch.
        Whether the record should win over a cached copy is decided by the
        caller.
        """
        record_id = record.id
        self._state_by_id[record_id] = record.state
        self._last_modified_by_id[record_id] = (
            truncate_to_millis(record.last_modified)
            if record.last_modified is not None
            else EPOCH
        )

        old_reference_id = self._reference_id_by_id.pop(record_id, None)
        if old_reference_id is not None:
            self._id_by_reference_id.pop(old_reference_id, None)

        if record.reference_id is not None:
            previous_owner = self._id_by_reference_id.get(record.reference_id)
            if previous_owner is not None and previous_owner != record_id:
                logger.debug(
                    f"Reference id '{record.reference_id}' moves from "
                    f"{previous_owner} to {record_id}"
                )
                self._reference_id_by_id.pop(previous_owner, None)
            self._id_by_reference_id[record.reference_id] = record_id
            self._reference_id_by_id[record_id] = record.reference_id

    def remove(self, record_id: int) -> None:
        """Remove a record from the index; absent ids are ignored."""
        self._state_by_id.pop(record_id, None)
        self._last_modified_by_id.pop(record_id, None)
        reference_id = self._reference_id_by_id.pop(record_id, None)
        if reference_id is not None:
            self._id_by_reference_id.pop(reference_id, None)

    def set_last_modified(self, record_id: int, last_modified: datetime) -> None:
        """Set the timestamp of a known record (used by the repair pass)."""
        if record_id not in self._state_by_id:
            raise KeyError(record_id)
        self._last_modified_by_id[record_id] = truncate_to_millis(last_modified)

    def update(self, records: Iterable[Record]) -> None:
        """Upsert several records."""
        for record in records:
            self.upsert(record)

    def clear(self) -> None:
        """Drop every entry."""
        self._state_by_id.clear()
        self._id_by_reference_id.clear()
        self._last_modified_by_id.clear()
        self._reference_id_by_id.clear()
