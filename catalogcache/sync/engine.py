"""Core sync engine that mirrors the remote catalog into the local cache."""

import logging
import threading
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from ..api import RemoteCatalogClient
from ..config import CacheSettings
from ..exceptions import (
    ConfigError,
    MissingFieldError,
    RemoteError,
    SerializationError,
    SyncInProgressError,
)
from ..index import CacheIndex
from ..models import Record, RecordPage, SortBy, SortOrder, StateFilter
from ..retry import RetryPolicy
from ..store import RecordStore
from ..utils import EPOCH, format_timestamp
from .merge import MergeAction, MergeDecision, RecordMerger
from .modes import SyncMode

logger = logging.getLogger(__name__)

FETCH_PAGE = "fetch_page"

_STAT_BY_ACTION = {
    MergeAction.INSERT: "inserted",
    MergeAction.REPLACE: "replaced",
    MergeAction.REMOVE: "removed",
    MergeAction.SKIP_OLDER: "skipped_older",
    MergeAction.SKIP_DELETED: "skipped_deleted",
}


class SyncEngine:
    """Keeps one account's cache index and record store in sync with the remote.

    The engine owns its CacheIndex and RecordStore. Only one pass may run at a
    time; lookups from other threads during a pass see a partially updated
    index.
    """

    def __init__(
        self,
        client: Optional[RemoteCatalogClient],
        credential: Optional[str],
        store: RecordStore,
        settings: Optional[CacheSettings] = None,
        retry_policy: Optional[RetryPolicy] = None,
        index: Optional[CacheIndex] = None,
    ):
        """Initialize sync engine.

        Args:
            client: Remote catalog client
            credential: Read token of the account being cached
            store: Record store backing the cache
            settings: Cache behaviour (defaults to CacheSettings())
            retry_policy: Retry policy for remote calls (built from settings
                if not provided)
            index: Initial index (defaults to an empty one; see load())
        """
        self.client = client
        self.credential = credential
        self.store = store
        self.settings = settings or CacheSettings()
        self.retry = retry_policy or RetryPolicy(
            max_tries=self.settings.max_tries, delay=self.settings.retry_delay
        )
        self.index = index if index is not None else CacheIndex()
        self.merger = RecordMerger(include_deleted=self.settings.include_deleted)
        self._pass_lock = threading.Lock()

    @classmethod
    def open(
        cls,
        client: Optional[RemoteCatalogClient],
        credential: Optional[str],
        cache_file: Path,
        settings: Optional[CacheSettings] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> "SyncEngine":
        """Create an engine for a cache file and load its index from disk."""
        settings = settings or CacheSettings()
        store = RecordStore(
            cache_file, strip_invalid_characters=settings.strip_invalid_characters
        )
        engine = cls(client, credential, store, settings, retry_policy)
        engine.load()
        return engine

    # =========================
    # Persistence
    # =========================

    def load(self) -> CacheIndex:
        """Replace the in-memory index with the one stored on disk."""
        self.index = self.store.deserialize()
        return self.index

    def save(self) -> None:
        """Write the in-memory index to disk."""
        self.store.serialize(self.index)

    def repair_timestamps(self) -> int:
        """Re-derive missing timestamps from stored payloads.

        Returns:
            Number of repaired entries
        """
        missing = self.index.missing_timestamps()
        if not missing:
            return 0

        logger.info(f"Correcting cache for {len(missing)} missing last modified dates")
        for record_id in missing:
            record = self.store.read_record(record_id)
            last_modified = EPOCH
            if record is not None and record.last_modified is not None:
                last_modified = record.last_modified
            else:
                logger.debug(f"No stored last modified date for record {record_id}")
            self.index.set_last_modified(record_id, last_modified)
        return len(missing)

    # =========================
    # Lookups
    # =========================

    def get_record(self, record_id: int, active_only: bool = True) -> Optional[Record]:
        """Get the full cached record for an id.

        Args:
            record_id: Record id
            active_only: Treat records that are not ACTIVE as not found

        Returns:
            Record if cached, None otherwise
        """
        entry = self.index.lookup_by_id(record_id, active_only=active_only)
        if entry is None:
            return None
        return self.store.read_record(entry.id)

    def get_record_by_reference_id(
        self, reference_id: str, active_only: bool = True
    ) -> Optional[Record]:
        """Get the full cached record for a reference id."""
        logger.debug(
            f"Looking for reference id '{reference_id}' (active_only={active_only})"
        )
        entry = self.index.lookup_by_reference_id(reference_id, active_only=active_only)
        if entry is None:
            logger.debug(f"Reference id '{reference_id}' not found")
            return None
        return self.store.read_record(entry.id)

    # =========================
    # Merging
    # =========================

    def merge(self, record: Record) -> MergeDecision:
        """Merge one remote record into the index and the store.

        The cached copy is matched by id first, then by reference id.

        Raises:
            MissingFieldError: If timestamps are needed and missing; the index
                is left unchanged
            SerializationError: If the payload can't be written
        """
        cached = self.index.lookup_by_id(record.id)
        if cached is None and record.reference_id is not None:
            cached = self.index.lookup_by_reference_id(record.reference_id)

        decision = self.merger.decide(record, cached)
        logger.debug(
            f"Record ({record.id},{record.reference_id},"
            f"{format_timestamp(record.last_modified)},{record.state.value}): "
            f"{decision.action.value} - {decision.reason}"
        )

        # Payload first: a failed write must leave the index unchanged.
        action, cached = decision.action, decision.cached
        if action == MergeAction.INSERT:
            self.store.write_record(record)
            self.index.upsert(record)
        elif action == MergeAction.REPLACE and cached is not None:
            self.store.write_record(record)
            self.index.remove(cached.id)
            if cached.id != record.id:
                self.store.remove_record(cached.id)
            self.index.upsert(record)
        elif action == MergeAction.REMOVE and cached is not None:
            self.index.remove(cached.id)
            self.store.remove_record(cached.id)

        return decision

    # =========================
    # Sync passes
    # =========================

    def update(self, **kwargs) -> dict:
        """Fetch records modified since the cache's high-water mark."""
        return self.sync(SyncMode.INCREMENTAL, **kwargs)

    def full_read(self, **kwargs) -> dict:
        """Discard the index and read the whole remote catalog."""
        return self.sync(SyncMode.FULL_READ, **kwargs)

    def sync(
        self,
        mode: SyncMode = SyncMode.INCREMENTAL,
        state_filter: Optional[Iterable[StateFilter]] = None,
        fields: Optional[Iterable[str]] = None,
        custom_fields: Optional[Iterable[str]] = None,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> dict:
        """Run one sync pass.

        Pages are requested newest first. In incremental mode, once a page
        contains a record older than the high-water mark the rest of that
        page is still merged and then paging stops. Every fully merged page
        is checkpointed to disk.

        Args:
            mode: Full read or incremental update
            state_filter: Record states to request (default: all)
            fields: Record fields to request (default: all)
            custom_fields: Custom fields to request (default: none)
            cancel_event: When set, the pass stops before the next page
            progress_callback: Called as callback(page_number, record_count)
                after each merged page

        Returns:
            Dictionary with sync statistics

        Raises:
            ConfigError: If client or credential are missing
            SyncInProgressError: If a pass is already running
            PersistentRemoteError: If retries are exhausted; pages merged so
                far stay merged and are saved
            MissingFieldError: In strict mode, if a record can't be merged
            SerializationError: If the cache can't be written
        """
        if self.client is None or not self.credential:
            raise ConfigError(
                "Must provide a catalog client and a credential before syncing."
            )
        if not self._pass_lock.acquire(blocking=False):
            raise SyncInProgressError("A sync pass is already running on this cache.")

        try:
            return self._run_pass(
                mode,
                state_filter,
                list(fields) if fields else None,
                list(custom_fields) if custom_fields else None,
                cancel_event,
                progress_callback,
            )
        finally:
            self._pass_lock.release()

    def _run_pass(
        self,
        mode: SyncMode,
        state_filter: Optional[Iterable[StateFilter]],
        fields: Optional[list[str]],
        custom_fields: Optional[list[str]],
        cancel_event: Optional[threading.Event],
        progress_callback: Optional[Callable[[int, int], None]],
    ) -> dict:
        stats = self._create_empty_stats()

        if mode.discards_index:
            logger.info("Full read: discarding existing index")
            self.index.clear()

        high_water_mark = EPOCH
        if mode.stops_at_high_water_mark:
            logger.info("Determining latest modified date in current cache")
            if self.index.needs_repair():
                self.repair_timestamps()
            high_water_mark = self.index.high_water_mark()
            logger.info(f"Latest modified date: {format_timestamp(high_water_mark)}")
        stats["high_water_mark"] = high_water_mark

        logger.info(f"Updating cache from remote catalog ({mode.value})...")
        page_number = 0
        try:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info(f"Sync cancelled before page {page_number}")
                    stats["cancelled"] = True
                    break

                page = self._fetch_page(
                    page_number, state_filter, fields, custom_fields
                )
                if page.is_empty:
                    logger.debug(f"Page {page_number} is empty, done")
                    break

                logger.debug(f"Reading page {page_number} ({len(page)} records)")
                reached_mark = self._merge_page(
                    page, high_water_mark, mode.stops_at_high_water_mark, stats
                )
                stats["pages"] += 1
                self.save()

                if progress_callback is not None:
                    progress_callback(page_number, len(page))
                if reached_mark:
                    break
                page_number += 1
        except (RemoteError, MissingFieldError) as e:
            logger.error(f"Sync pass aborted on page {page_number}: {e}")
            self._save_after_failure()
            raise

        self.save()
        logger.info(
            f"Sync finished: {stats['pages']} page(s), {stats['records']} record(s), "
            f"{len(self.index)} cached"
        )
        return stats

    def _fetch_page(
        self,
        page_number: int,
        state_filter: Optional[Iterable[StateFilter]],
        fields: Optional[list[str]],
        custom_fields: Optional[list[str]],
    ) -> RecordPage:
        if self.client is None:
            raise ConfigError("Must provide a catalog client before fetching pages.")
        logger.debug(f"Getting page {page_number}")
        return self.retry.call(
            FETCH_PAGE,
            self.client.fetch_page,
            self.credential,
            since=0,
            state_filter=state_filter,
            page_size=self.settings.page_size,
            page_number=page_number,
            sort_by=SortBy.MODIFIED_DATE,
            sort_order=SortOrder.DESC,
            fields=fields,
            custom_fields=custom_fields,
        )

    def _merge_page(
        self,
        page: RecordPage,
        high_water_mark: datetime,
        stop_at_mark: bool,
        stats: dict,
    ) -> bool:
        """Merge every record of a page.

        Returns:
            True if the page held a record older than the high-water mark
        """
        for error in page.rejected:
            if self.settings.strict:
                raise error
            logger.warning(f"Skipping unreadable item: {error}")
            stats["errors"] += 1

        found_older = False
        for record in page:
            if (
                stop_at_mark
                and record.last_modified is not None
                and record.last_modified < high_water_mark
            ):
                if not found_older:
                    logger.debug(
                        f"Record {record.id} is older than the newest cached record, "
                        "finishing this page and stopping"
                    )
                found_older = True

            try:
                decision = self.merge(record)
            except MissingFieldError as e:
                if self.settings.strict:
                    raise
                logger.warning(f"Skipping record {record.id}: {e}")
                stats["errors"] += 1
                continue

            stats["records"] += 1
            stats[_STAT_BY_ACTION[decision.action]] += 1

        return found_older

    def _save_after_failure(self) -> None:
        try:
            self.save()
        except SerializationError as e:
            logger.error(f"Couldn't save partial progress: {e}")

    def _create_empty_stats(self) -> dict:
        return {
            "pages": 0,
            "records": 0,
            "inserted": 0,
            "replaced": 0,
            "removed": 0,
            "skipped_older": 0,
            "skipped_deleted": 0,
            "errors": 0,
            "high_water_mark": EPOCH,
            "cancelled": False,
        }


def get_updated_cache(
    client: RemoteCatalogClient,
    credential: str,
    cache_file: Path,
    settings: Optional[CacheSettings] = None,
    retry_policy: Optional[RetryPolicy] = None,
) -> SyncEngine:
    """Load a cache from disk, bring it up to date and save it.

    Examples:
        >>> engine = get_updated_cache(client, token, Path("cache.json"))
        >>> engine.get_record_by_reference_id("intro-video")
    """
    engine = SyncEngine.open(client, credential, cache_file, settings, retry_policy)
    engine.update()
    engine.save()
    return engine
