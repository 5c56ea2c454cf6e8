"""Durable storage for the cache index and per-record payloads.

Layout on disk, for a cache file ``cache.json``::

    cache.json                    index snapshot (ById, ByReferenceId, ByDate)
    cache.json.metadata/1/2/3/123.json
                                  payload of record 123, one directory
                                  level per decimal digit of the id

Sharding by digit keeps the fan-out of any single directory at ten
subdirectories plus the payloads whose id ends there.
"""

import json
import logging
import os
import shutil
import tempfile
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from .exceptions import CatalogCacheError, DeserializationError, SerializationError
from .index import CacheIndex
from .models import ItemState, Record
from .utils import EPOCH, from_epoch_millis, strip_invalid_characters, to_epoch_millis

logger = logging.getLogger(__name__)

PAYLOAD_SUFFIX = ".json"
METADATA_SUFFIX = ".metadata"


class RecordStore:
    """Reads and writes the index snapshot and record payload files."""

    def __init__(self, cache_file: Path, strip_invalid_characters: bool = True):
        """Initialize the record store.

        Args:
            cache_file: Path of the index snapshot; payloads are stored in a
                sibling ``<cache_file>.metadata`` directory
            strip_invalid_characters: Remove characters that are invalid in
                the snapshot format before writing
        """
        self.cache_file = Path(cache_file)
        self.strip_invalid_characters = strip_invalid_characters

    @property
    def metadata_dir(self) -> Path:
        return self.cache_file.with_name(self.cache_file.name + METADATA_SUFFIX)

    def payload_path(self, record_id: int) -> Path:
        """Return the payload file path of a record.

        Examples:
            >>> RecordStore(Path("/c/cache.json")).payload_path(123).as_posix()
            '/c/cache.json.metadata/1/2/3/123.json'
        """
        if record_id < 0:
            raise ValueError(f"Record ids must not be negative: {record_id}")
        digits = str(record_id)
        return self.metadata_dir.joinpath(*digits, f"{digits}{PAYLOAD_SUFFIX}")

    # =========================
    # Payload Operations
    # =========================

    def write_record(self, record: Record) -> Path:
        """Persist the full payload of a record.

        Raises:
            SerializationError: If the payload can't be written
        """
        data = record.to_dict()
        if self.strip_invalid_characters:
            data = strip_invalid_characters(data)

        try:
            path = self.payload_path(record.id)
            if not path.parent.exists():
                logger.debug(f"Creating metadata directory '{path.parent}'")
                path.parent.mkdir(parents=True, exist_ok=True)
            self._atomic_write(path, json.dumps(data, indent=2, ensure_ascii=False))
        except (OSError, TypeError, ValueError) as e:
            raise SerializationError(
                f"Couldn't serialize record {record.id}: {e}"
            ) from e
        return path

    def read_record(self, record_id: int) -> Optional[Record]:
        """Load a record payload.

        Returns:
            Record, or None if the payload is missing or unreadable
        """
        path = self.payload_path(record_id)
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return Record.from_dict(data)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, TypeError, AttributeError, CatalogCacheError) as e:
            logger.warning(f"Failed to read payload of record {record_id}: {e}")
            return None

    def remove_record(self, record_id: int) -> bool:
        """Delete a record payload.

        Failures are logged and not raised: an orphaned payload does not
        corrupt the index.

        Returns:
            True if a payload file was deleted
        """
        path = self.payload_path(record_id)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to delete payload '{path}': {e}")
            return False

    def iter_record_ids(self) -> Iterator[int]:
        """Yield the ids of every payload present on disk."""
        if not self.metadata_dir.is_dir():
            return
        for path in self.metadata_dir.rglob(f"*{PAYLOAD_SUFFIX}"):
            stem = path.name[: -len(PAYLOAD_SUFFIX)]
            if stem.isdigit() and path == self.payload_path(int(stem)):
                yield int(stem)

    # =========================
    # Snapshot Operations
    # =========================

    def serialize(self, index: CacheIndex) -> None:
        """Write the index snapshot, replacing any previous one.

        Entries are sorted so that successive snapshots diff cleanly.

        Raises:
            SerializationError: If the snapshot can't be written
        """
        document: dict[str, Any] = {
            "ById": [
                {"id": record_id, "state": state.value}
                for record_id, state in sorted(index.state_by_id.items())
            ],
            "ByReferenceId": [
                {"referenceId": reference_id, "id": record_id}
                for reference_id, record_id in sorted(
                    index.id_by_reference_id.items()
                )
            ],
            "ByDate": [
                {"id": record_id, "lastModifiedDate": _millis_or_unknown(ts)}
                for record_id, ts in sorted(index.last_modified_by_id.items())
            ],
        }
        if self.strip_invalid_characters:
            document = strip_invalid_characters(document)

        try:
            if not self.cache_file.parent.exists():
                self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            self._atomic_write(
                self.cache_file, json.dumps(document, indent=2, ensure_ascii=False)
            )
        except (OSError, TypeError, ValueError) as e:
            raise SerializationError(
                f"Couldn't write cache snapshot '{self.cache_file}': {e}"
            ) from e

        logger.debug(
            f"Wrote cache snapshot with {len(index)} records to {self.cache_file}"
        )

    def deserialize(self) -> CacheIndex:
        """Read the index snapshot.

        A missing or unreadable snapshot is not an error: the remote catalog
        is the source of truth, so the cache starts empty and the next sync
        repopulates it.

        Returns:
            The stored index, or an empty index
        """
        logger.info(f"Reading cache from {self.cache_file}")
        try:
            index = self._load_snapshot()
        except DeserializationError as e:
            logger.info(
                f"Couldn't read records from cache file, starting from scratch: {e}"
            )
            return CacheIndex()

        logger.info(f"Cache read. Total records: {len(index)}")
        return index

    def _load_snapshot(self) -> CacheIndex:
        try:
            with open(self.cache_file, encoding="utf-8") as f:
                document = json.load(f)
        except FileNotFoundError as e:
            raise DeserializationError(f"No snapshot at {self.cache_file}") from e
        except (OSError, ValueError) as e:
            raise DeserializationError(f"Unreadable snapshot: {e}") from e

        try:
            state_by_id: dict[int, ItemState] = {}
            for item in document.get("ById", []):
                try:
                    state = ItemState(item["state"])
                except ValueError:
                    logger.debug(f"Skipping record with unknown state: {item}")
                    continue
                state_by_id[int(item["id"])] = state
            logger.debug(f"Extracted {len(state_by_id)} records by id")

            id_by_reference_id = {
                str(item["referenceId"]): int(item["id"])
                for item in document.get("ByReferenceId", [])
            }
            logger.debug(f"Extracted {len(id_by_reference_id)} records by reference id")

            last_modified_by_id: dict[int, datetime] = {}
            for item in document.get("ByDate", []):
                millis = int(item["lastModifiedDate"] or 0)
                last_modified_by_id[int(item["id"])] = (
                    from_epoch_millis(millis) if millis else EPOCH
                )
            logger.debug(f"Extracted {len(last_modified_by_id)} records by date")
        except (
            AttributeError, KeyError, TypeError, ValueError, OverflowError, OSError
        ) as e:
            raise DeserializationError(f"Malformed snapshot: {e}") from e

        return CacheIndex.from_snapshot(
            state_by_id, id_by_reference_id, last_modified_by_id
        )

    def clear(self) -> None:
        """Delete the snapshot and every payload file."""
        if self.metadata_dir.exists():
            shutil.rmtree(self.metadata_dir, ignore_errors=True)
        try:
            self.cache_file.unlink()
        except FileNotFoundError:
            pass

    def _atomic_write(self, path: Path, text: str) -> None:
        """Write text next to path, then rename it into place."""
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise


def _millis_or_unknown(value: Optional[datetime]) -> int:
    if value is None or value == EPOCH:
        return 0
    return to_epoch_millis(value)
