"""Data models for records mirrored from the remote catalog."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .exceptions import MissingFieldError
from .utils import parse_timestamp, to_epoch_millis


class ItemState(str, Enum):
    """Lifecycle state of a catalog record."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    DELETED = "DELETED"

    @classmethod
    def parse(cls, value: Any) -> "ItemState":
        """Parse a state value case-insensitively.

        Raises:
            MissingFieldError: If the value is not a known state
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError as e:
            raise MissingFieldError(f"Unknown item state: {value!r}") from e


class StateFilter(str, Enum):
    """Which record states the remote catalog should return."""

    PLAYABLE = "PLAYABLE"
    UNSCHEDULED = "UNSCHEDULED"
    INACTIVE = "INACTIVE"
    DELETED = "DELETED"

    @classmethod
    def full_set(cls) -> frozenset["StateFilter"]:
        """All filters, so that every record state is returned."""
        return frozenset(cls)


class SortBy(str, Enum):
    """Remote sort fields."""

    MODIFIED_DATE = "MODIFIED_DATE"
    CREATION_DATE = "CREATION_DATE"
    PUBLISH_DATE = "PUBLISH_DATE"


class SortOrder(str, Enum):
    """Remote sort direction."""

    ASC = "ASC"
    DESC = "DESC"


@dataclass
class Record:
    """A single record of the remote catalog."""

    id: int
    state: ItemState = ItemState.ACTIVE
    reference_id: Optional[str] = None
    last_modified: Optional[datetime] = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_deleted(self) -> bool:
        return self.state == ItemState.DELETED

    @property
    def is_active(self) -> bool:
        return self.state == ItemState.ACTIVE

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Record":
        """Create a Record from a remote catalog item.

        Args:
            data: Item dictionary as returned by the remote API

        Returns:
            Record whose payload is a copy of the full item

        Raises:
            MissingFieldError: If the item has no usable id, an unknown state
                or an out-of-range timestamp
        """
        raw_id = data.get("id")
        if raw_id is None or raw_id == "":
            raise MissingFieldError("Record has no id, can't add to cache.")
        try:
            record_id = int(raw_id)
        except (TypeError, ValueError) as e:
            raise MissingFieldError(f"Record id is not numeric: {raw_id!r}") from e
        if record_id < 0:
            raise MissingFieldError(f"Record id must not be negative: {record_id}")

        raw_state = data.get("itemState")
        state = ItemState.parse(raw_state) if raw_state else ItemState.ACTIVE

        reference_id = data.get("referenceId")
        if reference_id is not None:
            reference_id = str(reference_id)
            if not reference_id:
                reference_id = None

        return cls(
            id=record_id,
            state=state,
            reference_id=reference_id,
            last_modified=parse_timestamp(data.get("lastModifiedDate")),
            payload=dict(data),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert the record to its remote JSON shape.

        Identity, state and timestamp fields always reflect the record's
        attributes; every other payload field is passed through unchanged.
        """
        data = dict(self.payload)
        data["id"] = self.id
        data["referenceId"] = self.reference_id
        data["itemState"] = self.state.value
        data["lastModifiedDate"] = (
            to_epoch_millis(self.last_modified)
            if self.last_modified is not None
            else None
        )
        return data


@dataclass(frozen=True)
class IndexEntry:
    """What the cache index knows about a record."""

    id: int
    state: ItemState
    last_modified: datetime
    reference_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.state == ItemState.ACTIVE


@dataclass
class RecordPage:
    """A single page of records returned by the remote catalog.

    Items that could not be turned into a Record are kept in ``rejected``
    so the caller decides whether they abort the pass.
    """

    records: list[Record]
    page_number: int = 0
    page_size: int = 0
    total_count: Optional[int] = None
    rejected: list[MissingFieldError] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)

    @property
    def is_empty(self) -> bool:
        return not self.records and not self.rejected

    @classmethod
    def from_api_response(cls, data: Any) -> "RecordPage":
        """Parse a page response from the remote catalog.

        Args:
            data: Either a dict with an ``items`` list and paging metadata,
                or a bare list of items

        Returns:
            RecordPage (empty when the response carries no items)
        """
        if isinstance(data, list):
            items = data
        elif isinstance(data, dict):
            items = data.get("items") or []
        else:
            return cls(records=[])

        records: list[Record] = []
        rejected: list[MissingFieldError] = []
        for item in items:
            if not isinstance(item, dict):
                rejected.append(MissingFieldError(f"Item is not an object: {item!r}"))
                continue
            try:
                records.append(Record.from_dict(item))
            except MissingFieldError as e:
                rejected.append(e)

        if isinstance(data, list):
            return cls(records=records, rejected=rejected)

        total_count = data.get("total_count")
        return cls(
            records=records,
            page_number=int(data.get("page_number") or 0),
            page_size=int(data.get("page_size") or 0),
            total_count=int(total_count) if total_count is not None else None,
            rejected=rejected,
        )
