"""Sync modes."""

from enum import Enum


class SyncMode(str, Enum):
    """How much of the remote catalog a sync pass reads."""

    FULL_READ = "fullRead"
    """Discard the index and read the whole remote catalog"""

    INCREMENTAL = "incremental"
    """Read only records modified since the cache's high-water mark"""

    @property
    def discards_index(self) -> bool:
        """Whether the existing index is dropped before the pass."""
        return self == SyncMode.FULL_READ

    @property
    def stops_at_high_water_mark(self) -> bool:
        """Whether paging stops once records older than the cache appear."""
        return self == SyncMode.INCREMENTAL

    @classmethod
    def from_string(cls, value: str) -> "SyncMode":
        """Parse a mode name or its abbreviation (fr, inc)."""
        aliases = {"fr": cls.FULL_READ, "full": cls.FULL_READ, "inc": cls.INCREMENTAL}
        key = value.strip()
        if key.lower() in aliases:
            return aliases[key.lower()]
        for mode in cls:
            if mode.value.lower() == key.lower():
                return mode
        raise ValueError(f"Unknown sync mode: {value}")
