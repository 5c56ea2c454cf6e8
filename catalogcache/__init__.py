"""Catalog Cache - durable local mirror of a remote paginated catalog."""

from .api import CatalogClient, RemoteCatalogClient
from .config import CacheSettings
from .exceptions import (
    CatalogCacheError,
    ConfigError,
    DeserializationError,
    ErrorCode,
    MissingFieldError,
    PersistentRemoteError,
    RemoteError,
    SerializationError,
    SyncInProgressError,
    TransientRemoteError,
)
from .index import CacheIndex
from .models import IndexEntry, ItemState, Record, RecordPage
from .retry import RetryPolicy
from .store import RecordStore
from .sync import SyncEngine, SyncMode, get_updated_cache

__all__ = [
    "CatalogClient",
    "RemoteCatalogClient",
    "CacheSettings",
    "CacheIndex",
    "RecordStore",
    "RetryPolicy",
    "SyncEngine",
    "SyncMode",
    "get_updated_cache",
    "IndexEntry",
    "ItemState",
    "Record",
    "RecordPage",
    "CatalogCacheError",
    "ConfigError",
    "DeserializationError",
    "ErrorCode",
    "MissingFieldError",
    "PersistentRemoteError",
    "RemoteError",
    "SerializationError",
    "SyncInProgressError",
    "TransientRemoteError",
]
