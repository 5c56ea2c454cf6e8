"""Exceptions raised by the catalog cache."""

from enum import Enum


class ErrorCode(Enum):
    """Machine-readable error codes reported by the cache."""

    SNAPSHOT_READ_ERROR = (900, "Failed to read or parse the cache snapshot")
    SNAPSHOT_WRITE_ERROR = (901, "Failed to write the cache snapshot or a payload")
    MISSING_PARAMETERS = (902, "Missing required data to create or use the cache")
    MISSING_FIELDS = (903, "Records are missing fields required by the cache")
    REMOTE_ERROR = (904, "Remote catalog request failed")
    REMOTE_TRANSIENT = (905, "Remote catalog request failed transiently")
    REMOTE_PERSISTENT = (906, "Remote catalog request failed after all retries")
    SYNC_IN_PROGRESS = (907, "A sync pass is already running on this cache")

    def __init__(self, code: int, description: str):
        self.code = code
        self.description = description


class CatalogCacheError(Exception):
    """Base exception for all catalog cache errors."""

    default_code = ErrorCode.MISSING_PARAMETERS
    retryable = False

    def __init__(self, message: str, code: ErrorCode | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def __str__(self) -> str:
        return f"({self.code.code}: {self.code.description}) {self.message}"


class ConfigError(CatalogCacheError):
    """A required collaborator (client, credential) is missing."""

    default_code = ErrorCode.MISSING_PARAMETERS


class MissingFieldError(CatalogCacheError):
    """A record lacks a field needed for identity or merge comparison."""

    default_code = ErrorCode.MISSING_FIELDS


class SerializationError(CatalogCacheError):
    """Writing the snapshot or a record payload failed."""

    default_code = ErrorCode.SNAPSHOT_WRITE_ERROR


class DeserializationError(CatalogCacheError):
    """The snapshot could not be read.

    Never surfaced by RecordStore.deserialize; the cache starts empty instead.
    """

    default_code = ErrorCode.SNAPSHOT_READ_ERROR


class RemoteError(CatalogCacheError):
    """A remote catalog call failed in a way that retrying will not fix."""

    default_code = ErrorCode.REMOTE_ERROR


class TransientRemoteError(RemoteError):
    """A remote catalog call failed but may succeed when retried."""

    default_code = ErrorCode.REMOTE_TRANSIENT
    retryable = True


class PersistentRemoteError(RemoteError):
    """Retries for a remote catalog call were exhausted."""

    default_code = ErrorCode.REMOTE_PERSISTENT


class SyncInProgressError(CatalogCacheError):
    """A second sync pass was started on an engine that is already syncing."""

    default_code = ErrorCode.SYNC_IN_PROGRESS
