"""Utility functions for the catalog cache."""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from .exceptions import MissingFieldError

logger = logging.getLogger(__name__)

# =============================================================================
# Constants for sync operations
# =============================================================================

# Records requested per remote page
DEFAULT_PAGE_SIZE: int = 100

# Retry configuration for transient remote errors
DEFAULT_MAX_TRIES: int = 20
DEFAULT_RETRY_DELAY: float = 60.0  # seconds, fixed (not exponential)

# Timestamp stored for records whose modification time is unknown
EPOCH: datetime = datetime.fromtimestamp(0, tz=timezone.utc)


# =============================================================================
# Timestamp utilities
# =============================================================================


def to_epoch_millis(value: Optional[datetime]) -> int:
    """Convert a datetime to epoch milliseconds.

    Args:
        value: Datetime to convert (naive values are treated as UTC)

    Returns:
        Milliseconds since the epoch, 0 for None
    """
    if value is None:
        return 0
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def from_epoch_millis(millis: Union[int, str]) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime.

    Examples:
        >>> from_epoch_millis(1336382591001).isoformat()
        '2012-05-07T09:23:11.001000+00:00'

    Raises:
        ValueError: If the value is not an integer or lies outside the
            range of datetime
    """
    millis = int(millis)
    try:
        return EPOCH + timedelta(milliseconds=millis)
    except OverflowError as e:
        raise ValueError(f"Timestamp out of range: {millis}") from e


def truncate_to_millis(value: datetime) -> datetime:
    """Drop sub-millisecond precision, normalising to aware UTC."""
    return from_epoch_millis(to_epoch_millis(value))


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a modification timestamp as returned by the remote catalog.

    Accepts epoch milliseconds (int or digit string), an ISO 8601 string
    (a trailing 'Z' means UTC) or a datetime.

    Args:
        value: Raw timestamp value

    Returns:
        Aware UTC datetime with millisecond precision, or None if the value
        is empty or cannot be parsed

    Raises:
        MissingFieldError: If a numeric timestamp is outside the range of
            datetime
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return truncate_to_millis(value)

    text = str(value).strip()
    if isinstance(value, (int, float)) or text.lstrip("-").isdigit():
        try:
            return from_epoch_millis(text if isinstance(value, str) else int(value))
        except (OverflowError, ValueError) as e:
            raise MissingFieldError(f"Invalid last modified date {value!r}: {e}") from e

    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        logger.warning(f"Ignoring unparseable last modified date {value!r}")
        return None
    return truncate_to_millis(dt)


def format_timestamp(value: Optional[datetime]) -> str:
    """Format a timestamp for log and console output."""
    if value is None:
        return "unknown"
    if value == EPOCH:
        return "epoch"
    return value.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3] + " UTC"


# =============================================================================
# Serialization helpers
# =============================================================================

# Characters outside the XML 1.0 Char production, plus lone surrogates which
# cannot be encoded as UTF-8.
_INVALID_CHARACTERS = re.compile(
    r"[^\t\n\r\x20-\U0000D7FF\U0000E000-\U0000FFFD\U00010000-\U0010FFFF]"
)


def strip_invalid_characters(value: Any) -> Any:
    """Recursively remove characters that are invalid in a snapshot document.

    Args:
        value: A JSON-compatible value (str, list, dict, scalars)

    Returns:
        The same structure with invalid characters removed from every string
        (dict keys included)
    """
    if isinstance(value, str):
        return _INVALID_CHARACTERS.sub("", value)
    if isinstance(value, dict):
        return {
            strip_invalid_characters(k): strip_invalid_characters(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [strip_invalid_characters(v) for v in value]
    return value
