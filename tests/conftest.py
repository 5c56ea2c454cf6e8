"""Shared fixtures for the catalog cache tests."""

from typing import Optional

import pytest

from catalogcache.models import ItemState, Record, RecordPage
from catalogcache.retry import RetryPolicy
from catalogcache.store import RecordStore
from catalogcache.utils import from_epoch_millis


class FakeCatalogClient:
    """In-memory remote catalog serving pre-built pages.

    ``failures`` maps a page number to a list of exceptions raised, one per
    request, before the page is served.
    """

    def __init__(self, pages: list[list[Record]], failures: Optional[dict] = None):
        self.pages = pages
        self.failures = failures or {}
        self.requested: list[int] = []
        self.calls: list[dict] = []

    def fetch_page(self, credential, page_number=0, **kwargs):
        self.requested.append(page_number)
        self.calls.append(
            {"credential": credential, "page_number": page_number, **kwargs}
        )
        pending = self.failures.get(page_number)
        if pending:
            raise pending.pop(0)
        if page_number < len(self.pages):
            return RecordPage(
                records=list(self.pages[page_number]),
                page_number=page_number,
                page_size=kwargs.get("page_size", 0),
            )
        return RecordPage(records=[], page_number=page_number)


def _make_record(
    record_id: int,
    millis: Optional[int] = 1000,
    reference_id: Optional[str] = None,
    state: ItemState = ItemState.ACTIVE,
    **payload,
) -> Record:
    return Record(
        id=record_id,
        state=state,
        reference_id=reference_id,
        last_modified=from_epoch_millis(millis) if millis is not None else None,
        payload={"id": record_id, **payload},
    )


@pytest.fixture
def make_record():
    """Factory building records from an id and an epoch-millisecond timestamp."""
    return _make_record


@pytest.fixture
def fake_client():
    """Factory building a FakeCatalogClient from pages of records."""

    def factory(pages, failures=None):
        return FakeCatalogClient(pages, failures)

    return factory


@pytest.fixture
def sleeps():
    """Records the delays requested by a RetryPolicy instead of sleeping."""
    return []


@pytest.fixture
def retry_policy(sleeps):
    """Retry policy that never really sleeps."""
    return RetryPolicy(max_tries=3, delay=60.0, sleep=sleeps.append)


@pytest.fixture
def store(tmp_path):
    """Record store rooted in a temporary directory."""
    return RecordStore(tmp_path / "cache.json")
