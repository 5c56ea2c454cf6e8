"""API client for the remote catalog."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, NoReturn, Protocol

import httpx

from .exceptions import ConfigError, RemoteError, TransientRemoteError
from .models import RecordPage, SortBy, SortOrder, StateFilter
from .utils import DEFAULT_PAGE_SIZE


class RemoteCatalogClient(Protocol):
    """What the sync engine needs from a remote catalog."""

    def fetch_page(
        self,
        credential: str,
        since: int = 0,
        state_filter: Iterable[StateFilter] | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        page_number: int = 0,
        sort_by: SortBy = SortBy.MODIFIED_DATE,
        sort_order: SortOrder = SortOrder.DESC,
        fields: Iterable[str] | None = None,
        custom_fields: Iterable[str] | None = None,
    ) -> RecordPage:
        """Fetch one page of records.

        Raises:
            TransientRemoteError: On failures worth retrying
            RemoteError: On failures retrying won't fix
        """
        ...


class CatalogClient:
    """HTTP client for the remote catalog's "find modified" endpoint.

    Each call makes exactly one request; retrying transient failures is the
    job of RetryPolicy.
    """

    MODIFIED_ENDPOINT = "/videos/modified"

    def __init__(
        self,
        api_url: str,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the catalog client.

        Args:
            api_url: Base URL of the catalog API
            timeout: Request timeout in seconds (default: 30.0)
            transport: Optional httpx transport (used by tests)
        """
        if not api_url:
            raise ConfigError("Catalog API URL not configured.")
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> CatalogClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _raise_for_status(self, e: httpx.HTTPStatusError) -> NoReturn:
        """Translate an HTTP error into a cache error."""
        status_code = e.response.status_code

        if status_code == 401:
            raise RemoteError("Invalid token or unauthorized access") from e
        if status_code == 403:
            raise RemoteError(
                "Access forbidden - check your token's permissions"
            ) from e
        if status_code == 404:
            raise RemoteError("Catalog endpoint not found") from e
        if status_code == 429:
            raise TransientRemoteError("Rate limit exceeded") from e

        error_msg = f"Catalog request failed with status {status_code}"
        try:
            if e.response.content:
                error_data = e.response.json()
                if isinstance(error_data, dict):
                    msg = error_data.get("error") or error_data.get("message")
                    if msg:
                        error_msg = f"{error_msg}: {msg}"
        except ValueError:
            pass

        if 500 <= status_code < 600:
            raise TransientRemoteError(error_msg) from e
        raise RemoteError(error_msg) from e

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Make a single API request.

        Returns:
            Response JSON data

        Raises:
            TransientRemoteError: Network errors, rate limits, 5xx responses
            RemoteError: Any other failure
        """
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        client = self._get_client()

        try:
            response = client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            self._raise_for_status(e)
        except httpx.RequestError as e:
            raise TransientRemoteError(f"Network error: {e}") from e

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteError("Invalid JSON response from catalog") from e

        # The catalog reports some failures with a 200 and an error body
        if isinstance(data, dict) and data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else error
            raise RemoteError(f"Catalog returned an error: {message}")
        return data

    def fetch_page(
        self,
        credential: str,
        since: int = 0,
        state_filter: Iterable[StateFilter] | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        page_number: int = 0,
        sort_by: SortBy = SortBy.MODIFIED_DATE,
        sort_order: SortOrder = SortOrder.DESC,
        fields: Iterable[str] | None = None,
        custom_fields: Iterable[str] | None = None,
    ) -> RecordPage:
        """Fetch one page of records modified since a point in time.

        Args:
            credential: Read token of the account
            since: Only records modified after this many minutes since the
                epoch (default: 0 for everything)
            state_filter: Record states to return (default: all)
            page_size: Records per page
            page_number: 0-based page number
            sort_by: Sort field (default: modification date)
            sort_order: Sort direction (default: descending)
            fields: Record fields to return (default: all)
            custom_fields: Custom fields to return (default: none)

        Returns:
            RecordPage with the page's records and the total count
        """
        if not credential:
            raise ConfigError("A read token is required to fetch records.")

        filters = state_filter if state_filter is not None else StateFilter.full_set()
        params: dict[str, Any] = {
            "token": credential,
            "from_date": since,
            "filter": ",".join(sorted(f.value for f in filters)),
            "page_size": page_size,
            "page_number": page_number,
            "sort_by": sort_by.value,
            "sort_order": sort_order.value,
            "get_item_count": "true",
        }
        if fields:
            params["video_fields"] = ",".join(fields)
        if custom_fields:
            params["custom_fields"] = ",".join(custom_fields)

        data = self._request("GET", self.MODIFIED_ENDPOINT, params=params)
        return RecordPage.from_api_response(data)
