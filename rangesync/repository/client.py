"""HTTP client for a remote repository server."""

import asyncio
import logging
from dataclasses import dataclass

import httpx

from ..exceptions import (
    MalformedRepresentationError,
    RepositoryError,
    SyncError,
    VersionConflictError,
)
from ..ranges import SortedRangeSet

logger = logging.getLogger(__name__)

REPLICATION = "replication"
REPOSITORY = "repository"

# Gateway errors are transient; a plain 500 is a rejected request
_RETRY_STATUS = {502, 503, 504}


@dataclass(frozen=True)
class RemoteRepository:
    """One line of a repository query response."""

    customer: str
    name: str
    range_set: SortedRangeSet

    @classmethod
    def parse(cls, line: str) -> "RemoteRepository":
        tokens = line.rstrip("\r\n").split(",", 2)
        if len(tokens) != 3 or not tokens[0] or not tokens[1]:
            raise MalformedRepresentationError("repository line", line, "expected customer,name,range")
        return cls(tokens[0], tokens[1], SortedRangeSet.parse(tokens[2]))


class RepositoryClient:
    """Client for the replication and repository endpoints of a remote.

    Connection failures, timeouts and gateway errors are retried with
    exponential backoff; other status codes are mapped to results or
    exceptions per call.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RepositoryClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        content: bytes | None = None,
    ) -> httpx.Response:
        """Make HTTP request with exponential backoff retry.

        Raises:
            SyncError: Once retries are exhausted or on a non-transient
                transport error.
        """
        url = f"{self.base_url}{path}"
        backoff = self.retry_backoff
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            try:
                response = await self._client.request(method, url, params=params, content=content)
                if response.status_code not in _RETRY_STATUS:
                    return response
                logger.warning(
                    f"Server error {response.status_code} on {path}, "
                    f"attempt {attempt + 1}/{self.max_retries}"
                )
                last_error = None
            except httpx.ConnectError as e:
                logger.warning(f"Connection failed, attempt {attempt + 1}/{self.max_retries}")
                last_error = e
            except httpx.TimeoutException as e:
                logger.warning(f"Request timeout, attempt {attempt + 1}/{self.max_retries}")
                last_error = e
            except httpx.HTTPError as e:
                raise SyncError(f"Request error on {path}: {e}", self.base_url, e) from e

            # Exponential backoff
            if attempt < self.max_retries - 1:
                await asyncio.sleep(backoff)
                backoff *= 2

        raise SyncError(f"Max retries ({self.max_retries}) exceeded for {path}", self.base_url, last_error)

    @staticmethod
    def _params(customer: str, name: str, version: int) -> dict[str, str]:
        return {"customer": customer, "name": name, "version": str(version)}

    def _unexpected(self, response: httpx.Response, customer: str, name: str) -> RepositoryError:
        return RepositoryError(
            f"HTTP {response.status_code} from {self.base_url}: {response.text.strip()}",
            customer,
            name,
            {"status_code": response.status_code},
        )

    async def query(
        self,
        customer: str | None = None,
        name: str | None = None,
        endpoint: str = REPLICATION,
    ) -> list[RemoteRepository]:
        """List the remote repositories and their version ranges."""
        params = {}
        if customer is not None:
            params["customer"] = customer
        if name is not None:
            params["name"] = name
        response = await self._request_with_retry("GET", f"/{endpoint}/query", params)
        if response.status_code != 200:
            raise SyncError(f"Query failed with HTTP {response.status_code}", self.base_url)

        result = []
        for line in response.text.splitlines():
            if not line.strip():
                continue
            try:
                result.append(RemoteRepository.parse(line))
            except MalformedRepresentationError as e:
                logger.warning(f"Skipping malformed repository line: {e}")
        return result

    async def _fetch(self, endpoint: str, command: str, customer: str, name: str, version: int) -> bytes | None:
        response = await self._request_with_retry(
            "GET", f"/{endpoint}/{command}", self._params(customer, name, version)
        )
        if response.status_code == 200:
            return response.content
        if response.status_code == 404:
            return None
        raise self._unexpected(response, customer, name)

    async def get(self, customer: str, name: str, version: int) -> bytes | None:
        """Fetch a version through the replication endpoint, None if absent."""
        return await self._fetch(REPLICATION, "get", customer, name, version)

    async def checkout(self, customer: str, name: str, version: int) -> bytes | None:
        """Fetch a version through the repository endpoint, None if absent."""
        return await self._fetch(REPOSITORY, "checkout", customer, name, version)

    async def put(self, customer: str, name: str, version: int, data: bytes) -> None:
        """Replicate a version to the remote.

        Raises:
            VersionConflictError: If the remote holds different content.
        """
        response = await self._request_with_retry(
            "POST", f"/{REPLICATION}/put", self._params(customer, name, version), data
        )
        if response.status_code == 409:
            raise VersionConflictError(customer, name, version)
        if response.status_code != 200:
            raise self._unexpected(response, customer, name)

    async def commit(self, customer: str, name: str, version: int, data: bytes) -> bool:
        """Commit the next version on the remote master.

        Returns:
            True if committed, False if the content was unchanged.

        Raises:
            RepositoryError: If the remote rejected the commit.
        """
        response = await self._request_with_retry(
            "POST", f"/{REPOSITORY}/commit", self._params(customer, name, version), data
        )
        if response.status_code == 200:
            return True
        if response.status_code == 304:
            return False
        raise self._unexpected(response, customer, name)
