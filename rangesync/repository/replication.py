"""Pull replication of repositories from a remote server.

Only pulls: local repositories fetch the versions they are missing from the
remote's replication endpoint and never push anything back.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from ..exceptions import RangeSyncError
from ..ranges import SortedRangeSet
from .client import RepositoryClient
from .store import Repository, RepositoryRegistry

logger = logging.getLogger(__name__)


@dataclass
class ReplicationResult:
    """Outcome of replicating one repository."""

    customer: str
    name: str
    versions_fetched: list[int] = field(default_factory=list)
    error: str | None = None
    timestamp: datetime | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def versions_to_fetch(local: SortedRangeSet, remote: SortedRangeSet, limit: int | None) -> list[int]:
    """Versions a replica should fetch, oldest first.

    Without a limit that is every remote version missing locally. With a
    limit, walk the combined versions newest first and take the missing ones
    until ``limit`` versions are covered.
    """
    if limit is None:
        return list(local.diff_dest(remote))

    wanted = []
    remaining = limit
    for version in local.union(remote).reverse_iterator():
        if remaining <= 0:
            break
        if not local.contains(version):
            wanted.append(version)
        remaining -= 1
    wanted.reverse()
    return wanted


class RepositoryReplicationTask:
    """Replicates every registered repository from one remote."""

    def __init__(
        self,
        registry: RepositoryRegistry,
        remote_url: str | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.registry = registry
        self.remote_url = remote_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._transport = transport
        self._last_run: datetime | None = None
        self._consecutive_failures = 0

    async def replicate(self) -> list[ReplicationResult]:
        """Run one replication pass over all registered repositories.

        A failure on one repository is logged and does not stop the others.
        """
        repositories = self.registry.find()
        if not self.remote_url:
            logger.warning("Replication skipped, no remote URL configured")
            return [
                ReplicationResult(r.customer, r.name, error="No remote URL configured")
                for r in repositories
            ]

        results = []
        async with RepositoryClient(
            self.remote_url,
            timeout=self.timeout,
            max_retries=self.max_retries,
            retry_backoff=self.retry_backoff,
            transport=self._transport,
        ) as client:
            for repository in repositories:
                results.append(await self._replicate_one(client, repository))

        self._last_run = datetime.now()
        if results and all(not r.ok for r in results):
            self._consecutive_failures += 1
        else:
            self._consecutive_failures = 0

        fetched = sum(len(r.versions_fetched) for r in results)
        failed = sum(1 for r in results if not r.ok)
        logger.info(
            f"Replication: {len(results)} repositories, {fetched} versions fetched, {failed} failed"
        )
        return results

    async def _replicate_one(self, client: RepositoryClient, repository: Repository) -> ReplicationResult:
        result = ReplicationResult(repository.customer, repository.name, timestamp=datetime.now())
        try:
            remote = [
                r
                for r in await client.query(repository.customer, repository.name)
                if (r.customer, r.name) == repository.key
            ]
            if not remote:
                logger.debug(f"Remote has no repository {repository}")
                return result

            local_range = repository.get_range()
            for version in versions_to_fetch(local_range, remote[0].range_set, repository.limit):
                data = await client.get(repository.customer, repository.name, version)
                if data is None:
                    logger.warning(f"Version {version} of {repository} vanished from remote")
                    continue
                repository.put(version, data)
                result.versions_fetched.append(version)
        except (RangeSyncError, OSError) as e:
            result.error = str(e)
            logger.warning(f"Could not replicate repository {repository}: {e}")

        if result.versions_fetched:
            logger.debug(f"Fetched versions {result.versions_fetched} of {repository}")
        return result

    async def run_loop(
        self,
        interval_seconds: float = 300,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Run ``replicate`` periodically until ``stop_event`` is set."""
        logger.info(f"Starting replication loop with {interval_seconds}s interval")

        while True:
            if stop_event and stop_event.is_set():
                break

            try:
                await self.replicate()
            except Exception as e:
                logger.error(f"Replication loop error: {e}")

            wait_time = interval_seconds
            if self._consecutive_failures > 0:
                wait_time = min(interval_seconds * (2 ** self._consecutive_failures), 3600)
                logger.debug(f"Backing off replication for {wait_time}s")

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=wait_time)
                    break
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(wait_time)

        logger.info("Replication loop stopped")

    def get_status(self) -> dict[str, Any]:
        return {
            "remote_url": self.remote_url,
            "last_run": self._last_run.isoformat() if self._last_run else None,
            "consecutive_failures": self._consecutive_failures,
            "repositories": [r.to_dict() for r in self.registry.find()],
        }
