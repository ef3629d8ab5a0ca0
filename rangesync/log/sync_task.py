"""Synchronization of event logs with a remote party.

A pass queries the remote's descriptors, computes what either side is
missing and transfers only that, so repeated passes converge and a pass
after convergence moves nothing.
"""

import asyncio
import logging
from collections.abc import Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

import httpx

from ..exceptions import MalformedRepresentationError, SyncError
from ..feedback import Descriptor, Event, LowestID
from .store import LogStore

logger = logging.getLogger(__name__)


class SyncMode(Enum):
    """Which directions a transfer runs in."""

    NONE = "none"
    PUSH = "push"
    PULL = "pull"
    PUSHPULL = "pushpull"

    @classmethod
    def from_string(cls, value: str) -> "SyncMode":
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ValueError(f"Invalid sync mode {value!r}, expected one of: {valid}") from None

    @property
    def push(self) -> bool:
        return self in (SyncMode.PUSH, SyncMode.PUSHPULL)

    @property
    def pull(self) -> bool:
        return self in (SyncMode.PULL, SyncMode.PUSHPULL)


class SyncStatus(Enum):
    """Status of a sync operation."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Some parts failed or records were skipped
    FAILED = "failed"
    OFFLINE = "offline"  # Remote unavailable


@dataclass
class SyncResult:
    """Result of a sync operation."""

    status: SyncStatus
    had_work: bool = False
    events_pushed: int = 0
    events_pulled: int = 0
    ids_pushed: int = 0
    ids_pulled: int = 0
    skipped: int = 0
    error: str | None = None
    timestamp: datetime | None = None

    @property
    def ok(self) -> bool:
        return self.status in (SyncStatus.SUCCESS, SyncStatus.PARTIAL)


def calculate_delta(
    source: Iterable[Descriptor], destination: Iterable[Descriptor]
) -> list[Descriptor]:
    """Return, per source log, the ids the destination does not have.

    For every source descriptor the result holds ``source \\ destination``
    for the destination descriptor with the same key, or the whole source
    descriptor when the destination does not know that log. Logs with
    nothing missing are left out.
    """
    known = {d.key: d for d in destination}
    delta = []
    for s in source:
        d = known.get(s.key)
        if d is None:
            missing = s.range_set
        else:
            missing = d.range_set.diff_dest(s.range_set)
        if missing:
            delta.append(s.with_range(missing))
    return delta


def _parse_lines(lines: str, parser, kind: str) -> tuple[list, int]:
    """Parse a newline separated body, skipping malformed lines."""
    parsed = []
    skipped = 0
    for line in lines.splitlines():
        if not line.strip():
            continue
        try:
            parsed.append(parser(line))
        except MalformedRepresentationError as e:
            skipped += 1
            logger.warning(f"Skipping malformed {kind}: {e}")
    return parsed, skipped


def _is_offline(error: SyncError) -> bool:
    return isinstance(error.cause, (httpx.ConnectError, httpx.TimeoutException))


class LogSyncTask:
    """Synchronizes one local log store with the same channel on a remote.

    Supports:
    - Push: send local events the remote lacks
    - Pull: fetch remote events missing locally
    - Lowest IDs: propagate compaction watermarks either way

    Transient transport errors are retried with exponential backoff.
    """

    def __init__(
        self,
        store: LogStore,
        remote_url: str | None = None,
        log_name: str = "auditlog",
        name: str | None = None,
        data_mode: SyncMode = SyncMode.PUSH,
        lowest_id_mode: SyncMode = SyncMode.NONE,
        target_id: str | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the sync task.

        Args:
            store: Local log store to synchronize.
            remote_url: Base URL of the remote (e.g., "http://server:8080").
            log_name: Channel endpoint on the remote, also the URL prefix.
            name: Task name used in log messages.
            data_mode: Directions for event transfer in ``execute``.
            lowest_id_mode: Directions for watermark transfer in ``execute``.
            target_id: Restrict synchronization to this target's logs.
            timeout: Request timeout in seconds.
            max_retries: Maximum attempts per request.
            retry_backoff: Initial delay between attempts, doubled each time.
            transport: Optional httpx transport (e.g. ASGITransport in tests).
            client: Optional shared client; not closed by this task.
        """
        self.store = store
        self.remote_url = remote_url
        self.log_name = log_name
        self.name = name or f"{log_name}-sync"
        self.data_mode = data_mode
        self.lowest_id_mode = lowest_id_mode
        self.target_id = target_id
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff
        self._transport = transport
        self._client = client
        self._last_sync: datetime | None = None
        self._consecutive_failures = 0

    # ---- transport ----------------------------------------------------

    @asynccontextmanager
    async def _open_client(self):
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            yield client

    async def _request_with_retry(
        self,
        client: httpx.AsyncClient,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        content: str | None = None,
    ) -> httpx.Response:
        """Make HTTP request with exponential backoff retry.

        Args:
            client: Open client to use.
            method: HTTP method (GET, POST).
            path: Path below the channel endpoint, e.g. "/query".
            params: Query parameters.
            content: Optional text body.

        Returns:
            The successful response.

        Raises:
            SyncError: On a client error, or once retries are exhausted.
        """
        if not self.remote_url:
            raise SyncError("No remote URL configured")

        url = f"{self.remote_url.rstrip('/')}/{self.log_name}{path}"
        backoff = self.retry_backoff
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            try:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    content=content.encode("utf-8") if content is not None else None,
                    headers={"Content-Type": "text/plain; charset=utf-8"} if content is not None else None,
                )

                if response.status_code == 200:
                    return response

                elif response.status_code >= 500:
                    # Server error, retry
                    logger.warning(
                        f"[{self.name}] Server error {response.status_code} on {path}, "
                        f"attempt {attempt + 1}/{self.max_retries}"
                    )
                    last_error = None
                else:
                    # Client error, don't retry
                    raise SyncError(
                        f"HTTP {response.status_code} on {path}: {response.text.strip()}",
                        self.remote_url,
                    )

            except httpx.ConnectError as e:
                logger.warning(
                    f"[{self.name}] Connection failed, attempt {attempt + 1}/{self.max_retries}"
                )
                last_error = e
            except httpx.TimeoutException as e:
                logger.warning(
                    f"[{self.name}] Request timeout, attempt {attempt + 1}/{self.max_retries}"
                )
                last_error = e
            except httpx.HTTPError as e:
                raise SyncError(f"Request error on {path}: {e}", self.remote_url, e) from e

            # Exponential backoff
            if attempt < self.max_retries - 1:
                await asyncio.sleep(backoff)
                backoff *= 2

        raise SyncError(
            f"Max retries ({self.max_retries}) exceeded for {path}",
            self.remote_url,
            last_error,
        )

    def _log_params(self) -> dict[str, str]:
        return {"tid": self.target_id} if self.target_id else {}

    # ---- data ---------------------------------------------------------

    async def query(self, client: httpx.AsyncClient) -> list[Descriptor]:
        """Fetch the remote's descriptors for this channel."""
        response = await self._request_with_retry(client, "GET", "/query", self._log_params())
        descriptors, _ = _parse_lines(response.text, Descriptor.parse, "descriptor")
        return descriptors

    async def synchronize(self, push: bool, pull: bool) -> SyncResult:
        """Run one data pass: query the remote, then push and/or pull.

        A failed query fails the whole pass. Push and pull fail independently
        of each other.
        """
        return self._record(await self._synchronize(push, pull))

    async def _synchronize(self, push: bool, pull: bool) -> SyncResult:
        result = SyncResult(status=SyncStatus.SUCCESS, timestamp=datetime.now())
        errors: list[str] = []
        attempted = 0
        failed = 0

        async with self._open_client() as client:
            try:
                remote = await self.query(client)
            except SyncError as e:
                logger.error(f"[{self.name}] Unable to query remote: {e}")
                return SyncResult(
                    status=SyncStatus.OFFLINE if _is_offline(e) else SyncStatus.FAILED,
                    error=str(e),
                    timestamp=datetime.now(),
                )

            local = self.store.get_descriptors(self.target_id)

            if push:
                attempted += 1
                try:
                    await self._push_events(client, local, remote, result)
                except SyncError as e:
                    failed += 1
                    errors.append(f"push: {e}")
                    logger.error(f"[{self.name}] Push failed: {e}")

            if pull:
                attempted += 1
                try:
                    await self._pull_events(client, local, remote, result)
                except SyncError as e:
                    failed += 1
                    errors.append(f"pull: {e}")
                    logger.error(f"[{self.name}] Pull failed: {e}")

        if failed and failed == attempted:
            result.status = SyncStatus.FAILED
        elif failed or result.skipped:
            result.status = SyncStatus.PARTIAL
        result.error = "; ".join(errors) or None

        logger.info(
            f"[{self.name}] Sync: {result.status.value}, "
            f"pushed={result.events_pushed}, pulled={result.events_pulled}"
        )
        return result

    async def _push_events(
        self,
        client: httpx.AsyncClient,
        local: list[Descriptor],
        remote: list[Descriptor],
        result: SyncResult,
    ) -> None:
        events: list[Event] = []
        for descriptor in calculate_delta(local, remote):
            events.extend(self.store.get(descriptor))
        if not events:
            return
        result.had_work = True
        body = "".join(f"{e.to_representation()}\n" for e in events)
        await self._request_with_retry(client, "POST", "/send", content=body)
        result.events_pushed = len(events)
        logger.debug(f"[{self.name}] Pushed {len(events)} events")

    async def _pull_events(
        self,
        client: httpx.AsyncClient,
        local: list[Descriptor],
        remote: list[Descriptor],
        result: SyncResult,
    ) -> None:
        for descriptor in calculate_delta(remote, local):
            result.had_work = True
            response = await self._request_with_retry(
                client,
                "GET",
                "/receive",
                {
                    "tid": descriptor.target_id,
                    "logid": str(descriptor.store_id),
                    "range": descriptor.range_set.to_representation(),
                },
            )
            events, skipped = _parse_lines(response.text, Event.parse, "event")
            result.skipped += skipped
            result.events_pulled += self.store.put(events)
            logger.debug(
                f"[{self.name}] Pulled {len(events)} events for "
                f"{descriptor.target_id}/{descriptor.store_id}"
            )

    async def push(self) -> SyncResult:
        return await self.synchronize(push=True, pull=False)

    async def pull(self) -> SyncResult:
        return await self.synchronize(push=False, pull=True)

    async def pushpull(self) -> SyncResult:
        return await self.synchronize(push=True, pull=True)

    # ---- lowest IDs ---------------------------------------------------

    async def synchronize_lowest_ids(self, push: bool, pull: bool) -> SyncResult:
        """Exchange compaction watermarks with the remote."""
        return self._record(await self._synchronize_lowest_ids(push, pull))

    async def _synchronize_lowest_ids(self, push: bool, pull: bool) -> SyncResult:
        result = SyncResult(status=SyncStatus.SUCCESS, timestamp=datetime.now())
        errors: list[str] = []
        offline = False

        async with self._open_client() as client:
            if push:
                lowest_ids = self.store.get_lowest_ids(self.target_id)
                if lowest_ids:
                    result.had_work = True
                    body = "".join(f"{lid.to_representation()}\n" for lid in lowest_ids)
                    try:
                        await self._request_with_retry(client, "POST", "/sendids", content=body)
                        result.ids_pushed = len(lowest_ids)
                    except SyncError as e:
                        offline = offline or _is_offline(e)
                        errors.append(f"push ids: {e}")
                        logger.error(f"[{self.name}] Pushing lowest IDs failed: {e}")

            if pull:
                try:
                    response = await self._request_with_retry(
                        client, "GET", "/receiveids", self._log_params()
                    )
                    lowest_ids, skipped = _parse_lines(response.text, LowestID.parse, "lowest ID")
                    result.skipped += skipped
                    for lid in lowest_ids:
                        if self.store.set_lowest_id(lid.target_id, lid.store_id, lid.lowest_id):
                            result.had_work = True
                            result.ids_pulled += 1
                except SyncError as e:
                    offline = offline or _is_offline(e)
                    errors.append(f"pull ids: {e}")
                    logger.error(f"[{self.name}] Pulling lowest IDs failed: {e}")

        if errors:
            attempted = int(push) + int(pull)
            if len(errors) < attempted:
                result.status = SyncStatus.PARTIAL
            else:
                result.status = SyncStatus.OFFLINE if offline else SyncStatus.FAILED
        elif result.skipped:
            result.status = SyncStatus.PARTIAL
        result.error = "; ".join(errors) or None
        return result

    # ---- scheduling ---------------------------------------------------

    async def execute(self) -> SyncResult:
        """One scheduled tick: lowest IDs first, then events, per the modes."""
        results = []
        if self.lowest_id_mode is not SyncMode.NONE:
            results.append(
                await self._synchronize_lowest_ids(self.lowest_id_mode.push, self.lowest_id_mode.pull)
            )
        if self.data_mode is not SyncMode.NONE:
            results.append(await self._synchronize(self.data_mode.push, self.data_mode.pull))

        if not results:
            return self._record(SyncResult(status=SyncStatus.SUCCESS, timestamp=datetime.now()))
        if len(results) == 1:
            return self._record(results[0])

        ids, data = results
        if ids.ok and data.ok:
            status = SyncStatus.PARTIAL if SyncStatus.PARTIAL in (ids.status, data.status) else SyncStatus.SUCCESS
        elif ids.ok or data.ok:
            status = SyncStatus.PARTIAL
        else:
            status = data.status
        errors = [r.error for r in results if r.error]
        return self._record(SyncResult(
            status=status,
            had_work=ids.had_work or data.had_work,
            events_pushed=data.events_pushed,
            events_pulled=data.events_pulled,
            ids_pushed=ids.ids_pushed,
            ids_pulled=ids.ids_pulled,
            skipped=ids.skipped + data.skipped,
            error="; ".join(errors) or None,
            timestamp=datetime.now(),
        ))

    def _record(self, result: SyncResult) -> SyncResult:
        if result.ok:
            self._consecutive_failures = 0
            self._last_sync = result.timestamp
        else:
            self._consecutive_failures += 1
        return result

    async def run_loop(
        self,
        interval_seconds: float = 300,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Run ``execute`` periodically until ``stop_event`` is set.

        Args:
            interval_seconds: Seconds between sync attempts.
            stop_event: Event to signal loop should stop.
        """
        logger.info(f"[{self.name}] Starting sync loop with {interval_seconds}s interval")

        while True:
            if stop_event and stop_event.is_set():
                break

            try:
                await self.execute()
            except Exception as e:
                logger.error(f"[{self.name}] Sync loop error: {e}")

            # Adaptive interval: back off if consecutive failures
            wait_time = interval_seconds
            if self._consecutive_failures > 0:
                wait_time = min(
                    interval_seconds * (2 ** self._consecutive_failures),
                    3600,  # Max 1 hour
                )
                logger.debug(f"[{self.name}] Backing off sync for {wait_time}s")

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=wait_time)
                    break  # Stop event was set
                except asyncio.TimeoutError:
                    pass  # Normal timeout, continue loop
            else:
                await asyncio.sleep(wait_time)

        logger.info(f"[{self.name}] Sync loop stopped")

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with sync statistics.
        """
        store_stats = self.store.get_stats()

        return {
            "name": self.name,
            "remote_url": self.remote_url,
            "data_mode": self.data_mode.value,
            "lowest_id_mode": self.lowest_id_mode.value,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "consecutive_failures": self._consecutive_failures,
            "total_events": store_stats["total_events"],
            "logs": store_stats["logs"],
        }
