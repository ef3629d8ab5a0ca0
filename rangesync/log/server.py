"""HTTP endpoint serving one event log channel."""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from ..exceptions import MalformedRepresentationError
from ..feedback import Descriptor, Event, LowestID
from ..ranges import SortedRangeSet
from .store import LogStore

logger = logging.getLogger(__name__)


def _lines(items) -> str:
    return "".join(f"{item.to_representation()}\n" for item in items)


def _parse_body(body: bytes, parser, kind: str, channel: str) -> tuple[list, int]:
    """Parse a posted body line by line.

    Lines that are not valid UTF-8 or do not parse are skipped.

    Returns:
        The parsed items and the number of failed lines.
    """
    items = []
    failed = 0
    for raw in body.splitlines():
        if not raw.strip():
            continue
        try:
            items.append(parser(raw.decode("utf-8")))
        except (UnicodeDecodeError, MalformedRepresentationError) as e:
            failed += 1
            logger.warning(f"[{channel}] Could not construct {kind}: {e}")
    return items, failed


def _bad_request(message: str) -> PlainTextResponse:
    logger.warning(f"Log request failed: {message}")
    return PlainTextResponse(message, status_code=400)


def create_log_router(store: LogStore) -> APIRouter:
    """Create the router for one log channel.

    Mount it under the channel name, e.g. ``/auditlog``. All bodies are
    newline separated text lines.

    Args:
        store: Store backing this channel.

    Returns:
        Router with query, send, receive, sendids and receiveids endpoints.
    """
    router = APIRouter()

    def _descriptors(tid: str | None, logid: str | None) -> list[Descriptor] | None:
        """Descriptors selected by the tid/logid parameters, None if invalid."""
        if tid is not None and logid is not None:
            try:
                return [store.get_descriptor(tid, int(logid))]
            except ValueError:
                return None
        if tid is not None:
            return store.get_descriptors(tid)
        if logid is None:
            return store.get_descriptors()
        return None

    @router.get("/query", response_class=PlainTextResponse)
    async def query(
        tid: str | None = None,
        logid: str | None = None,
        filter: str | None = None,
    ) -> PlainTextResponse:
        """Descriptors of the selected logs."""
        logger.debug(f"[{store.name}] query tid={tid} logid={logid}")
        if filter is not None:
            return _bad_request("Filtering is not supported")
        descriptors = _descriptors(tid, logid)
        if descriptors is None:
            return _bad_request("Unable to interpret query")
        return PlainTextResponse(_lines(descriptors))

    @router.get("/receive", response_class=PlainTextResponse)
    async def receive(
        tid: str | None = None,
        logid: str | None = None,
        range: str | None = None,
        filter: str | None = None,
    ) -> PlainTextResponse:
        """Events of the selected logs, optionally restricted to a range."""
        logger.debug(f"[{store.name}] receive tid={tid} logid={logid} range={range}")
        if filter is not None:
            return _bad_request("Filtering is not supported")
        descriptors = _descriptors(tid, logid)
        if descriptors is None:
            return _bad_request("Unable to interpret receive request")

        if range is not None and logid is not None:
            try:
                wanted = SortedRangeSet.parse(range)
            except MalformedRepresentationError as e:
                return _bad_request(f"Unable to interpret receive request: {e}")
            descriptors = [d.with_range(wanted) for d in descriptors]

        events: list[Event] = []
        for descriptor in descriptors:
            events.extend(store.get(descriptor))
        return PlainTextResponse(_lines(events))

    @router.post("/send", response_class=PlainTextResponse)
    async def send(request: Request) -> PlainTextResponse:
        """Store the posted events; valid lines are kept even if others fail."""
        events, failed = _parse_body(await request.body(), Event.parse, "event", store.name)
        added = store.put(events)
        logger.info(f"[{store.name}] Received {len(events)} events, {added} new")
        if failed:
            return _bad_request(f"Could not construct a log event for {failed} of the lines received")
        return PlainTextResponse("")

    @router.get("/receiveids", response_class=PlainTextResponse)
    async def receive_ids(
        tid: str | None = None,
        logid: str | None = None,
        filter: str | None = None,
    ) -> PlainTextResponse:
        """Lowest IDs above 0 of the selected logs."""
        if filter is not None:
            return _bad_request("Filtering is not supported")
        descriptors = _descriptors(tid, logid)
        if descriptors is None:
            return _bad_request("Unable to interpret receiveids request")

        lowest_ids = []
        for d in descriptors:
            lowest = store.get_lowest_id(d.target_id, d.store_id)
            if lowest > 0:
                lowest_ids.append(LowestID(d.target_id, d.store_id, lowest))
        return PlainTextResponse(_lines(lowest_ids))

    @router.post("/sendids", response_class=PlainTextResponse)
    async def send_ids(request: Request) -> PlainTextResponse:
        """Apply the posted lowest IDs."""
        lowest_ids, failed = _parse_body(await request.body(), LowestID.parse, "lowest ID", store.name)
        for lid in lowest_ids:
            store.set_lowest_id(lid.target_id, lid.store_id, lid.lowest_id)

        if failed:
            return _bad_request(f"Could not set lowest IDs for {failed} of the lines received")
        return PlainTextResponse("")

    return router
