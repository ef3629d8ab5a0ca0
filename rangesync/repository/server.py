"""HTTP endpoints for repositories.

Two routers share a registry: ``replication`` (query/get/put) is open to any
peer, ``repository`` (query/checkout/commit) is the primary surface that
enforces the master and sequencing rules.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse, Response

from ..exceptions import (
    NotMasterError,
    RepositoryNotFoundError,
    VersionConflictError,
    VersionSequenceError,
)
from .store import Repository, RepositoryRegistry

logger = logging.getLogger(__name__)

BINARY_MIMETYPE = "application/octet-stream"


def _error(status_code: int, message: str) -> PlainTextResponse:
    logger.warning(f"Repository request failed ({status_code}): {message}")
    return PlainTextResponse(message, status_code=status_code)


def _resolve(
    registry: RepositoryRegistry,
    customer: str | None,
    name: str | None,
    version: str | None,
) -> tuple[Repository, int] | PlainTextResponse:
    """Look up the repository and version named by request parameters."""
    if customer is None or name is None or version is None:
        return _error(400, "Name, customer and version should all be specified")
    try:
        number = int(version)
    except ValueError:
        return _error(400, f"Invalid version: {version}")
    if number <= 0:
        return _error(400, f"Invalid version: {version}")
    try:
        return registry.get(customer, name), number
    except RepositoryNotFoundError as e:
        return _error(404, e.message)


def _add_query_and_checkout(router: APIRouter, registry: RepositoryRegistry, checkout_path: str) -> None:
    @router.get("/query", response_class=PlainTextResponse)
    async def query(
        customer: str | None = None,
        name: str | None = None,
        filter: str | None = None,
    ) -> PlainTextResponse:
        """One ``customer,name,range`` line per matching repository."""
        if filter is not None:
            return _error(400, "Filtering is not supported, specify customer and/or name")
        lines = "".join(
            f"{r.customer},{r.name},{r.get_range().to_representation()}\n"
            for r in registry.find(customer, name)
        )
        return PlainTextResponse(lines)

    @router.get(checkout_path)
    async def checkout(
        customer: str | None = None,
        name: str | None = None,
        version: str | None = None,
    ) -> Response:
        """Content of one version."""
        resolved = _resolve(registry, customer, name, version)
        if isinstance(resolved, Response):
            return resolved
        repository, number = resolved
        data = repository.checkout(number)
        if data is None:
            logger.debug(f"Version {number} of {repository} not found")
            return PlainTextResponse(f"Requested version does not exist: {number}", status_code=404)
        return Response(content=data, media_type=BINARY_MIMETYPE)


def create_replication_router(registry: RepositoryRegistry) -> APIRouter:
    """Create the replication router (query, get, put)."""
    router = APIRouter()
    _add_query_and_checkout(router, registry, "/get")

    @router.post("/put", response_class=PlainTextResponse)
    async def put(
        request: Request,
        customer: str | None = None,
        name: str | None = None,
        version: str | None = None,
    ) -> PlainTextResponse:
        """Store a replicated version; identical content is a no-op."""
        resolved = _resolve(registry, customer, name, version)
        if isinstance(resolved, Response):
            return resolved
        repository, number = resolved
        data = await request.body()
        try:
            repository.put(number, data)
        except VersionConflictError as e:
            return _error(409, e.message)
        except OSError as e:
            return _error(500, f"I/O exception: {e}")
        return PlainTextResponse("")

    return router


def create_repository_router(registry: RepositoryRegistry) -> APIRouter:
    """Create the primary repository router (query, checkout, commit)."""
    router = APIRouter()
    _add_query_and_checkout(router, registry, "/checkout")

    @router.post("/commit", response_class=PlainTextResponse)
    async def commit(
        request: Request,
        customer: str | None = None,
        name: str | None = None,
        version: str | None = None,
    ) -> Response:
        """Commit the next version on the master."""
        resolved = _resolve(registry, customer, name, version)
        if isinstance(resolved, Response):
            return resolved
        repository, number = resolved
        data = await request.body()
        try:
            committed = repository.commit(number, data)
        except (NotMasterError, VersionSequenceError) as e:
            return _error(500, e.message)
        except OSError as e:
            return _error(500, f"I/O exception: {e}")
        if not committed:
            return Response(status_code=304)
        return PlainTextResponse("")

    return router
