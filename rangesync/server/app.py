"""FastAPI application serving log channels and repositories."""

import logging
from datetime import datetime
from typing import Any

from fastapi import FastAPI

from .. import __version__
from ..config import Config
from ..log import LogStore, LogSyncTask, create_log_router
from ..repository import (
    RepositoryRegistry,
    RepositoryReplicationTask,
    create_replication_router,
    create_repository_router,
)

logger = logging.getLogger(__name__)


def create_app(
    config: Config,
    log_stores: dict[str, LogStore] | None = None,
    registry: RepositoryRegistry | None = None,
    sync_tasks: list[LogSyncTask] | None = None,
    replication: RepositoryReplicationTask | None = None,
) -> FastAPI:
    """Create the FastAPI server application.

    Args:
        config: Application configuration.
        log_stores: Stores keyed by channel name, each mounted at ``/<name>``.
        registry: Repositories served at ``/replication`` and ``/repository``.
        sync_tasks: Optional running log sync tasks, reported by ``/api/stats``.
        replication: Optional running replication task.

    Returns:
        Configured FastAPI application.
    """
    if log_stores is None:
        log_stores = {}
    if registry is None:
        registry = RepositoryRegistry()

    app = FastAPI(
        title="rangesync",
        description="Event log synchronization and repository replication",
        version=__version__,
    )

    # Store references for route handlers
    app.state.config = config
    app.state.log_stores = log_stores
    app.state.registry = registry
    app.state.sync_tasks = sync_tasks or []
    app.state.replication = replication

    for name, store in log_stores.items():
        app.include_router(create_log_router(store), prefix=f"/{name}", tags=[name])
        logger.debug(f"Mounted log channel /{name}")

    app.include_router(create_replication_router(registry), prefix="/replication", tags=["replication"])
    app.include_router(create_repository_router(registry), prefix="/repository", tags=["repository"])

    # ==================== API Routes (JSON) ====================

    @app.get("/api/stats")
    async def api_stats() -> dict[str, Any]:
        """Get node statistics."""
        stats: dict[str, Any] = {
            "node_name": config.node.name,
            "timestamp": datetime.now().isoformat(),
            "logs": {name: store.get_stats() for name, store in log_stores.items()},
            "repositories": [r.to_dict() for r in registry.find()],
        }

        if app.state.sync_tasks:
            stats["sync"] = [task.get_sync_status() for task in app.state.sync_tasks]

        if app.state.replication:
            stats["replication"] = app.state.replication.get_status()

        return stats

    @app.get("/api/health")
    async def api_health() -> dict[str, Any]:
        """Health check endpoint for monitoring and load balancers.

        Always returns 200 OK; store failures are reported per component.
        """
        health: dict[str, Any] = {
            "status": "ok",
            "timestamp": datetime.now().isoformat(),
            "node_name": config.node.name,
            "components": {
                "logs": sorted(log_stores),
                "repositories": len(registry),
            },
        }

        for name, store in log_stores.items():
            try:
                health["components"][f"{name}_events"] = store.get_stats()["total_events"]
            except Exception as e:
                health["status"] = "degraded"
                health["components"][f"{name}_error"] = str(e)

        return health

    return app
