"""Versioned repositories, their HTTP surface and pull replication."""

from .client import RemoteRepository, RepositoryClient
from .replication import ReplicationResult, RepositoryReplicationTask, versions_to_fetch
from .server import create_replication_router, create_repository_router
from .store import Repository, RepositoryRegistry

__all__ = [
    "RemoteRepository",
    "ReplicationResult",
    "Repository",
    "RepositoryClient",
    "RepositoryRegistry",
    "RepositoryReplicationTask",
    "create_replication_router",
    "create_repository_router",
    "versions_to_fetch",
]
