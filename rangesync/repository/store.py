"""File-based versioned repositories.

Every version of a repository is a single file named ``<version><ext>`` in the
repository directory. Files are written to a temporary name first and renamed
into place, so a reader never sees a partial version.
"""

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

from ..exceptions import (
    NotMasterError,
    RepositoryNotFoundError,
    VersionConflictError,
    VersionSequenceError,
)
from ..ranges import SortedRangeSet

logger = logging.getLogger(__name__)

_TEMP_PREFIX = ".tmp-"


class Repository:
    """A numbered sequence of content versions for one customer/name pair.

    Only a master accepts ``commit``; any instance accepts replicated
    versions through ``put``. A ``limit`` keeps just the newest versions.
    """

    def __init__(
        self,
        directory: str | Path,
        customer: str,
        name: str,
        master: bool = False,
        limit: int | None = None,
        file_extension: str = "",
        initial_content: bytes | None = None,
    ):
        """Initialize the repository, creating its directory if needed.

        Args:
            directory: Directory holding one file per version.
            customer: Customer this repository belongs to.
            name: Repository name, unique per customer.
            master: Whether this instance accepts commits.
            limit: Maximum number of versions to keep (None = unlimited).
            file_extension: Suffix for version files, e.g. ".xml".
            initial_content: Stored as version 1 when a master repository is empty.
        """
        if limit is not None and limit < 1:
            raise ValueError(f"Limit must be at least 1, was {limit}")
        if "," in customer or "," in name:
            raise ValueError("Customer and name must not contain commas")

        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)
        self.customer = customer
        self.name = name
        self.master = master
        self.limit = limit
        self.file_extension = file_extension
        self._lock = threading.Lock()

        if master and initial_content is not None and not self._versions():
            self._write(1, initial_content)
            logger.info(f"Repository {self}: stored initial content as version 1")

    def __str__(self) -> str:
        return f"{self.customer}/{self.name}"

    @property
    def key(self) -> tuple[str, str]:
        return (self.customer, self.name)

    # ---- file handling ------------------------------------------------

    def _path(self, version: int) -> Path:
        return self.directory / f"{version}{self.file_extension}"

    def _versions(self) -> list[int]:
        """All stored versions in ascending order."""
        versions = []
        for entry in self.directory.iterdir():
            if not entry.is_file() or entry.name.startswith(_TEMP_PREFIX):
                continue
            stem = entry.name
            if self.file_extension:
                if not stem.endswith(self.file_extension):
                    continue
                stem = stem[: -len(self.file_extension)]
            try:
                versions.append(int(stem))
            except ValueError:
                logger.warning(f"Unable to determine version number for '{entry.name}', skipping it")
        versions.sort()
        return versions

    def _write(self, version: int, data: bytes) -> None:
        fd, temp_name = tempfile.mkstemp(prefix=_TEMP_PREFIX, dir=self.directory)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(temp_name, self._path(version))
        except OSError:
            logger.warning(f"Error occurred while storing version {version} of {self}")
            Path(temp_name).unlink(missing_ok=True)
            raise

    def _purge(self, limit: int | None) -> None:
        if limit is None:
            return
        versions = self._versions()
        for version in versions[:-limit]:
            self._path(version).unlink(missing_ok=True)
            logger.debug(f"Purged version {version} of {self}")

    # ---- operations ---------------------------------------------------

    def checkout(self, version: int) -> bytes | None:
        """Return the content of a version, or None if it is not stored."""
        if version <= 0:
            raise ValueError("Version must be greater than 0")
        path = self._path(version)
        if not path.is_file():
            return None
        return path.read_bytes()

    def get(self, version: int) -> bytes | None:
        return self.checkout(version)

    @property
    def highest_version(self) -> int:
        """Highest stored version, 0 when empty."""
        versions = self._versions()
        return versions[-1] if versions else 0

    def get_range(self) -> SortedRangeSet:
        return SortedRangeSet.from_integers(self._versions())

    def commit(self, version: int, data: bytes) -> bool:
        """Commit the next version on a master repository.

        Args:
            version: Must be exactly one above the highest stored version.
            data: New content.

        Returns:
            False when ``data`` equals the current version and nothing was
            stored, True otherwise.

        Raises:
            NotMasterError: If this instance is not the master.
            VersionSequenceError: If ``version`` is not the next version.
        """
        if not self.master:
            raise NotMasterError(self.customer, self.name)
        if version <= 0:
            raise ValueError("Version must be greater than 0")

        with self._lock:
            highest = self.highest_version
            if version != highest + 1:
                raise VersionSequenceError(self.customer, self.name, version, highest + 1)

            if highest and self._path(highest).read_bytes() == data:
                logger.info(f"Commit of {self} version {version} skipped, content unchanged")
                return False

            self._write(version, data)
            self._purge(self.limit)

        logger.info(f"Committed version {version} of {self}")
        return True

    def put(self, version: int, data: bytes) -> bool:
        """Store a replicated version.

        Returns:
            True if the version was stored, False if it already existed with
            identical content.

        Raises:
            VersionConflictError: If the version exists with different content.
        """
        if version <= 0:
            raise ValueError("Version must be greater than 0")

        with self._lock:
            path = self._path(version)
            if path.is_file():
                if path.read_bytes() == data:
                    logger.debug(f"Version {version} of {self} already present")
                    return False
                raise VersionConflictError(self.customer, self.name, version)

            self._write(version, data)
            self._purge(self.limit)

        logger.info(f"Stored replicated version {version} of {self}")
        return True

    def update(self, master: bool, limit: int | None = None) -> None:
        """Reconfigure the repository, purging old versions if the limit shrank."""
        if limit is not None and limit < 1:
            raise ValueError(f"Limit must be at least 1, was {limit}")
        with self._lock:
            self.master = master
            self.limit = limit
            self._purge(limit)

    def to_dict(self) -> dict[str, Any]:
        return {
            "customer": self.customer,
            "name": self.name,
            "master": self.master,
            "limit": self.limit,
            "range": self.get_range().to_representation(),
        }


class RepositoryRegistry:
    """Repositories known to this node, keyed by (customer, name)."""

    def __init__(self, repositories: list[Repository] | None = None):
        self._repositories: dict[tuple[str, str], Repository] = {}
        self._lock = threading.Lock()
        for repository in repositories or []:
            self.add(repository)

    def add(self, repository: Repository) -> None:
        with self._lock:
            self._repositories[repository.key] = repository
        logger.debug(f"Registered repository {repository} (master={repository.master})")

    def get(self, customer: str, name: str) -> Repository:
        """Return one repository.

        Raises:
            RepositoryNotFoundError: If no such repository is registered.
        """
        with self._lock:
            repository = self._repositories.get((customer, name))
        if repository is None:
            raise RepositoryNotFoundError(customer, name)
        return repository

    def find(self, customer: str | None = None, name: str | None = None) -> list[Repository]:
        """Repositories matching the given customer and/or name, sorted by key."""
        with self._lock:
            repositories = list(self._repositories.values())
        return sorted(
            (
                r
                for r in repositories
                if (customer is None or r.customer == customer) and (name is None or r.name == name)
            ),
            key=lambda r: r.key,
        )

    def __len__(self) -> int:
        return len(self._repositories)

    @classmethod
    def from_config(cls, configs, data_dir: str | Path) -> "RepositoryRegistry":
        """Build a registry from ``RepositoryConfig`` entries.

        A repository without an explicit directory lives under
        ``<data_dir>/repositories/<customer>/<name>``.
        """
        registry = cls()
        base = Path(data_dir).expanduser() / "repositories"
        for cfg in configs:
            directory = Path(cfg.directory) if cfg.directory else base / cfg.customer / cfg.name
            initial = None
            if cfg.initial_content_file:
                initial = Path(cfg.initial_content_file).expanduser().read_bytes()
            registry.add(
                Repository(
                    directory,
                    cfg.customer,
                    cfg.name,
                    master=cfg.master,
                    limit=cfg.limit,
                    file_extension=cfg.file_extension,
                    initial_content=initial,
                )
            )
        return registry
