"""
Exceptions raised by rangesync.

Parse errors for the wire formats share a common base so batch handlers can
skip a single bad record and carry on. Repository errors map one-to-one onto
HTTP status codes in the server routers.
"""


class RangeSyncError(Exception):
    """Base exception for all rangesync errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class MalformedRepresentationError(RangeSyncError, ValueError):
    """Raised when a text representation cannot be parsed."""

    def __init__(self, kind: str, representation: str, reason: str | None = None):
        message = f"Malformed {kind}: {representation!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message, {"kind": kind, "representation": representation})
        self.representation = representation
        self.reason = reason


class MalformedRangeError(MalformedRepresentationError):
    """Raised for an unparseable or inverted range such as ``"8-5"``."""

    def __init__(self, representation: str, reason: str | None = None):
        super().__init__("range", representation, reason)


class MalformedRangeSetError(MalformedRepresentationError):
    """Raised when any token of a range set is unparseable."""

    def __init__(self, representation: str, reason: str | None = None):
        super().__init__("range set", representation, reason)


class MalformedEventError(MalformedRepresentationError):
    def __init__(self, representation: str, reason: str | None = None):
        super().__init__("event", representation, reason)


class MalformedDescriptorError(MalformedRepresentationError):
    def __init__(self, representation: str, reason: str | None = None):
        super().__init__("descriptor", representation, reason)


class MalformedLowestIDError(MalformedRepresentationError):
    def __init__(self, representation: str, reason: str | None = None):
        super().__init__("lowest ID", representation, reason)


class RepositoryError(RangeSyncError):
    """Base exception for repository failures."""

    def __init__(self, message: str, customer: str, name: str, details: dict | None = None):
        merged = {"customer": customer, "name": name}
        if details:
            merged.update(details)
        super().__init__(message, merged)
        self.customer = customer
        self.name = name


class RepositoryNotFoundError(RepositoryError):
    """Raised when no repository is registered for a customer/name pair."""

    def __init__(self, customer: str, name: str):
        super().__init__(
            f"Could not find repository for customer {customer}, name {name}",
            customer,
            name,
        )


class NotMasterError(RepositoryError):
    """Raised when committing to a repository that is not the master."""

    def __init__(self, customer: str, name: str):
        super().__init__(
            f"Cannot commit to {customer}/{name}, not the master repository",
            customer,
            name,
        )


class VersionSequenceError(RepositoryError):
    """Raised when a commit does not carry exactly the next version number."""

    def __init__(self, customer: str, name: str, version: int, expected: int):
        super().__init__(
            f"Repository {customer}/{name} already changed, cannot commit version "
            f"{version} (expected {expected})",
            customer,
            name,
            {"version": version, "expected": expected},
        )
        self.version = version
        self.expected = expected


class VersionConflictError(RepositoryError):
    """Raised when a replicated version exists locally with different content."""

    def __init__(self, customer: str, name: str, version: int):
        super().__init__(
            f"Version {version} of {customer}/{name} already exists with different content",
            customer,
            name,
            {"version": version},
        )
        self.version = version


class SyncError(RangeSyncError):
    """Raised when a synchronization pass cannot query its remote."""

    def __init__(self, message: str, remote_url: str | None = None, cause: Exception | None = None):
        details: dict = {}
        if remote_url:
            details["remote_url"] = remote_url
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.remote_url = remote_url
        self.cause = cause
